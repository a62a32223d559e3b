from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.auth import Principal
from app.models import Principal as PrincipalModel
from app.models import PrincipalRole, WebSession
from app.security.passwords import hash_password

USERNAME_MAX_LENGTH = 150


def list_principals(db: Session) -> list[PrincipalModel]:
    return list(db.execute(select(PrincipalModel).order_by(PrincipalModel.username.asc())).scalars())


def get_principal(db: Session, *, principal_id: int) -> PrincipalModel:
    principal = db.get(PrincipalModel, principal_id)
    if not principal:
        raise ValueError('User not found')
    return principal


def _other_active_admins(db: Session, *, principal_id: int) -> int:
    return db.execute(
        select(func.count(PrincipalModel.id)).where(
            PrincipalModel.role == PrincipalRole.ADMINISTRATOR,
            PrincipalModel.active.is_(True),
            PrincipalModel.id != principal_id,
        )
    ).scalar_one()


def _guard_last_admin(db: Session, target: PrincipalModel) -> None:
    if target.role == PrincipalRole.ADMINISTRATOR and target.active and not _other_active_admins(db, principal_id=target.id):
        raise ValueError('At least one active administrator is required')


def _revoke_sessions(db: Session, *, principal_id: int) -> None:
    db.execute(
        update(WebSession)
        .where(WebSession.principal_id == principal_id, WebSession.revoked_at.is_(None))
        .values(revoked_at=datetime.now(tz=timezone.utc))
    )


def create_principal(
    db: Session,
    *,
    username: str,
    password: str,
    role: PrincipalRole,
    display_name: str | None = None,
) -> PrincipalModel:
    username = username.strip()
    if not username:
        raise ValueError('Username is required')
    if len(username) > USERNAME_MAX_LENGTH:
        raise ValueError('Username is too long')
    existing = db.execute(select(PrincipalModel.id).where(PrincipalModel.username == username)).scalar_one_or_none()
    if existing:
        raise ValueError('Username already exists')

    principal = PrincipalModel(
        username=username,
        display_name=(display_name or '').strip() or None,
        password_hash=hash_password(password),
        role=role,
        active=True,
    )
    db.add(principal)
    db.flush()
    return principal


def set_principal_role(db: Session, *, actor: Principal, target_principal_id: int, role: PrincipalRole) -> PrincipalModel:
    if actor.id == target_principal_id:
        raise PermissionError('You cannot change your own role')
    target = get_principal(db, principal_id=target_principal_id)
    if role != PrincipalRole.ADMINISTRATOR:
        _guard_last_admin(db, target)
    target.role = role
    target.updated_at = datetime.now(tz=timezone.utc)
    db.flush()
    return target


def set_principal_active(db: Session, *, actor: Principal, target_principal_id: int, active: bool) -> PrincipalModel:
    if actor.id == target_principal_id:
        raise PermissionError('You cannot change your own status')
    target = get_principal(db, principal_id=target_principal_id)
    if not active:
        _guard_last_admin(db, target)
        _revoke_sessions(db, principal_id=target.id)
    target.active = active
    target.updated_at = datetime.now(tz=timezone.utc)
    db.flush()
    return target


def reset_principal_password(
    db: Session,
    *,
    actor: Principal,
    target_principal_id: int,
    new_password: str,
) -> PrincipalModel:
    target = get_principal(db, principal_id=target_principal_id)
    target.password_hash = hash_password(new_password)
    target.updated_at = datetime.now(tz=timezone.utc)
    # Sessions opened with the old password end; the actor's own stay open.
    if target.id != actor.id:
        _revoke_sessions(db, principal_id=target.id)
    db.flush()
    return target
