from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog, AuthEvent


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    principal_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            action=action,
            ip=ip,
            meta=metadata or {},
        )
    )


def list_recent_audit(db: Session, *, action_prefix: str | None = None, limit: int = 50) -> list[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if action_prefix:
        query = query.where(AuditLog.action.startswith(action_prefix))
    return list(db.execute(query).scalars())
