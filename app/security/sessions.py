from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from sqlalchemy import select

from app.auth import Principal, build_principal
from app.config import settings
from app.db import SessionLocal
from app.models import Principal as PrincipalModel
from app.models import PrincipalRole, WebSession


AUTH_EXEMPT_PATHS = {'/login', '/robots.txt', '/health'}
AUTH_EXEMPT_PREFIXES = ('/static/',)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db, principal_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, PrincipalModel)
        .join(PrincipalModel, PrincipalModel.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, principal = row
    now = _now()
    if web_session.revoked_at is not None or _as_aware(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return build_principal(
        id=principal.id,
        username=principal.username,
        role=PrincipalRole(principal.role),
        active=principal.active,
    )


def _is_exempt(path: str) -> bool:
    return path in AUTH_EXEMPT_PATHS or path.startswith(AUTH_EXEMPT_PREFIXES)


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        with SessionLocal() as db:
            principal = load_principal_from_token(db, token)
            request.state.principal = principal
            db.commit()

        if not _is_exempt(request.url.path) and request.state.principal is None:
            return RedirectResponse('/login', status_code=303)

        response = await call_next(request)
        return response
