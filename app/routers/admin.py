from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from app.auth import Principal, require_permission
from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.forms import form_enum, form_text
from app.models import PrincipalRole
from app.security.csrf import verify_csrf
from app.security.passwords import MIN_PASSWORD_LENGTH
from app.services.audit_service import list_recent_audit, log_audit
from app.services.import_service import ImportResult, migrate_data
from app.services.trash_service import TRASH_KINDS, list_deleted, purge_item, restore_item
from app.services.user_service import (
    create_principal,
    list_principals,
    reset_principal_password,
    set_principal_active,
    set_principal_role,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/admin', tags=['admin'])
settings_access = require_permission('settings')
trash_access = require_permission('trash')
history_access = require_permission('history')
users_access = require_permission('users')


def _render_import(request: Request, principal: Principal, db: Session, *, result: ImportResult | None, status_code: int = 200):
    return request.app.state.templates.TemplateResponse(
        'admin_import.html',
        {
            'request': request,
            'principal': principal,
            'result': result,
            'max_upload_mb': settings.import_max_upload_mb,
            'recent_runs': list_recent_audit(db, action_prefix='DATA_IMPORT_', limit=10),
        },
        status_code=status_code,
    )


@router.get('/import')
def import_page(
    request: Request,
    principal: Principal = Depends(settings_access),
    db: Session = Depends(get_db),
):
    return _render_import(request, principal, db, result=None)


@router.post('/import')
async def import_submit(
    request: Request,
    principal: Principal = Depends(settings_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    upload = form.get('snapshot')
    if not isinstance(upload, UploadFile):
        raise HTTPException(status_code=400, detail='Choose a snapshot file to import')

    max_bytes = settings.import_max_upload_mb * 1024 * 1024
    raw = await upload.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(status_code=413, detail=f'Snapshot exceeds {settings.import_max_upload_mb} MB')
    if not raw.strip():
        raise HTTPException(status_code=400, detail='Snapshot file is empty')

    logger.info('Snapshot upload %r (%s bytes) by %s', upload.filename, len(raw), principal.username)
    result = await run_in_threadpool(migrate_data, raw)

    # Recorded after the import transaction has finished, whatever its outcome.
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='DATA_IMPORT_COMMITTED' if result.success else 'DATA_IMPORT_FAILED',
        ip=get_client_ip(request),
        metadata={
            'filename': upload.filename,
            'bytes': len(raw),
            'counts': result.counts,
            'error': result.error,
        },
    )
    db.commit()
    return _render_import(request, principal, db, result=result, status_code=200 if result.success else 400)


@router.get('/trash')
def trash_page(
    request: Request,
    principal: Principal = Depends(trash_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'admin_trash.html',
        {
            'request': request,
            'principal': principal,
            'deleted': list_deleted(db),
        },
    )


def _check_kind(kind: str) -> None:
    if kind not in TRASH_KINDS:
        raise HTTPException(status_code=404, detail='Unknown item type')


@router.post('/trash/{kind}/{item_id}/restore')
def trash_restore(
    kind: str,
    item_id: int,
    request: Request,
    principal: Principal = Depends(trash_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    _check_kind(kind)
    try:
        restore_item(db, kind=kind, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='TRASH_RESTORED',
        ip=get_client_ip(request),
        metadata={'kind': kind, 'item_id': item_id},
    )
    db.commit()
    return RedirectResponse('/admin/trash', status_code=303)


@router.post('/trash/{kind}/{item_id}/purge')
def trash_purge(
    kind: str,
    item_id: int,
    request: Request,
    principal: Principal = Depends(trash_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    _check_kind(kind)
    try:
        purge_item(db, kind=kind, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='TRASH_PURGED',
        ip=get_client_ip(request),
        metadata={'kind': kind, 'item_id': item_id},
    )
    db.commit()
    return RedirectResponse('/admin/trash', status_code=303)


@router.get('/audit')
def audit_page(
    request: Request,
    principal: Principal = Depends(history_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'admin_audit.html',
        {
            'request': request,
            'principal': principal,
            'rows': list_recent_audit(db, limit=200),
        },
    )


@router.get('/users')
def users_page(
    request: Request,
    principal: Principal = Depends(users_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'admin_users.html',
        {
            'request': request,
            'principal': principal,
            'users': list_principals(db),
            'roles': list(PrincipalRole),
            'min_password_length': MIN_PASSWORD_LENGTH,
        },
    )


@router.post('/users')
async def user_create(
    request: Request,
    principal: Principal = Depends(users_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        created = create_principal(
            db,
            username=form_text(form, 'username') or '',
            password=str(form.get('password', '')),
            role=form_enum(form, 'role', PrincipalRole, default=PrincipalRole.USER),
            display_name=form_text(form, 'display_name'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='USER_CREATED',
        ip=get_client_ip(request),
        metadata={'principal_id': created.id, 'username': created.username, 'role': created.role.value},
    )
    db.commit()
    return RedirectResponse('/admin/users', status_code=303)


@router.post('/users/{target_principal_id}/role')
async def user_set_role(
    target_principal_id: int,
    request: Request,
    principal: Principal = Depends(users_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    role = form_enum(form, 'role', PrincipalRole)
    if role is None:
        raise HTTPException(status_code=400, detail='Role is required')
    try:
        updated = set_principal_role(db, actor=principal, target_principal_id=target_principal_id, role=role)
    except (ValueError, PermissionError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='USER_ROLE_UPDATED',
        ip=get_client_ip(request),
        metadata={'principal_id': updated.id, 'role': updated.role.value},
    )
    db.commit()
    return RedirectResponse('/admin/users', status_code=303)


@router.post('/users/{target_principal_id}/status')
async def user_set_status(
    target_principal_id: int,
    request: Request,
    principal: Principal = Depends(users_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    active = str(form.get('active', '')).strip().lower() in {'1', 'true', 'yes', 'on'}
    try:
        updated = set_principal_active(db, actor=principal, target_principal_id=target_principal_id, active=active)
    except (ValueError, PermissionError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='USER_STATUS_UPDATED',
        ip=get_client_ip(request),
        metadata={'principal_id': updated.id, 'active': updated.active},
    )
    db.commit()
    return RedirectResponse('/admin/users', status_code=303)


@router.post('/users/{target_principal_id}/password')
async def user_reset_password(
    target_principal_id: int,
    request: Request,
    principal: Principal = Depends(users_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        updated = reset_principal_password(
            db,
            actor=principal,
            target_principal_id=target_principal_id,
            new_password=str(form.get('new_password', '')),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='USER_PASSWORD_RESET',
        ip=get_client_ip(request),
        metadata={'principal_id': updated.id},
    )
    db.commit()
    return RedirectResponse('/admin/users', status_code=303)
