from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import Principal, require_permission
from app.db import get_db
from app.dependencies import get_client_ip
from app.forms import form_int, form_text
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.client_service import (
    create_category,
    create_client,
    delete_client,
    get_client,
    list_categories,
    list_clients,
    update_client,
)
from app.services.project_service import list_projects

router = APIRouter(prefix='/clients', tags=['clients'])
client_access = require_permission('clients')


@router.get('')
def clients_page(
    request: Request,
    principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
):
    category_raw = request.query_params.get('category_id', '').strip()
    category_id = int(category_raw) if category_raw.isdigit() else None
    return request.app.state.templates.TemplateResponse(
        'clients.html',
        {
            'request': request,
            'principal': principal,
            'clients': list_clients(db, category_id=category_id),
            'categories': list_categories(db),
            'selected_category_id': category_id,
        },
    )


@router.post('')
async def client_create(
    request: Request,
    principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        client = create_client(
            db,
            name=form_text(form, 'name') or '',
            email=form_text(form, 'email'),
            phone=form_text(form, 'phone'),
            notes=form_text(form, 'notes'),
            color=form_text(form, 'color'),
            category_id=form_int(form, 'category_id'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='CLIENT_CREATED',
        ip=get_client_ip(request),
        metadata={'client_id': client.id},
    )
    db.commit()
    return RedirectResponse('/clients', status_code=303)


@router.post('/categories')
async def category_create(
    request: Request,
    _principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        create_category(db, name=form_text(form, 'name') or '')
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse('/clients', status_code=303)


@router.get('/{client_id}')
def client_detail(
    client_id: int,
    request: Request,
    principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
):
    try:
        client = get_client(db, client_id=client_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'client_detail.html',
        {
            'request': request,
            'principal': principal,
            'client': client,
            'categories': list_categories(db),
            'projects': list_projects(db, client_id=client_id),
        },
    )


@router.post('/{client_id}')
async def client_update(
    client_id: int,
    request: Request,
    _principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_client(
            db,
            client_id=client_id,
            name=form_text(form, 'name') or '',
            email=form_text(form, 'email'),
            phone=form_text(form, 'phone'),
            notes=form_text(form, 'notes'),
            color=form_text(form, 'color'),
            category_id=form_int(form, 'category_id'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/clients/{client_id}', status_code=303)


@router.post('/{client_id}/delete')
def client_delete(
    client_id: int,
    request: Request,
    principal: Principal = Depends(client_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_client(db, client_id=client_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='CLIENT_DELETED',
        ip=get_client_ip(request),
        metadata={'client_id': client_id},
    )
    db.commit()
    return RedirectResponse('/clients', status_code=303)
