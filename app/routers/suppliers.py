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
from app.services.supplier_service import (
    create_supplier,
    delete_supplier,
    get_supplier,
    list_categories,
    list_project_ids,
    list_suppliers,
    update_supplier,
)

router = APIRouter(prefix='/suppliers', tags=['suppliers'])
supplier_access = require_permission('suppliers')

TEXT_FIELDS = ('contact_person', 'email', 'phone', 'address', 'website', 'notes')


@router.get('')
def suppliers_page(
    request: Request,
    principal: Principal = Depends(supplier_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'suppliers.html',
        {
            'request': request,
            'principal': principal,
            'rows': list_suppliers(db),
            'categories': list_categories(db),
        },
    )


@router.post('')
async def supplier_create(
    request: Request,
    principal: Principal = Depends(supplier_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        supplier = create_supplier(
            db,
            name=form_text(form, 'name') or '',
            category_id=form_int(form, 'category_id'),
            **{key: form_text(form, key) for key in TEXT_FIELDS},
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SUPPLIER_CREATED',
        ip=get_client_ip(request),
        metadata={'supplier_id': supplier.id},
    )
    db.commit()
    return RedirectResponse('/suppliers', status_code=303)


@router.get('/{supplier_id}')
def supplier_detail(
    supplier_id: int,
    request: Request,
    principal: Principal = Depends(supplier_access),
    db: Session = Depends(get_db),
):
    try:
        supplier = get_supplier(db, supplier_id=supplier_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'supplier_detail.html',
        {
            'request': request,
            'principal': principal,
            'supplier': supplier,
            'categories': list_categories(db),
            'project_ids': list_project_ids(db, supplier_id=supplier_id),
        },
    )


@router.post('/{supplier_id}')
async def supplier_update(
    supplier_id: int,
    request: Request,
    _principal: Principal = Depends(supplier_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    fields = {key: form_text(form, key) for key in TEXT_FIELDS if key in form}
    if 'name' in form:
        fields['name'] = form_text(form, 'name')
    if 'category_id' in form:
        fields['category_id'] = form_int(form, 'category_id')
    try:
        update_supplier(db, supplier_id=supplier_id, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/suppliers/{supplier_id}', status_code=303)


@router.post('/{supplier_id}/delete')
def supplier_delete(
    supplier_id: int,
    request: Request,
    principal: Principal = Depends(supplier_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_supplier(db, supplier_id=supplier_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SUPPLIER_DELETED',
        ip=get_client_ip(request),
        metadata={'supplier_id': supplier_id},
    )
    db.commit()
    return RedirectResponse('/suppliers', status_code=303)
