from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import Principal, require_permission
from app.db import get_db
from app.dependencies import get_client_ip
from app.forms import form_decimal, form_enum, form_text
from app.models import StockMovementType
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.warehouse_service import (
    create_item,
    delete_item,
    get_item,
    list_history,
    list_items,
    list_low_stock,
    record_movement,
)

router = APIRouter(prefix='/warehouse', tags=['warehouse'])
warehouse_access = require_permission('warehouse')


@router.get('')
def warehouse_page(
    request: Request,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'warehouse.html',
        {
            'request': request,
            'principal': principal,
            'items': list_items(db),
            'low_stock_ids': {item.id for item in list_low_stock(db)},
        },
    )


@router.post('')
async def item_create(
    request: Request,
    _principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        create_item(
            db,
            name=form_text(form, 'name') or '',
            unit=form_text(form, 'unit') or '',
            quantity=form_decimal(form, 'quantity', default=Decimal('0')),
            min_quantity=form_decimal(form, 'min_quantity'),
            description=form_text(form, 'description'),
            category=form_text(form, 'category'),
            location=form_text(form, 'location'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse('/warehouse', status_code=303)


@router.get('/{item_id}')
def item_detail(
    item_id: int,
    request: Request,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
):
    try:
        item = get_item(db, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'warehouse_item.html',
        {
            'request': request,
            'principal': principal,
            'item': item,
            'history': list_history(db, item_id=item_id),
        },
    )


@router.post('/{item_id}/movements')
async def item_movement(
    item_id: int,
    request: Request,
    principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    movement_type = form_enum(form, 'type', StockMovementType)
    quantity = form_decimal(form, 'quantity')
    if movement_type is None or quantity is None:
        raise HTTPException(status_code=400, detail='Movement type and quantity are required')
    try:
        entry = record_movement(
            db,
            item_id=item_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=form_text(form, 'reason'),
            user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action=f'WAREHOUSE_STOCK_{movement_type.value}',
        ip=get_client_ip(request),
        metadata={'warehouse_item_id': item_id, 'history_id': entry.id, 'quantity': str(quantity)},
    )
    db.commit()
    return RedirectResponse(f'/warehouse/{item_id}', status_code=303)


@router.post('/{item_id}/delete')
def item_delete(
    item_id: int,
    _principal: Principal = Depends(warehouse_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_item(db, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse('/warehouse', status_code=303)
