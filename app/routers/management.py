from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.auth import Principal, require_permission
from app.db import get_db
from app.dependencies import get_client_ip
from app.forms import form_date, form_decimal, form_enum, form_ints, form_text
from app.models import EmployeeStatus, ToolStatus
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.employee_service import (
    create_employee,
    delete_employee,
    get_employee_detail,
    list_employees,
    update_employee,
)
from app.services.tool_service import (
    ToolInput,
    assigned_employees,
    create_tool,
    delete_tool,
    get_tool,
    inspection_state,
    list_tools,
    record_inspection,
    update_tool,
)

router = APIRouter(prefix='/management', tags=['management'])
management_access = require_permission('management')


def _employee_fields(form) -> dict:
    return {
        'first_name': form_text(form, 'first_name') or '',
        'last_name': form_text(form, 'last_name') or '',
        'position': form_text(form, 'position'),
        'phone': form_text(form, 'phone'),
        'email': form_text(form, 'email'),
        'rate': form_decimal(form, 'rate', default=Decimal('0')),
        'status': form_enum(form, 'status', EmployeeStatus, default=EmployeeStatus.ACTIVE),
    }


def _tool_input(form) -> ToolInput:
    return ToolInput(
        name=form_text(form, 'name') or '',
        status=form_enum(form, 'status', ToolStatus, default=ToolStatus.AVAILABLE),
        brand=form_text(form, 'brand'),
        model=form_text(form, 'model'),
        serial_number=form_text(form, 'serial_number'),
        purchase_date=form_date(form, 'purchase_date'),
        price=form_decimal(form, 'price', default=Decimal('0')),
        last_inspection_date=form_date(form, 'last_inspection_date'),
        inspection_expiry_date=form_date(form, 'inspection_expiry_date'),
        employee_ids=form_ints(form, 'employee_ids'),
    )


@router.get('')
def management_page(
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    return request.app.state.templates.TemplateResponse(
        'management.html',
        {
            'request': request,
            'principal': principal,
            'employees': list_employees(db),
            'tools': list_tools(db),
            'employee_statuses': list(EmployeeStatus),
            'tool_statuses': list(ToolStatus),
        },
    )


@router.post('/employees')
async def employee_create(
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        employee = create_employee(db, **_employee_fields(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='EMPLOYEE_CREATED',
        ip=get_client_ip(request),
        metadata={'employee_id': employee.id},
    )
    db.commit()
    return RedirectResponse('/management', status_code=303)


@router.get('/employees/{employee_id}')
def employee_detail(
    employee_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        detail = get_employee_detail(db, employee_id=employee_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'employee_detail.html',
        {
            'request': request,
            'principal': principal,
            'detail': detail,
            'employee_statuses': list(EmployeeStatus),
        },
    )


@router.post('/employees/{employee_id}')
async def employee_update(
    employee_id: int,
    request: Request,
    _principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_employee(db, employee_id=employee_id, **_employee_fields(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/management/employees/{employee_id}', status_code=303)


@router.post('/employees/{employee_id}/delete')
def employee_delete(
    employee_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_employee(db, employee_id=employee_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='EMPLOYEE_DELETED',
        ip=get_client_ip(request),
        metadata={'employee_id': employee_id},
    )
    db.commit()
    return RedirectResponse('/management', status_code=303)


@router.post('/tools')
async def tool_create(
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        tool = create_tool(db, data=_tool_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='TOOL_CREATED',
        ip=get_client_ip(request),
        metadata={'tool_id': tool.id, 'name': tool.name},
    )
    db.commit()
    return RedirectResponse('/management', status_code=303)


@router.get('/tools/{tool_id}')
def tool_detail(
    tool_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        tool = get_tool(db, tool_id=tool_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assigned = assigned_employees(db, tool_id=tool_id)
    return request.app.state.templates.TemplateResponse(
        'tool_detail.html',
        {
            'request': request,
            'principal': principal,
            'tool': tool,
            'inspection': inspection_state(tool, today=date.today()),
            'assigned_ids': [employee.id for employee in assigned],
            'employees': list_employees(db),
            'tool_statuses': list(ToolStatus),
        },
    )


@router.post('/tools/{tool_id}')
async def tool_update(
    tool_id: int,
    request: Request,
    _principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_tool(db, tool_id=tool_id, data=_tool_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/management/tools/{tool_id}', status_code=303)


@router.post('/tools/{tool_id}/inspection')
async def tool_inspection(
    tool_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    inspection_date = form_date(form, 'inspection_date')
    if inspection_date is None:
        raise HTTPException(status_code=400, detail='Inspection date is required')
    try:
        tool = record_inspection(
            db,
            tool_id=tool_id,
            inspection_date=inspection_date,
            next_inspection_date=form_date(form, 'next_inspection_date'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='TOOL_INSPECTED',
        ip=get_client_ip(request),
        metadata={'tool_id': tool_id, 'protocol_number': tool.protocol_number},
    )
    db.commit()
    return RedirectResponse(f'/management/tools/{tool_id}', status_code=303)


@router.post('/tools/{tool_id}/delete')
def tool_delete(
    tool_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_tool(db, tool_id=tool_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='TOOL_DELETED',
        ip=get_client_ip(request),
        metadata={'tool_id': tool_id},
    )
    db.commit()
    return RedirectResponse('/management', status_code=303)
