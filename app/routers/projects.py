from __future__ import annotations

import mimetypes
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from app.auth import Principal, require_permission
from app.config import settings
from app.db import get_db
from app.dependencies import get_client_ip
from app.forms import form_date, form_decimal, form_enum, form_int, form_ints, form_text
from app.models import (
    ExpenseType,
    OrderStatus,
    ProjectStatus,
    QuoteStatus,
    ResourceType,
    TaskPriority,
    TaskStatus,
)
from app.security.csrf import verify_csrf
from app.services.audit_service import log_audit
from app.services.client_service import list_clients
from app.services.cost_estimate_service import (
    DEFAULT_TAX_RATE,
    CostEstimateInput,
    cost_estimate_summary,
    create_cost_estimate,
    delete_cost_estimate,
    get_cost_estimate,
    update_cost_estimate,
)
from app.services.employee_service import list_employees
from app.services.expense_service import create_expense, delete_expense
from app.services.order_service import (
    OrderInput,
    create_order,
    delete_order,
    get_order,
    list_orders,
    sync_order_to_warehouse,
    update_order,
)
from app.services.project_service import (
    ProjectInput,
    create_project,
    delete_project,
    get_project_detail,
    list_projects,
    update_project,
)
from app.services.quotation_service import (
    QuotationItemInput,
    create_quotation_item,
    delete_quotation_item,
    delete_section,
    get_quotation_item,
    price_suggestions,
    quotation_summary,
    rename_section,
    update_quotation_item,
)
from app.services.resource_service import (
    create_resource,
    delete_resource,
    get_resource,
    list_folders,
    list_resources,
)
from app.services.supplier_service import list_suppliers
from app.services.task_service import create_task, delete_task, set_status, toggle_checklist_item

router = APIRouter(prefix='/projects', tags=['projects'])
project_access = require_permission('projects')
production_access = require_permission('production')
documents_access = require_permission('documents')


def _quotation_input(form) -> QuotationItemInput:
    quantity = form_decimal(form, 'quantity')
    unit_price = form_decimal(form, 'unit_price')
    if quantity is None or unit_price is None:
        raise HTTPException(status_code=400, detail='Quantity and unit price are required')
    return QuotationItemInput(
        description=form_text(form, 'description') or '',
        quantity=quantity,
        unit=form_text(form, 'unit') or '',
        unit_price=unit_price,
        margin=form_decimal(form, 'margin'),
        section=form_text(form, 'section'),
    )


def _cost_estimate_input(form) -> CostEstimateInput:
    quantity = form_decimal(form, 'quantity')
    unit_net_price = form_decimal(form, 'unit_net_price')
    if quantity is None or unit_net_price is None:
        raise HTTPException(status_code=400, detail='Quantity and net price are required')
    return CostEstimateInput(
        section=form_text(form, 'section') or '',
        description=form_text(form, 'description') or '',
        quantity=quantity,
        unit=form_text(form, 'unit') or '',
        unit_net_price=unit_net_price,
        tax_rate=form_decimal(form, 'tax_rate', default=DEFAULT_TAX_RATE),
    )


def _owned_by(row, project_id: int, label: str):
    if row.project_id != project_id:
        raise ValueError(f'{label} not found in this project')
    return row


def _project_input(form) -> ProjectInput:
    client_id = form_int(form, 'client_id')
    if not client_id:
        raise HTTPException(status_code=400, detail='Client is required')
    return ProjectInput(
        client_id=client_id,
        name=form_text(form, 'name') or '',
        status=form_enum(form, 'status', ProjectStatus, default=ProjectStatus.ACTIVE),
        parent_project_id=form_int(form, 'parent_project_id'),
        description=form_text(form, 'description'),
        start_date=form_date(form, 'start_date'),
        end_date=form_date(form, 'end_date'),
        total_value=form_decimal(form, 'total_value', default=Decimal('0')),
        quote_due_date=form_date(form, 'quote_due_date'),
        quote_status=form_enum(form, 'quote_status', QuoteStatus),
        quotation_title=form_text(form, 'quotation_title'),
        accepted_date=form_date(form, 'accepted_date'),
        address=form_text(form, 'address'),
        color_marker=form_text(form, 'color_marker'),
        supplier_ids=form_ints(form, 'supplier_ids'),
        employee_ids=form_ints(form, 'employee_ids'),
    )


@router.get('')
def projects_page(
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
):
    status = form_enum(request.query_params, 'status', ProjectStatus)
    return request.app.state.templates.TemplateResponse(
        'projects.html',
        {
            'request': request,
            'principal': principal,
            'rows': list_projects(db, status=status),
            'clients': list_clients(db),
            'statuses': list(ProjectStatus),
            'selected_status': status,
        },
    )


@router.post('')
async def project_create(
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        project = create_project(db, data=_project_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROJECT_CREATED',
        ip=get_client_ip(request),
        metadata={'project_id': project.id, 'name': project.name},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project.id}', status_code=303)


@router.get('/{project_id}')
def project_detail(
    project_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
):
    try:
        detail = get_project_detail(db, project_id=project_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return request.app.state.templates.TemplateResponse(
        'project_detail.html',
        {
            'request': request,
            'principal': principal,
            'detail': detail,
            'orders': list_orders(db, project_id=project_id),
            'clients': list_clients(db),
            'suppliers': list_suppliers(db),
            'employees': list_employees(db),
            'quotation': quotation_summary(db, project_id=project_id),
            'cost_estimate': cost_estimate_summary(db, project_id=project_id),
            'resources': list_resources(db, project_id=project_id),
            'folders': list_folders(db, project_id=project_id),
            'resource_types': list(ResourceType),
            'statuses': list(ProjectStatus),
            'task_statuses': list(TaskStatus),
            'task_priorities': list(TaskPriority),
            'order_statuses': list(OrderStatus),
            'expense_types': list(ExpenseType),
        },
    )


@router.post('/{project_id}')
async def project_update(
    project_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_project(db, project_id=project_id, data=_project_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROJECT_UPDATED',
        ip=get_client_ip(request),
        metadata={'project_id': project_id},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/delete')
def project_delete(
    project_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_project(db, project_id=project_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROJECT_DELETED',
        ip=get_client_ip(request),
        metadata={'project_id': project_id},
    )
    db.commit()
    return RedirectResponse('/projects', status_code=303)


@router.post('/{project_id}/tasks')
async def task_create(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(production_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    checklist = [
        {'id': index, 'text': line.strip(), 'completed': False}
        for index, line in enumerate((form_text(form, 'checklist') or '').splitlines(), start=1)
        if line.strip()
    ]
    try:
        create_task(
            db,
            project_id=project_id,
            title=form_text(form, 'title') or '',
            description=form_text(form, 'description'),
            status=form_enum(form, 'status', TaskStatus, default=TaskStatus.TODO),
            priority=form_enum(form, 'priority', TaskPriority, default=TaskPriority.MEDIUM),
            due_date=form_date(form, 'due_date'),
            checklist=checklist,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/tasks/{task_id}/status')
async def task_status(
    project_id: int,
    task_id: int,
    request: Request,
    _principal: Principal = Depends(production_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    status = form_enum(form, 'status', TaskStatus)
    if status is None:
        raise HTTPException(status_code=400, detail='Status is required')
    try:
        set_status(db, task_id=task_id, status=status)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/tasks/{task_id}/checklist/{item_id}')
def task_checklist_toggle(
    project_id: int,
    task_id: int,
    item_id: str,
    _principal: Principal = Depends(production_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        toggle_checklist_item(db, task_id=task_id, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/tasks/{task_id}/delete')
def task_delete(
    project_id: int,
    task_id: int,
    _principal: Principal = Depends(production_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_task(db, task_id=task_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/orders')
async def order_create(
    project_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    order_date = form_date(form, 'date')
    if order_date is None:
        raise HTTPException(status_code=400, detail='Order date is required')
    data = OrderInput(
        project_id=project_id,
        title=form_text(form, 'title') or '',
        amount=form_decimal(form, 'amount', default=Decimal('0')),
        date=order_date,
        status=form_enum(form, 'status', OrderStatus, default=OrderStatus.PENDING),
        net_amount=form_decimal(form, 'net_amount'),
        tax_rate=form_decimal(form, 'tax_rate'),
        supplier_id=form_int(form, 'supplier_id'),
        task_id=form_int(form, 'task_id'),
        quantity=form_decimal(form, 'quantity'),
        unit=form_text(form, 'unit'),
        notes=form_text(form, 'notes'),
        url=form_text(form, 'url'),
    )
    try:
        order = create_order(db, data=data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='ORDER_CREATED',
        ip=get_client_ip(request),
        metadata={'order_id': order.id, 'project_id': project_id, 'amount': str(order.amount)},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/orders/{order_id}')
async def order_update(
    project_id: int,
    order_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    fields = {}
    for key in ('title', 'notes', 'url', 'unit'):
        if key in form:
            fields[key] = form_text(form, key)
    for key in ('amount', 'net_amount', 'tax_rate', 'quantity'):
        if key in form:
            fields[key] = form_decimal(form, key)
    if 'status' in form:
        fields['status'] = form_enum(form, 'status', OrderStatus)
    if 'date' in form:
        fields['date'] = form_date(form, 'date')
    if fields.get('amount', Decimal('0')) is None or ('date' in fields and fields['date'] is None):
        raise HTTPException(status_code=400, detail='Amount and date are required')
    try:
        update_order(db, order_id=order_id, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='ORDER_UPDATED',
        ip=get_client_ip(request),
        metadata={'order_id': order_id, 'fields': sorted(fields)},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/orders/{order_id}/delete')
def order_delete(
    project_id: int,
    order_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_order(db, order_id=order_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='ORDER_DELETED',
        ip=get_client_ip(request),
        metadata={'order_id': order_id},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/orders/{order_id}/warehouse')
def order_to_warehouse(
    project_id: int,
    order_id: int,
    request: Request,
    principal: Principal = Depends(require_permission('warehouse')),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        order = get_order(db, order_id=order_id)
        item = sync_order_to_warehouse(db, order_id=order.id, user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='ORDER_ADDED_TO_WAREHOUSE',
        ip=get_client_ip(request),
        metadata={'order_id': order_id, 'warehouse_item_id': item.id},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/expenses')
async def expense_create(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(require_permission('finances')),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    expense_date = form_date(form, 'date')
    expense_type = form_enum(form, 'type', ExpenseType)
    if expense_date is None or expense_type is None:
        raise HTTPException(status_code=400, detail='Expense date and type are required')
    try:
        create_expense(
            db,
            project_id=project_id,
            title=form_text(form, 'title') or '',
            amount=form_decimal(form, 'amount', default=Decimal('0')),
            type=expense_type,
            date=expense_date,
            net_amount=form_decimal(form, 'net_amount'),
            tax_rate=form_decimal(form, 'tax_rate'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/expenses/{expense_id}/delete')
def expense_delete(
    project_id: int,
    expense_id: int,
    _principal: Principal = Depends(require_permission('finances')),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        delete_expense(db, expense_id=expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.get('/{project_id}/quotation/suggestions')
def quotation_suggestions(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
):
    return price_suggestions(db, query=request.query_params.get('q', ''))


@router.post('/{project_id}/quotation')
async def quotation_item_create(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        create_quotation_item(db, project_id=project_id, data=_quotation_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/quotation/sections/rename')
async def quotation_section_rename(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        rename_section(
            db,
            project_id=project_id,
            old_name=str(form.get('old_name', '')),
            new_name=form_text(form, 'new_name') or '',
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/quotation/sections/delete')
async def quotation_section_delete(
    project_id: int,
    request: Request,
    principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    name = str(form.get('name', ''))
    removed = delete_section(db, project_id=project_id, name=name)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='QUOTATION_SECTION_DELETED',
        ip=get_client_ip(request),
        metadata={'project_id': project_id, 'section': name, 'items': removed},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/quotation/{item_id}')
async def quotation_item_update(
    project_id: int,
    item_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        _owned_by(get_quotation_item(db, item_id=item_id), project_id, 'Quotation item')
        update_quotation_item(db, item_id=item_id, data=_quotation_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/quotation/{item_id}/delete')
def quotation_item_delete(
    project_id: int,
    item_id: int,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        _owned_by(get_quotation_item(db, item_id=item_id), project_id, 'Quotation item')
        delete_quotation_item(db, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/cost-estimates')
async def cost_estimate_create(
    project_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        create_cost_estimate(db, project_id=project_id, data=_cost_estimate_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/cost-estimates/{item_id}')
async def cost_estimate_update(
    project_id: int,
    item_id: int,
    request: Request,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        _owned_by(get_cost_estimate(db, item_id=item_id), project_id, 'Cost estimate item')
        update_cost_estimate(db, item_id=item_id, data=_cost_estimate_input(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/cost-estimates/{item_id}/delete')
def cost_estimate_delete(
    project_id: int,
    item_id: int,
    _principal: Principal = Depends(project_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        _owned_by(get_cost_estimate(db, item_id=item_id), project_id, 'Cost estimate item')
        delete_cost_estimate(db, item_id=item_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.post('/{project_id}/resources')
async def resource_create(
    project_id: int,
    request: Request,
    principal: Principal = Depends(documents_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    resource_type = form_enum(form, 'type', ResourceType, default=ResourceType.LINK)
    content = None
    upload = form.get('file')
    if isinstance(upload, UploadFile) and upload.filename:
        max_bytes = settings.resource_max_upload_mb * 1024 * 1024
        content = await upload.read(max_bytes + 1)
        if len(content) > max_bytes:
            raise HTTPException(status_code=413, detail=f'File exceeds {settings.resource_max_upload_mb} MB')
    try:
        resource = create_resource(
            db,
            project_id=project_id,
            name=form_text(form, 'name') or (upload.filename if isinstance(upload, UploadFile) else '') or '',
            type=resource_type,
            folder=form_text(form, 'folder'),
            content_url=form_text(form, 'content_url'),
            content=content,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='RESOURCE_CREATED',
        ip=get_client_ip(request),
        metadata={'project_id': project_id, 'resource_id': resource.id, 'type': resource.type.value},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)


@router.get('/{project_id}/resources/{resource_id}')
def resource_open(
    project_id: int,
    resource_id: int,
    _principal: Principal = Depends(documents_access),
    db: Session = Depends(get_db),
):
    try:
        resource = _owned_by(get_resource(db, resource_id=resource_id), project_id, 'Resource')
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if resource.type == ResourceType.LINK:
        return RedirectResponse(resource.content_url or f'/projects/{project_id}', status_code=303)
    media_type = mimetypes.guess_type(resource.name)[0] or 'application/octet-stream'
    disposition = 'inline' if resource.type == ResourceType.IMAGE else 'attachment'
    filename = resource.name.replace('"', '')
    return Response(
        content=resource.content_blob or b'',
        media_type=media_type,
        headers={'Content-Disposition': f'{disposition}; filename="{filename}"'},
    )


@router.post('/{project_id}/resources/{resource_id}/delete')
def resource_delete(
    project_id: int,
    resource_id: int,
    request: Request,
    principal: Principal = Depends(documents_access),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        _owned_by(get_resource(db, resource_id=resource_id), project_id, 'Resource')
        delete_resource(db, resource_id=resource_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='RESOURCE_DELETED',
        ip=get_client_ip(request),
        metadata={'project_id': project_id, 'resource_id': resource_id},
    )
    db.commit()
    return RedirectResponse(f'/projects/{project_id}', status_code=303)
