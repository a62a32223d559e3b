from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models import (
    Client,
    Employee,
    Order,
    Project,
    ProjectEmployee,
    ProjectStatus,
    ProjectSupplier,
    QuoteStatus,
    Supplier,
)
from app.services.expense_service import list_expenses
from app.services.task_service import list_tasks


@dataclass(frozen=True)
class ProjectInput:
    client_id: int
    name: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    parent_project_id: int | None = None
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_value: Decimal = Decimal('0')
    quote_due_date: date | None = None
    quote_status: QuoteStatus | None = None
    quotation_title: str | None = None
    accepted_date: date | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    color_marker: str | None = None
    supplier_ids: tuple[int, ...] = field(default_factory=tuple)
    employee_ids: tuple[int, ...] = field(default_factory=tuple)


def get_project(db: Session, *, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if not project or project.is_deleted:
        raise ValueError('Project not found')
    return project


def list_projects(db: Session, *, status: ProjectStatus | None = None, client_id: int | None = None) -> list[dict]:
    query = (
        select(Project, Client.name)
        .join(Client, Client.id == Project.client_id)
        .where(Project.is_deleted.is_(False))
        .order_by(Project.created_at.desc(), Project.id.desc())
    )
    if status:
        query = query.where(Project.status == status)
    if client_id:
        query = query.where(Project.client_id == client_id)
    rows = db.execute(query).all()

    listed_ids = {project.id for project, _ in rows}
    children: dict[int, list[Project]] = {}
    for project, _ in rows:
        if project.parent_project_id:
            children.setdefault(project.parent_project_id, []).append(project)
    # Subprojects are nested under their parent when the parent is listed too.
    return [
        {'project': project, 'client_name': client_name, 'subprojects': children.get(project.id, [])}
        for project, client_name in rows
        if project.parent_project_id not in listed_ids
    ]


def _validate(db: Session, data: ProjectInput, *, project_id: int | None = None) -> None:
    if not data.name.strip():
        raise ValueError('Project name is required')
    client = db.get(Client, data.client_id)
    if not client or client.is_deleted:
        raise ValueError('Client not found')
    if data.start_date and data.end_date and data.end_date < data.start_date:
        raise ValueError('End date must not be before start date')

    parent_id = data.parent_project_id
    seen = {project_id} if project_id else set()
    while parent_id:
        if parent_id in seen:
            raise ValueError('A project cannot be its own parent')
        parent = db.get(Project, parent_id)
        if not parent or parent.is_deleted:
            raise ValueError('Parent project not found')
        seen.add(parent_id)
        parent_id = parent.parent_project_id

    for supplier_id in data.supplier_ids:
        if not db.get(Supplier, supplier_id):
            raise ValueError(f'Supplier {supplier_id} not found')
    for employee_id in data.employee_ids:
        if not db.get(Employee, employee_id):
            raise ValueError(f'Employee {employee_id} not found')


def _apply(project: Project, data: ProjectInput) -> None:
    project.client_id = data.client_id
    project.parent_project_id = data.parent_project_id or None
    project.name = data.name.strip()
    project.description = data.description or None
    project.status = data.status
    project.start_date = data.start_date
    project.end_date = data.end_date
    project.total_value = data.total_value
    project.quote_due_date = data.quote_due_date
    project.quote_status = data.quote_status
    project.quotation_title = data.quotation_title or None
    project.accepted_date = data.accepted_date
    project.address = data.address or None
    project.lat = data.lat
    project.lng = data.lng
    project.color_marker = data.color_marker or None


def set_project_links(
    db: Session,
    *,
    project_id: int,
    supplier_ids: tuple[int, ...] | list[int],
    employee_ids: tuple[int, ...] | list[int],
) -> None:
    db.execute(delete(ProjectSupplier).where(ProjectSupplier.project_id == project_id))
    db.execute(delete(ProjectEmployee).where(ProjectEmployee.project_id == project_id))
    for supplier_id in dict.fromkeys(supplier_ids):
        db.add(ProjectSupplier(project_id=project_id, supplier_id=supplier_id))
    for employee_id in dict.fromkeys(employee_ids):
        db.add(ProjectEmployee(project_id=project_id, employee_id=employee_id))
    db.flush()


def create_project(db: Session, *, data: ProjectInput) -> Project:
    _validate(db, data)
    project = Project()
    _apply(project, data)
    db.add(project)
    db.flush()
    set_project_links(db, project_id=project.id, supplier_ids=data.supplier_ids, employee_ids=data.employee_ids)
    return project


def update_project(db: Session, *, project_id: int, data: ProjectInput) -> Project:
    project = get_project(db, project_id=project_id)
    _validate(db, data, project_id=project_id)
    _apply(project, data)
    db.flush()
    set_project_links(db, project_id=project.id, supplier_ids=data.supplier_ids, employee_ids=data.employee_ids)
    return project


def delete_project(db: Session, *, project_id: int) -> None:
    project = get_project(db, project_id=project_id)
    project.is_deleted = True
    project.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()


def get_project_detail(db: Session, *, project_id: int) -> dict:
    project = get_project(db, project_id=project_id)
    client = db.get(Client, project.client_id)
    supplier_ids = list(
        db.execute(select(ProjectSupplier.supplier_id).where(ProjectSupplier.project_id == project_id)).scalars()
    )
    employee_ids = list(
        db.execute(select(ProjectEmployee.employee_id).where(ProjectEmployee.project_id == project_id)).scalars()
    )
    subprojects = list(
        db.execute(
            select(Project)
            .where(Project.parent_project_id == project_id, Project.is_deleted.is_(False))
            .order_by(Project.created_at.asc(), Project.id.asc())
        ).scalars()
    )
    tasks = list_tasks(db, project_id=project_id)
    orders = list(
        db.execute(
            select(Order).where(Order.project_id == project_id, Order.is_deleted.is_(False)).order_by(Order.date.desc())
        ).scalars()
    )
    expenses = list_expenses(db, project_id=project_id)
    return {
        'project': project,
        'client': client,
        'parent': db.get(Project, project.parent_project_id) if project.parent_project_id else None,
        'subprojects': subprojects,
        'supplier_ids': supplier_ids,
        'employee_ids': employee_ids,
        'tasks': tasks,
        'orders': orders,
        'expenses': expenses,
        'expenses_total': sum((e.amount for e in expenses), Decimal('0')),
    }
