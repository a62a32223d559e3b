from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from app.models import Client, Order, OrderStatus, Project, ProjectStatus, Supplier, Task, TaskStatus, Tool
from app.services.snapshot import decode_list_field

PENDING_TASK_LIMIT = 10
COMPLETED_PROJECT_LIMIT = 10
TOOL_INSPECTION_WARNING_DAYS = 14


def _pending_tasks(db: Session) -> list[dict]:
    rows = db.execute(
        select(Task, Project.name)
        .join(Project, Project.id == Task.project_id)
        .where(
            Task.is_deleted.is_(False),
            Task.status != TaskStatus.DONE,
            Project.is_deleted.is_(False),
            Project.status == ProjectStatus.ACTIVE,
        )
        # undated tasks last
        .order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc())
        .limit(PENDING_TASK_LIMIT)
    ).all()
    return [
        {
            'id': task.id,
            'title': task.title,
            'project_id': task.project_id,
            'project_name': project_name,
            'status': task.status,
            'priority': task.priority,
            'due_date': task.due_date,
            'checklist': decode_list_field(task.checklist) or [],
        }
        for task, project_name in rows
    ]


def _pending_orders(db: Session) -> list[dict]:
    rows = db.execute(
        select(Order, Project.name, Supplier.name)
        .join(Project, Project.id == Order.project_id)
        .outerjoin(Supplier, Supplier.id == Order.supplier_id)
        .where(
            Order.is_deleted.is_(False),
            Order.status.in_([OrderStatus.PENDING, OrderStatus.ORDERED]),
            Project.is_deleted.is_(False),
            Project.status != ProjectStatus.ON_HOLD,
        )
        .order_by(Order.date.desc(), Order.id.desc())
    ).all()
    return [
        {
            'id': order.id,
            'title': order.title,
            'amount': order.amount,
            'status': order.status,
            'date': order.date,
            'project_id': order.project_id,
            'project_name': project_name,
            'supplier_name': supplier_name or 'No supplier',
        }
        for order, project_name, supplier_name in rows
    ]


def _recent_projects(db: Session) -> list[dict]:
    child = aliased(Project)
    subproject_count = (
        select(func.count(child.id))
        .where(child.parent_project_id == Project.id, child.is_deleted.is_(False))
        .correlate(Project)
        .scalar_subquery()
    )
    rows = db.execute(
        select(Project, Client.name, Client.color, subproject_count)
        .join(Client, Client.id == Project.client_id)
        .where(
            Project.is_deleted.is_(False),
            Project.parent_project_id.is_(None),
            Project.status != ProjectStatus.COMPLETED,
        )
        .order_by(Project.created_at.desc(), Project.id.desc())
    ).all()
    return [
        {
            'id': project.id,
            'name': project.name,
            'status': project.status,
            'client_name': client_name,
            'client_color': client_color,
            'start_date': project.start_date,
            'end_date': project.end_date,
            'subproject_count': count,
        }
        for project, client_name, client_color, count in rows
    ]


def _completed_projects(db: Session) -> list[dict]:
    rows = db.execute(
        select(Project, Client.name)
        .join(Client, Client.id == Project.client_id)
        .where(
            Project.is_deleted.is_(False),
            Project.parent_project_id.is_(None),
            Project.status == ProjectStatus.COMPLETED,
        )
        .order_by(Project.end_date.is_(None), Project.end_date.desc(), Project.created_at.desc())
        .limit(COMPLETED_PROJECT_LIMIT)
    ).all()
    return [
        {
            'id': project.id,
            'name': project.name,
            'client_name': client_name,
            'end_date': project.end_date,
            'total_value': project.total_value,
        }
        for project, client_name in rows
    ]


def _tool_alerts(db: Session, today: date) -> dict:
    warn_until = today + timedelta(days=TOOL_INSPECTION_WARNING_DAYS)
    base = select(func.count(Tool.id)).where(Tool.is_deleted.is_(False))
    expired = db.execute(base.where(Tool.inspection_expiry_date < today)).scalar_one()
    expiring = db.execute(
        base.where(Tool.inspection_expiry_date >= today, Tool.inspection_expiry_date <= warn_until)
    ).scalar_one()
    return {'expired_tools': expired, 'expiring_tools': expiring, 'total': expired + expiring}


def get_dashboard_stats(db: Session, *, today: date | None = None) -> dict:
    today = today or date.today()
    active_projects = db.execute(
        select(func.count(Project.id)).where(
            Project.is_deleted.is_(False),
            Project.parent_project_id.is_(None),
            Project.status == ProjectStatus.ACTIVE,
        )
    ).scalar_one()
    return {
        'active_projects': active_projects,
        'pending_tasks': _pending_tasks(db),
        'pending_orders': _pending_orders(db),
        'recent_projects': _recent_projects(db),
        'completed_projects': _completed_projects(db),
        'alerts': _tool_alerts(db, today),
    }
