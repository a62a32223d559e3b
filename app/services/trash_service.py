from __future__ import annotations

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from app.models import (
    Client,
    CostEstimateItem,
    Expense,
    Order,
    Project,
    ProjectEmployee,
    ProjectSupplier,
    QuotationItem,
    Resource,
    Supplier,
    Task,
)

TRASH_KINDS: dict[str, type] = {
    'project': Project,
    'client': Client,
    'supplier': Supplier,
    'task': Task,
    'order': Order,
    'expense': Expense,
    'resource': Resource,
}


def _model_for(kind: str) -> type:
    try:
        return TRASH_KINDS[kind]
    except KeyError:
        raise ValueError(f'Unknown item type: {kind}') from None


def _deleted_row(db: Session, kind: str, item_id: int):
    model = _model_for(kind)
    row = db.get(model, item_id)
    if not row or not row.is_deleted:
        raise ValueError('Deleted item not found')
    return row


def list_deleted(db: Session) -> dict[str, list]:
    return {
        kind: list(
            db.execute(
                select(model).where(model.is_deleted.is_(True)).order_by(model.deleted_at.desc(), model.id.desc())
            ).scalars()
        )
        for kind, model in TRASH_KINDS.items()
    }


def restore_item(db: Session, *, kind: str, item_id: int) -> None:
    row = _deleted_row(db, kind, item_id)
    row.is_deleted = False
    row.deleted_at = None
    if kind == 'order':
        db.execute(update(Expense).where(Expense.order_id == item_id).values(is_deleted=False, deleted_at=None))
    db.flush()


def purge_item(db: Session, *, kind: str, item_id: int) -> None:
    row = _deleted_row(db, kind, item_id)

    if kind == 'project':
        db.execute(delete(Expense).where(Expense.project_id == item_id))
        db.execute(delete(Order).where(Order.project_id == item_id))
        for model in (Task, Resource, QuotationItem, CostEstimateItem, ProjectSupplier, ProjectEmployee):
            db.execute(delete(model).where(model.project_id == item_id))
        db.execute(update(Project).where(Project.parent_project_id == item_id).values(parent_project_id=None))
    elif kind == 'client':
        project_count = db.execute(select(func.count(Project.id)).where(Project.client_id == item_id)).scalar_one()
        if project_count:
            raise ValueError('Cannot delete a client that still has projects')
    elif kind == 'supplier':
        db.execute(update(Order).where(Order.supplier_id == item_id).values(supplier_id=None))
        db.execute(delete(ProjectSupplier).where(ProjectSupplier.supplier_id == item_id))
    elif kind == 'task':
        db.execute(update(Order).where(Order.task_id == item_id).values(task_id=None))
    elif kind == 'order':
        db.execute(delete(Expense).where(Expense.order_id == item_id))

    db.delete(row)
    db.flush()
