from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Expense, ExpenseType, Project


def list_expenses(
    db: Session,
    *,
    project_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[Expense]:
    query = select(Expense).where(Expense.is_deleted.is_(False)).order_by(Expense.date.desc(), Expense.id.desc())
    if project_id:
        query = query.where(Expense.project_id == project_id)
    if date_from:
        query = query.where(Expense.date >= date_from)
    if date_to:
        query = query.where(Expense.date <= date_to)
    return list(db.execute(query).scalars())


def create_expense(
    db: Session,
    *,
    project_id: int,
    title: str,
    amount: Decimal,
    type: ExpenseType,
    date: date,
    net_amount: Decimal | None = None,
    tax_rate: Decimal | None = None,
) -> Expense:
    project = db.get(Project, project_id)
    if not project or project.is_deleted:
        raise ValueError('Project not found')
    title = title.strip()
    if not title:
        raise ValueError('Expense title is required')
    if amount < 0:
        raise ValueError('Expense amount cannot be negative')
    expense = Expense(
        project_id=project_id,
        title=title,
        amount=amount,
        net_amount=net_amount,
        tax_rate=tax_rate,
        type=type,
        date=date,
    )
    db.add(expense)
    db.flush()
    return expense


def delete_expense(db: Session, *, expense_id: int) -> None:
    expense = db.get(Expense, expense_id)
    if not expense or expense.is_deleted:
        raise ValueError('Expense not found')
    expense.is_deleted = True
    expense.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()
