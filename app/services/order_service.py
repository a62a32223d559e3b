from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import (
    Expense,
    ExpenseType,
    Order,
    OrderStatus,
    Project,
    StockMovementType,
    Supplier,
    Task,
    WarehouseHistoryItem,
    WarehouseItem,
)

EXPENSE_TITLE_PREFIX = 'Order: '
WAREHOUSE_ORDER_CATEGORY = 'Orders'
WAREHOUSE_DEFAULT_LOCATION = 'Warehouse'
DEFAULT_UNIT = 'szt.'

FINANCIAL_FIELDS = ('title', 'amount', 'net_amount', 'tax_rate')
EDITABLE_FIELDS = FINANCIAL_FIELDS + ('status', 'date', 'quantity', 'unit', 'notes', 'url', 'supplier_id', 'task_id')


@dataclass(frozen=True)
class OrderInput:
    project_id: int
    title: str
    amount: Decimal
    date: date
    status: OrderStatus = OrderStatus.PENDING
    net_amount: Decimal | None = None
    tax_rate: Decimal | None = None
    supplier_id: int | None = None
    task_id: int | None = None
    quantity: Decimal | None = None
    unit: str | None = None
    notes: str | None = None
    url: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_order(db: Session, *, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order or order.is_deleted:
        raise ValueError('Order not found')
    return order


def list_orders(db: Session, *, project_id: int | None = None) -> list[dict]:
    query = (
        select(Order, Project.name, Supplier.name)
        .join(Project, Project.id == Order.project_id)
        .outerjoin(Supplier, Supplier.id == Order.supplier_id)
        .where(Order.is_deleted.is_(False))
        .order_by(Order.date.desc(), Order.id.desc())
    )
    if project_id:
        query = query.where(Order.project_id == project_id)
    return [
        {'order': order, 'project_name': project_name, 'supplier_name': supplier_name or '-'}
        for order, project_name, supplier_name in db.execute(query).all()
    ]


def _check_refs(db: Session, *, project_id: int, supplier_id: int | None, task_id: int | None) -> None:
    project = db.get(Project, project_id)
    if not project or project.is_deleted:
        raise ValueError('Project not found')
    if supplier_id:
        supplier = db.get(Supplier, supplier_id)
        if not supplier or supplier.is_deleted:
            raise ValueError('Supplier not found')
    if task_id:
        task = db.get(Task, task_id)
        if not task or task.project_id != project_id:
            raise ValueError('Task not found in this project')


def create_order(db: Session, *, data: OrderInput, with_expense: bool = True) -> Order:
    """Create an order and, unless told otherwise, the purchase expense that tracks its cost."""
    title = data.title.strip()
    if not title:
        raise ValueError('Order title is required')
    if data.amount < 0:
        raise ValueError('Order amount cannot be negative')
    _check_refs(db, project_id=data.project_id, supplier_id=data.supplier_id, task_id=data.task_id)

    order = Order(
        project_id=data.project_id,
        task_id=data.task_id or None,
        supplier_id=data.supplier_id or None,
        title=title,
        amount=data.amount,
        net_amount=data.net_amount,
        tax_rate=data.tax_rate,
        status=data.status,
        date=data.date,
        quantity=data.quantity,
        unit=data.unit or None,
        notes=data.notes or None,
        url=data.url or None,
    )
    db.add(order)
    db.flush()

    if with_expense:
        db.add(
            Expense(
                project_id=order.project_id,
                order_id=order.id,
                title=f'{EXPENSE_TITLE_PREFIX}{title}',
                amount=order.amount,
                net_amount=order.net_amount,
                tax_rate=order.tax_rate,
                type=ExpenseType.PURCHASE,
                date=order.date,
            )
        )
        db.flush()
    return order


def update_order(db: Session, *, order_id: int, **fields) -> Order:
    order = get_order(db, order_id=order_id)
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown order field: {sorted(unknown)[0]}')
    if 'title' in fields:
        fields['title'] = (fields['title'] or '').strip()
        if not fields['title']:
            raise ValueError('Order title is required')
    if 'supplier_id' in fields or 'task_id' in fields:
        _check_refs(
            db,
            project_id=order.project_id,
            supplier_id=fields.get('supplier_id', order.supplier_id),
            task_id=fields.get('task_id', order.task_id),
        )

    for key, value in fields.items():
        setattr(order, key, value)

    # The linked expense mirrors the order's financial fields.
    expense_values = {key: fields[key] for key in FINANCIAL_FIELDS if key in fields}
    if expense_values:
        if 'title' in expense_values:
            expense_values['title'] = f'{EXPENSE_TITLE_PREFIX}{expense_values["title"]}'
        db.execute(update(Expense).where(Expense.order_id == order_id).values(**expense_values))
    db.flush()
    return order


def delete_order(db: Session, *, order_id: int) -> None:
    order = get_order(db, order_id=order_id)
    now = _now()
    order.is_deleted = True
    order.deleted_at = now
    db.execute(update(Expense).where(Expense.order_id == order_id).values(is_deleted=True, deleted_at=now))
    db.flush()


def sync_order_to_warehouse(db: Session, *, order_id: int, user_id: int | None = None) -> WarehouseItem:
    """Book the ordered quantity into the warehouse. An order can be booked only once."""
    order = get_order(db, order_id=order_id)
    if order.added_to_warehouse:
        raise ValueError('Order already added to warehouse')

    quantity = order.quantity or Decimal('1')
    item = db.execute(
        select(WarehouseItem)
        .where(WarehouseItem.name == order.title, WarehouseItem.is_deleted.is_(False))
        .order_by(WarehouseItem.id.asc())
    ).scalars().first()
    if item:
        item.quantity = item.quantity + quantity
        item.last_updated = _now()
    else:
        item = WarehouseItem(
            name=order.title,
            quantity=quantity,
            unit=order.unit or DEFAULT_UNIT,
            category=WAREHOUSE_ORDER_CATEGORY,
            location=WAREHOUSE_DEFAULT_LOCATION,
            last_updated=_now(),
        )
        db.add(item)
        db.flush()

    db.add(
        WarehouseHistoryItem(
            item_id=item.id,
            type=StockMovementType.IN,
            quantity=quantity,
            date=_now(),
            reason=f'Order: {order.title} (project #{order.project_id})',
            user_id=user_id,
        )
    )
    order.added_to_warehouse = True
    db.flush()
    return item
