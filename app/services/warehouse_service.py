from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import StockMovementType, WarehouseHistoryItem, WarehouseItem


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def list_items(db: Session) -> list[WarehouseItem]:
    return list(
        db.execute(
            select(WarehouseItem).where(WarehouseItem.is_deleted.is_(False)).order_by(WarehouseItem.name.asc())
        ).scalars()
    )


def list_low_stock(db: Session) -> list[WarehouseItem]:
    return [
        item
        for item in list_items(db)
        if item.min_quantity is not None and item.quantity <= item.min_quantity
    ]


def get_item(db: Session, *, item_id: int) -> WarehouseItem:
    item = db.get(WarehouseItem, item_id)
    if not item or item.is_deleted:
        raise ValueError('Warehouse item not found')
    return item


def create_item(
    db: Session,
    *,
    name: str,
    unit: str,
    quantity: Decimal = Decimal('0'),
    min_quantity: Decimal | None = None,
    description: str | None = None,
    category: str | None = None,
    location: str | None = None,
) -> WarehouseItem:
    name = name.strip()
    if not name:
        raise ValueError('Item name is required')
    if not unit.strip():
        raise ValueError('Unit is required')
    if quantity < 0:
        raise ValueError('Quantity cannot be negative')
    item = WarehouseItem(
        name=name,
        unit=unit.strip(),
        quantity=quantity,
        min_quantity=min_quantity,
        description=description or None,
        category=category or None,
        location=location or None,
        last_updated=_now(),
    )
    db.add(item)
    db.flush()
    return item


def record_movement(
    db: Session,
    *,
    item_id: int,
    movement_type: StockMovementType,
    quantity: Decimal,
    reason: str | None = None,
    user_id: int | None = None,
) -> WarehouseHistoryItem:
    item = get_item(db, item_id=item_id)
    if quantity <= 0:
        raise ValueError('Quantity must be positive')
    if movement_type == StockMovementType.OUT:
        if quantity > item.quantity:
            raise ValueError(f'Not enough stock: {item.quantity} {item.unit} available')
        item.quantity = item.quantity - quantity
    else:
        item.quantity = item.quantity + quantity
    item.last_updated = _now()

    entry = WarehouseHistoryItem(
        item_id=item.id,
        type=movement_type,
        quantity=quantity,
        date=item.last_updated,
        reason=reason or None,
        user_id=user_id,
    )
    db.add(entry)
    db.flush()
    return entry


def list_history(db: Session, *, item_id: int) -> list[WarehouseHistoryItem]:
    return list(
        db.execute(
            select(WarehouseHistoryItem)
            .where(WarehouseHistoryItem.item_id == item_id)
            .order_by(WarehouseHistoryItem.date.desc(), WarehouseHistoryItem.id.desc())
        ).scalars()
    )


def delete_item(db: Session, *, item_id: int) -> None:
    item = get_item(db, item_id=item_id)
    item.is_deleted = True
    db.flush()
