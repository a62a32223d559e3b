from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import Order, ProjectSupplier, Supplier, SupplierCategory


def _clean(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


def list_suppliers(db: Session) -> list[dict]:
    turnover = (
        select(Order.supplier_id, func.coalesce(func.sum(Order.amount), 0).label('turnover'))
        .where(Order.is_deleted.is_(False), Order.supplier_id.is_not(None))
        .group_by(Order.supplier_id)
        .subquery()
    )
    rows = db.execute(
        select(Supplier, SupplierCategory.name, turnover.c.turnover)
        .outerjoin(SupplierCategory, SupplierCategory.id == Supplier.category_id)
        .outerjoin(turnover, turnover.c.supplier_id == Supplier.id)
        .where(Supplier.is_deleted.is_(False))
        .order_by(Supplier.name.asc())
    ).all()
    return [
        {
            'supplier': supplier,
            'category_name': category_name,
            'turnover': Decimal(str(amount)) if amount is not None else Decimal('0'),
        }
        for supplier, category_name, amount in rows
    ]


def list_categories(db: Session) -> list[SupplierCategory]:
    return list(db.execute(select(SupplierCategory).order_by(SupplierCategory.name.asc())).scalars())


def get_supplier(db: Session, *, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if not supplier or supplier.is_deleted:
        raise ValueError('Supplier not found')
    return supplier


def create_supplier(
    db: Session,
    *,
    name: str,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    website: str | None = None,
    notes: str | None = None,
    category_id: int | None = None,
) -> Supplier:
    name = name.strip()
    if not name:
        raise ValueError('Supplier name is required')
    if category_id and not db.get(SupplierCategory, category_id):
        raise ValueError('Supplier category not found')
    supplier = Supplier(
        name=name,
        contact_person=_clean(contact_person),
        email=_clean(email),
        phone=_clean(phone),
        address=_clean(address),
        website=_clean(website),
        notes=_clean(notes),
        category_id=category_id or None,
    )
    db.add(supplier)
    db.flush()
    return supplier


def update_supplier(db: Session, *, supplier_id: int, **fields: str | int | None) -> Supplier:
    supplier = get_supplier(db, supplier_id=supplier_id)
    if 'name' in fields:
        name = (fields.pop('name') or '').strip()
        if not name:
            raise ValueError('Supplier name is required')
        supplier.name = name
    if 'category_id' in fields:
        category_id = fields.pop('category_id') or None
        if category_id and not db.get(SupplierCategory, category_id):
            raise ValueError('Supplier category not found')
        supplier.category_id = category_id
    for key, value in fields.items():
        if key not in {'contact_person', 'email', 'phone', 'address', 'website', 'notes'}:
            raise ValueError(f'Unknown supplier field: {key}')
        setattr(supplier, key, _clean(value))
    db.flush()
    return supplier


def delete_supplier(db: Session, *, supplier_id: int) -> None:
    supplier = get_supplier(db, supplier_id=supplier_id)
    supplier.is_deleted = True
    supplier.deleted_at = datetime.now(tz=timezone.utc)
    db.flush()


def list_project_ids(db: Session, *, supplier_id: int) -> list[int]:
    return list(
        db.execute(select(ProjectSupplier.project_id).where(ProjectSupplier.supplier_id == supplier_id)).scalars()
    )
