"""Quotation lines priced for the client, grouped into named sections."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.models import Project, QuotationItem, QuoteStatus
from app.services.project_service import get_project

CENT = Decimal('0.01')
SUGGESTION_MIN_QUERY = 3
SUGGESTION_SAMPLE = 100
SUGGESTION_LIMIT = 5


@dataclass(frozen=True)
class QuotationItemInput:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    margin: Decimal | None = None
    section: str | None = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def price_line(unit_price: Decimal, quantity: Decimal, margin: Decimal | None) -> tuple[Decimal | None, Decimal]:
    """Return (price with margin, line total). Without a margin the unit price is used as is."""
    if margin is None:
        return None, _money(unit_price * quantity)
    price_with_margin = _money(unit_price * (Decimal('1') + margin / Decimal('100')))
    return price_with_margin, _money(price_with_margin * quantity)


def _validate(data: QuotationItemInput) -> None:
    if not data.description.strip():
        raise ValueError('Description is required')
    if not data.unit.strip():
        raise ValueError('Unit is required')
    if data.quantity <= 0:
        raise ValueError('Quantity must be positive')
    if data.unit_price < 0:
        raise ValueError('Unit price cannot be negative')


def _apply(item: QuotationItem, data: QuotationItemInput) -> None:
    item.description = data.description.strip()
    item.quantity = data.quantity
    item.unit = data.unit.strip()
    item.unit_price = data.unit_price
    item.margin = data.margin
    item.section = (data.section or '').strip() or None
    item.price_with_margin, item.total = price_line(data.unit_price, data.quantity, data.margin)


def get_quotation_item(db: Session, *, item_id: int) -> QuotationItem:
    item = db.get(QuotationItem, item_id)
    if not item:
        raise ValueError('Quotation item not found')
    return item


def list_quotation_items(db: Session, *, project_id: int) -> list[QuotationItem]:
    return list(
        db.execute(
            select(QuotationItem)
            .where(QuotationItem.project_id == project_id)
            .order_by(QuotationItem.section.asc(), QuotationItem.id.asc())
        ).scalars()
    )


def quotation_summary(db: Session, *, project_id: int) -> dict:
    sections: dict[str, dict] = {}
    for item in list_quotation_items(db, project_id=project_id):
        entry = sections.setdefault(item.section or '', {'items': [], 'total': Decimal('0')})
        entry['items'].append(item)
        entry['total'] += item.total
    return {
        'sections': sections,
        'total': sum((entry['total'] for entry in sections.values()), Decimal('0')),
    }


def create_quotation_item(db: Session, *, project_id: int, data: QuotationItemInput) -> QuotationItem:
    get_project(db, project_id=project_id)
    _validate(data)
    item = QuotationItem(project_id=project_id)
    _apply(item, data)
    db.add(item)
    db.flush()
    return item


def update_quotation_item(db: Session, *, item_id: int, data: QuotationItemInput) -> QuotationItem:
    item = get_quotation_item(db, item_id=item_id)
    _validate(data)
    _apply(item, data)
    db.flush()
    return item


def delete_quotation_item(db: Session, *, item_id: int) -> int:
    item = get_quotation_item(db, item_id=item_id)
    project_id = item.project_id
    db.delete(item)
    db.flush()
    return project_id


def rename_section(db: Session, *, project_id: int, old_name: str, new_name: str) -> int:
    new_name = new_name.strip()
    if not new_name:
        raise ValueError('Section name is required')
    result = db.execute(
        update(QuotationItem)
        .where(QuotationItem.project_id == project_id, QuotationItem.section == old_name)
        .values(section=new_name)
    )
    db.flush()
    return result.rowcount or 0


def delete_section(db: Session, *, project_id: int, name: str) -> int:
    result = db.execute(
        delete(QuotationItem).where(QuotationItem.project_id == project_id, QuotationItem.section == name)
    )
    db.flush()
    return result.rowcount or 0


def price_suggestions(db: Session, *, query: str) -> list[dict]:
    """Average and last used prices for matching lines of accepted quotations, newest first."""
    query = query.strip()
    if len(query) < SUGGESTION_MIN_QUERY:
        return []
    rows = db.execute(
        select(QuotationItem)
        .join(Project, Project.id == QuotationItem.project_id)
        .where(Project.quote_status == QuoteStatus.ACCEPTED, QuotationItem.description.contains(query))
        .order_by(Project.accepted_date.desc(), QuotationItem.id.desc())
        .limit(SUGGESTION_SAMPLE)
    ).scalars()

    grouped: dict[str, list[QuotationItem]] = {}
    for item in rows:
        grouped.setdefault(item.description, []).append(item)

    suggestions = []
    for description, items in grouped.items():
        last = items[0]
        suggestions.append(
            {
                'description': description,
                'avg_price': _money(sum((i.unit_price for i in items), Decimal('0')) / len(items)),
                'avg_margin': _money(sum((i.margin or Decimal('0') for i in items), Decimal('0')) / len(items)),
                'last_price': last.unit_price,
                'last_margin': last.margin or Decimal('0'),
                'unit': last.unit,
                'usage_count': len(items),
            }
        )
    return suggestions[:SUGGESTION_LIMIT]
