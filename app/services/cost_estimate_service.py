from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import CostEstimateItem
from app.services.project_service import get_project

CENT = Decimal('0.01')
DEFAULT_TAX_RATE = Decimal('23')


@dataclass(frozen=True)
class CostEstimateInput:
    section: str
    description: str
    quantity: Decimal
    unit: str
    unit_net_price: Decimal
    tax_rate: Decimal = DEFAULT_TAX_RATE


def line_amounts(item: CostEstimateItem) -> tuple[Decimal, Decimal]:
    net = (item.quantity * item.unit_net_price).quantize(CENT, rounding=ROUND_HALF_UP)
    gross = (net * (Decimal('1') + item.tax_rate / Decimal('100'))).quantize(CENT, rounding=ROUND_HALF_UP)
    return net, gross


def _validate(data: CostEstimateInput) -> None:
    if not data.section.strip():
        raise ValueError('Section is required')
    if not data.description.strip():
        raise ValueError('Description is required')
    if not data.unit.strip():
        raise ValueError('Unit is required')
    if data.quantity <= 0:
        raise ValueError('Quantity must be positive')
    if data.unit_net_price < 0:
        raise ValueError('Net price cannot be negative')
    if not Decimal('0') <= data.tax_rate <= Decimal('100'):
        raise ValueError('Tax rate must be between 0 and 100')


def _apply(item: CostEstimateItem, data: CostEstimateInput) -> None:
    item.section = data.section.strip()
    item.description = data.description.strip()
    item.quantity = data.quantity
    item.unit = data.unit.strip()
    item.unit_net_price = data.unit_net_price
    item.tax_rate = data.tax_rate


def get_cost_estimate(db: Session, *, item_id: int) -> CostEstimateItem:
    item = db.get(CostEstimateItem, item_id)
    if not item:
        raise ValueError('Cost estimate item not found')
    return item


def list_cost_estimates(db: Session, *, project_id: int) -> list[CostEstimateItem]:
    return list(
        db.execute(
            select(CostEstimateItem)
            .where(CostEstimateItem.project_id == project_id)
            .order_by(CostEstimateItem.section.asc(), CostEstimateItem.id.asc())
        ).scalars()
    )


def cost_estimate_summary(db: Session, *, project_id: int) -> dict:
    sections: dict[str, dict] = {}
    net_total = Decimal('0')
    gross_total = Decimal('0')
    for item in list_cost_estimates(db, project_id=project_id):
        net, gross = line_amounts(item)
        entry = sections.setdefault(item.section, {'rows': [], 'net': Decimal('0'), 'gross': Decimal('0')})
        entry['rows'].append({'item': item, 'net': net, 'gross': gross})
        entry['net'] += net
        entry['gross'] += gross
        net_total += net
        gross_total += gross
    return {'sections': sections, 'net': net_total, 'gross': gross_total}


def create_cost_estimate(db: Session, *, project_id: int, data: CostEstimateInput) -> CostEstimateItem:
    get_project(db, project_id=project_id)
    _validate(data)
    item = CostEstimateItem(project_id=project_id)
    _apply(item, data)
    db.add(item)
    db.flush()
    return item


def update_cost_estimate(db: Session, *, item_id: int, data: CostEstimateInput) -> CostEstimateItem:
    item = get_cost_estimate(db, item_id=item_id)
    _validate(data)
    _apply(item, data)
    db.flush()
    return item


def delete_cost_estimate(db: Session, *, item_id: int) -> None:
    db.delete(get_cost_estimate(db, item_id=item_id))
    db.flush()
