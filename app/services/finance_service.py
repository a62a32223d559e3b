from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import CostEstimateItem, Expense, ExpenseType, Order, Project, ProjectStatus, Supplier

ZERO = Decimal('0')
HUNDRED = Decimal('100')
TREND_MONTHS = 12
TOP_SUPPLIERS = 5

EXPENSE_CATEGORY_LABELS = {
    ExpenseType.EMPLOYEE: 'Labour',
    ExpenseType.PURCHASE: 'Materials',
}


@dataclass(frozen=True)
class MonthlyTrendPoint:
    month: str
    revenue: Decimal
    costs: Decimal

    @property
    def profit(self) -> Decimal:
        return self.revenue - self.costs


def _month_start(day: date, months_back: int) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def _next_month(day: date) -> date:
    return _month_start(day, -1)


def estimated_gross(item: CostEstimateItem) -> Decimal:
    return item.quantity * item.unit_net_price * (1 + item.tax_rate / HUNDRED)


def get_financial_stats(
    db: Session,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    today: date | None = None,
) -> dict:
    today = today or date.today()
    date_from = date_from or date(today.year, 1, 1)
    date_to = date_to or today
    if date_from > date_to:
        raise ValueError('Start date must not be after end date')

    projects = list(db.execute(select(Project).where(Project.is_deleted.is_(False))).scalars())
    expenses = list(db.execute(select(Expense).where(Expense.is_deleted.is_(False))).scalars())
    orders = list(db.execute(select(Order).where(Order.is_deleted.is_(False))).scalars())
    estimates = list(db.execute(select(CostEstimateItem)).scalars())
    supplier_names = dict(db.execute(select(Supplier.id, Supplier.name).where(Supplier.is_deleted.is_(False))).all())

    completed = [p for p in projects if p.status == ProjectStatus.COMPLETED]
    active = [p for p in projects if p.status == ProjectStatus.ACTIVE]
    # Forecast covers every project that is not on hold.
    forecast = [p for p in projects if p.status != ProjectStatus.ON_HOLD]
    forecast_ids = {p.id for p in forecast}

    revenue_completed = sum((p.total_value for p in completed), ZERO)
    revenue_active = sum((p.total_value for p in active), ZERO)
    revenue_forecast = sum((p.total_value for p in forecast), ZERO)

    expenses_by_project: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for expense in expenses:
        expenses_by_project[expense.project_id] += expense.amount

    cost_completed = sum((expenses_by_project[p.id] for p in completed), ZERO)
    cost_active = sum((expenses_by_project[p.id] for p in active), ZERO)
    cost_total = sum((e.amount for e in expenses), ZERO)
    cost_in_period = sum((e.amount for e in expenses if date_from <= e.date <= date_to), ZERO)
    cost_estimated = sum((estimated_gross(i) for i in estimates if i.project_id in forecast_ids), ZERO)

    profit_completed = revenue_completed - cost_completed

    turnover: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for order in orders:
        if order.supplier_id:
            turnover[order.supplier_id] += order.amount
    ranked = sorted(turnover.items(), key=lambda item: item[1], reverse=True)
    top_suppliers = [
        {'id': supplier_id, 'name': supplier_names.get(supplier_id, 'Unknown'), 'amount': amount}
        for supplier_id, amount in ranked[:TOP_SUPPLIERS]
    ]
    top_supplier = top_suppliers[0] if top_suppliers else {'id': None, 'name': 'No data', 'amount': ZERO}

    categories: dict[str, Decimal] = {}
    for expense in expenses:
        label = EXPENSE_CATEGORY_LABELS[ExpenseType(expense.type)]
        categories[label] = categories.get(label, ZERO) + expense.amount

    trend: list[MonthlyTrendPoint] = []
    for months_back in range(TREND_MONTHS - 1, -1, -1):
        start = _month_start(today, months_back)
        end = _next_month(start)
        trend.append(
            MonthlyTrendPoint(
                month=start.strftime('%Y-%m'),
                revenue=sum(
                    (p.total_value for p in completed if p.end_date and start <= p.end_date < end),
                    ZERO,
                ),
                costs=sum((e.amount for e in expenses if start <= e.date < end), ZERO),
            )
        )

    return {
        'period': {'from': date_from, 'to': date_to},
        'revenue': {
            'completed': revenue_completed,
            'active': revenue_active,
            'forecast': revenue_forecast,
        },
        'costs': {
            'realized_completed': cost_completed,
            'realized_active': cost_active,
            'realized_total': cost_total,
            'estimated_total': cost_estimated,
            'in_period': cost_in_period,
        },
        'profit': {
            'completed': profit_completed,
            'active': revenue_active - cost_active,
            'forecast': revenue_forecast - cost_estimated,
        },
        'top_supplier': top_supplier,
        'top_suppliers': top_suppliers,
        'expense_categories': [{'name': name, 'value': value} for name, value in categories.items()],
        'monthly_trend': trend,
        'kpis': {
            'margin_percent': (profit_completed / revenue_completed * HUNDRED) if revenue_completed > 0 else ZERO,
            'avg_project_value': (revenue_completed / len(completed)) if completed else ZERO,
            'completed_projects_count': len(completed),
            'active_projects_count': len(active),
        },
    }
