from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models import Employee, Tool, ToolEmployee, ToolStatus
from app.services.dashboard_service import TOOL_INSPECTION_WARNING_DAYS


@dataclass(frozen=True)
class ToolInput:
    name: str
    status: ToolStatus = ToolStatus.AVAILABLE
    brand: str | None = None
    model: str | None = None
    serial_number: str | None = None
    purchase_date: date | None = None
    price: Decimal = Decimal('0')
    last_inspection_date: date | None = None
    inspection_expiry_date: date | None = None
    employee_ids: tuple[int, ...] = field(default_factory=tuple)


def inspection_state(tool: Tool, *, today: date) -> str:
    """'expired', 'expiring', 'ok' or 'none' when the tool has no inspection date."""
    if tool.inspection_expiry_date is None:
        return 'none'
    if tool.inspection_expiry_date < today:
        return 'expired'
    if tool.inspection_expiry_date <= today + timedelta(days=TOOL_INSPECTION_WARNING_DAYS):
        return 'expiring'
    return 'ok'


def get_tool(db: Session, *, tool_id: int) -> Tool:
    tool = db.get(Tool, tool_id)
    if not tool or tool.is_deleted:
        raise ValueError('Tool not found')
    return tool


def assigned_employees(db: Session, *, tool_id: int) -> list[Employee]:
    return list(
        db.execute(
            select(Employee)
            .join(ToolEmployee, ToolEmployee.employee_id == Employee.id)
            .where(ToolEmployee.tool_id == tool_id)
            .order_by(Employee.last_name.asc(), Employee.first_name.asc())
        ).scalars()
    )


def list_tools(db: Session, *, today: date | None = None) -> list[dict]:
    today = today or date.today()
    tools = list(db.execute(select(Tool).where(Tool.is_deleted.is_(False)).order_by(Tool.name.asc())).scalars())
    links = db.execute(
        select(ToolEmployee.tool_id, Employee)
        .join(Employee, Employee.id == ToolEmployee.employee_id)
        .order_by(Employee.last_name.asc())
    ).all()
    by_tool: dict[int, list[Employee]] = {}
    for tool_id, employee in links:
        by_tool.setdefault(tool_id, []).append(employee)
    return [
        {'tool': tool, 'employees': by_tool.get(tool.id, []), 'inspection': inspection_state(tool, today=today)}
        for tool in tools
    ]


def _validate(db: Session, data: ToolInput) -> None:
    if not data.name.strip():
        raise ValueError('Tool name is required')
    if data.price < 0:
        raise ValueError('Price cannot be negative')
    if (
        data.last_inspection_date
        and data.inspection_expiry_date
        and data.inspection_expiry_date < data.last_inspection_date
    ):
        raise ValueError('Inspection expiry must not be before the last inspection')
    for employee_id in data.employee_ids:
        employee = db.get(Employee, employee_id)
        if not employee or employee.is_deleted:
            raise ValueError(f'Employee {employee_id} not found')


def _apply(tool: Tool, data: ToolInput) -> None:
    tool.name = data.name.strip()
    tool.status = data.status
    tool.brand = data.brand or None
    tool.model = data.model or None
    tool.serial_number = data.serial_number or None
    tool.purchase_date = data.purchase_date
    tool.price = data.price
    tool.last_inspection_date = data.last_inspection_date
    tool.inspection_expiry_date = data.inspection_expiry_date


def set_tool_employees(db: Session, *, tool_id: int, employee_ids: tuple[int, ...] | list[int]) -> None:
    db.execute(delete(ToolEmployee).where(ToolEmployee.tool_id == tool_id))
    for employee_id in dict.fromkeys(employee_ids):
        db.add(ToolEmployee(tool_id=tool_id, employee_id=employee_id))
    db.flush()


def create_tool(db: Session, *, data: ToolInput) -> Tool:
    _validate(db, data)
    tool = Tool()
    _apply(tool, data)
    db.add(tool)
    db.flush()
    set_tool_employees(db, tool_id=tool.id, employee_ids=data.employee_ids)
    return tool


def update_tool(db: Session, *, tool_id: int, data: ToolInput) -> Tool:
    tool = get_tool(db, tool_id=tool_id)
    _validate(db, data)
    _apply(tool, data)
    db.flush()
    set_tool_employees(db, tool_id=tool.id, employee_ids=data.employee_ids)
    return tool


def delete_tool(db: Session, *, tool_id: int) -> None:
    tool = get_tool(db, tool_id=tool_id)
    tool.is_deleted = True
    db.flush()


def _next_protocol_number(previous: str | None, inspection_date: date) -> str:
    prefix = f'{inspection_date.isoformat()}/'
    sequence = 1
    if previous and previous.startswith(prefix):
        suffix = previous[len(prefix):]
        if suffix.isdigit():
            sequence = int(suffix) + 1
    return f'{prefix}{sequence}'


def record_inspection(
    db: Session,
    *,
    tool_id: int,
    inspection_date: date,
    next_inspection_date: date | None,
) -> Tool:
    """Store an inspection on the tool and number its protocol as YYYY-MM-DD/N."""
    tool = get_tool(db, tool_id=tool_id)
    if next_inspection_date and next_inspection_date <= inspection_date:
        raise ValueError('Next inspection must be after the inspection date')
    tool.protocol_number = _next_protocol_number(tool.protocol_number, inspection_date)
    tool.last_inspection_date = inspection_date
    tool.inspection_expiry_date = next_inspection_date
    db.flush()
    return tool
