from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Employee, EmployeeStatus, Project, ProjectEmployee, Tool, ToolEmployee


def _clean(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


def list_employees(db: Session, *, status: EmployeeStatus | None = None) -> list[Employee]:
    query = (
        select(Employee)
        .where(Employee.is_deleted.is_(False))
        .order_by(Employee.last_name.asc(), Employee.first_name.asc())
    )
    if status:
        query = query.where(Employee.status == status)
    return list(db.execute(query).scalars())


def get_employee(db: Session, *, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if not employee or employee.is_deleted:
        raise ValueError('Employee not found')
    return employee


def _names(first_name: str, last_name: str) -> tuple[str, str]:
    first_name = first_name.strip()
    last_name = last_name.strip()
    if not first_name or not last_name:
        raise ValueError('First and last name are required')
    return first_name, last_name


def _rate(rate: Decimal | None) -> Decimal:
    rate = rate if rate is not None else Decimal('0')
    if rate < 0:
        raise ValueError('Rate cannot be negative')
    return rate


def create_employee(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    position: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    rate: Decimal | None = None,
    status: EmployeeStatus = EmployeeStatus.ACTIVE,
) -> Employee:
    first_name, last_name = _names(first_name, last_name)
    employee = Employee(
        first_name=first_name,
        last_name=last_name,
        position=_clean(position),
        phone=_clean(phone),
        email=_clean(email),
        rate=_rate(rate),
        status=status,
    )
    db.add(employee)
    db.flush()
    return employee


def update_employee(
    db: Session,
    *,
    employee_id: int,
    first_name: str,
    last_name: str,
    position: str | None,
    phone: str | None,
    email: str | None,
    rate: Decimal | None,
    status: EmployeeStatus,
) -> Employee:
    employee = get_employee(db, employee_id=employee_id)
    employee.first_name, employee.last_name = _names(first_name, last_name)
    employee.position = _clean(position)
    employee.phone = _clean(phone)
    employee.email = _clean(email)
    employee.rate = _rate(rate)
    employee.status = status
    db.flush()
    return employee


def delete_employee(db: Session, *, employee_id: int) -> None:
    employee = get_employee(db, employee_id=employee_id)
    employee.is_deleted = True
    db.flush()


def get_employee_detail(db: Session, *, employee_id: int) -> dict:
    employee = get_employee(db, employee_id=employee_id)
    projects = list(
        db.execute(
            select(Project)
            .join(ProjectEmployee, ProjectEmployee.project_id == Project.id)
            .where(ProjectEmployee.employee_id == employee_id, Project.is_deleted.is_(False))
            .order_by(Project.name.asc())
        ).scalars()
    )
    tools = list(
        db.execute(
            select(Tool)
            .join(ToolEmployee, ToolEmployee.tool_id == Tool.id)
            .where(ToolEmployee.employee_id == employee_id, Tool.is_deleted.is_(False))
            .order_by(Tool.name.asc())
        ).scalars()
    )
    return {'employee': employee, 'projects': projects, 'tools': tools}
