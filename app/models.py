from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
ID = BigInteger().with_variant(Integer(), 'sqlite')
MONEY = Numeric(14, 2)
QUANTITY = Numeric(14, 3)

# Order.date and Expense.date shadow the type name inside their class bodies.
CalendarDate = date


class Base(DeclarativeBase):
    pass


def _values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=_values)


class PrincipalRole(str, Enum):
    ADMINISTRATOR = 'ADMINISTRATOR'
    MANAGER = 'MANAGER'
    USER = 'USER'
    VIEWER = 'VIEWER'


class ProjectStatus(str, Enum):
    ACTIVE = 'Active'
    COMPLETED = 'Completed'
    ON_HOLD = 'On Hold'
    TO_QUOTE = 'To Quote'


class QuoteStatus(str, Enum):
    IN_PROGRESS = 'W trakcie'
    ACCEPTED = 'Zaakceptowana'
    REJECTED = 'Niezaakceptowana'
    NEEDS_CHANGES = 'Do zmiany'


class TaskStatus(str, Enum):
    TODO = 'Todo'
    IN_PROGRESS = 'In Progress'
    DONE = 'Done'


class TaskPriority(str, Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


class ResourceType(str, Enum):
    FILE = 'File'
    IMAGE = 'Image'
    LINK = 'Link'


class OrderStatus(str, Enum):
    PENDING = 'Pending'
    ORDERED = 'Ordered'
    DELIVERED = 'Delivered'


class ExpenseType(str, Enum):
    EMPLOYEE = 'Employee'
    PURCHASE = 'Purchase'


class NotificationType(str, Enum):
    TASK_DEADLINE = 'task_deadline'
    ORDER_STATUS = 'order_status'
    TASK_UPDATE = 'task_update'
    TASK_CREATED = 'task_created'


class RelatedType(str, Enum):
    TASK = 'task'
    ORDER = 'order'
    PROJECT = 'project'


class EmployeeStatus(str, Enum):
    ACTIVE = 'Active'
    INACTIVE = 'Inactive'


class ToolStatus(str, Enum):
    AVAILABLE = 'Available'
    IN_USE = 'In Use'
    MAINTENANCE = 'Maintenance'
    LOST = 'Lost'


class StockMovementType(str, Enum):
    IN = 'IN'
    OUT = 'OUT'


# ---------------------------------------------------------------------------
# Auth / audit
# ---------------------------------------------------------------------------


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(String(150), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(ID, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(ID, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(ID, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Business data. Every table below is replaced wholesale by the snapshot
# importer; keep app.services.import_service.DELETE_ORDER in sync when adding one.
# ---------------------------------------------------------------------------


class ClientCategory(Base):
    __tablename__ = 'client_categories'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class SupplierCategory(Base):
    __tablename__ = 'supplier_categories'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class OrderTemplate(Base):
    __tablename__ = 'order_templates'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    default_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0'))


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType, 'notification_type'), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    related_id: Mapped[int | None] = mapped_column(Integer)
    related_type: Mapped[RelatedType | None] = mapped_column(_enum(RelatedType, 'notification_related_type'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Employee(Base):
    __tablename__ = 'employees'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    rate: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0'))
    status: Mapped[EmployeeStatus] = mapped_column(_enum(EmployeeStatus, 'employee_status'), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Tool(Base):
    __tablename__ = 'tools'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    brand: Mapped[str | None] = mapped_column(Text)
    model: Mapped[str | None] = mapped_column(Text)
    serial_number: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ToolStatus] = mapped_column(_enum(ToolStatus, 'tool_status'), nullable=False)
    purchase_date: Mapped[date | None] = mapped_column(Date)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0'))
    last_inspection_date: Mapped[date | None] = mapped_column(Date)
    inspection_expiry_date: Mapped[date | None] = mapped_column(Date)
    protocol_number: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ToolEmployee(Base):
    __tablename__ = 'tool_employees'

    tool_id: Mapped[int] = mapped_column(ID, ForeignKey('tools.id', ondelete='CASCADE'), primary_key=True)
    employee_id: Mapped[int] = mapped_column(ID, ForeignKey('employees.id', ondelete='CASCADE'), primary_key=True)


class WarehouseItem(Base):
    __tablename__ = 'warehouse_items'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal('0'))
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    min_quantity: Mapped[Decimal | None] = mapped_column(QUANTITY)
    category: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(Text)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class WarehouseHistoryItem(Base):
    __tablename__ = 'warehouse_history'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    item_id: Mapped[int] = mapped_column(ID, ForeignKey('warehouse_items.id'), nullable=False)
    type: Mapped[StockMovementType] = mapped_column(_enum(StockMovementType, 'stock_movement_type'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(Integer)


class Client(Base):
    __tablename__ = 'clients'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(String(16))
    category_id: Mapped[int | None] = mapped_column(ID, ForeignKey('client_categories.id'))
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    website: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[int | None] = mapped_column(ID, ForeignKey('supplier_categories.id'))
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Project(Base):
    __tablename__ = 'projects'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    client_id: Mapped[int] = mapped_column(ID, ForeignKey('clients.id'), nullable=False)
    parent_project_id: Mapped[int | None] = mapped_column(ID, ForeignKey('projects.id'))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ProjectStatus] = mapped_column(_enum(ProjectStatus, 'project_status'), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    total_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0'))
    quote_due_date: Mapped[date | None] = mapped_column(Date)
    quote_status: Mapped[QuoteStatus | None] = mapped_column(_enum(QuoteStatus, 'quote_status'))
    quotation_title: Mapped[str | None] = mapped_column(Text)
    accepted_date: Mapped[date | None] = mapped_column(Date)
    address: Mapped[str | None] = mapped_column(Text)
    lat: Mapped[float | None] = mapped_column(Float)
    lng: Mapped[float | None] = mapped_column(Float)
    color_marker: Mapped[str | None] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ProjectSupplier(Base):
    __tablename__ = 'project_suppliers'

    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    supplier_id: Mapped[int] = mapped_column(ID, ForeignKey('suppliers.id', ondelete='CASCADE'), primary_key=True)


class ProjectEmployee(Base):
    __tablename__ = 'project_employees'

    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    employee_id: Mapped[int] = mapped_column(ID, ForeignKey('employees.id', ondelete='CASCADE'), primary_key=True)


class Task(Base):
    __tablename__ = 'tasks'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[TaskStatus] = mapped_column(_enum(TaskStatus, 'task_status'), nullable=False)
    priority: Mapped[TaskPriority] = mapped_column(_enum(TaskPriority, 'task_priority'), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    # JSON-encoded lists of {id, title|text, completed}
    subtasks: Mapped[str | None] = mapped_column(Text)
    checklist: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Resource(Base):
    __tablename__ = 'resources'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[ResourceType] = mapped_column(_enum(ResourceType, 'resource_type'), nullable=False)
    content_url: Mapped[str | None] = mapped_column(Text)
    content_blob: Mapped[bytes | None] = mapped_column(LargeBinary)
    folder: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class QuotationItem(Base):
    __tablename__ = 'quotation_items'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    margin: Mapped[Decimal | None] = mapped_column(Numeric(7, 2))
    price_with_margin: Mapped[Decimal | None] = mapped_column(MONEY)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    section: Mapped[str | None] = mapped_column(Text)


class CostEstimateItem(Base):
    __tablename__ = 'cost_estimate_items'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    section: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    unit_net_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)


class Order(Base):
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    task_id: Mapped[int | None] = mapped_column(ID, ForeignKey('tasks.id'))
    supplier_id: Mapped[int | None] = mapped_column(ID, ForeignKey('suppliers.id'))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus, 'order_status'), nullable=False)
    date: Mapped[CalendarDate] = mapped_column(Date, nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(QUANTITY)
    unit: Mapped[str | None] = mapped_column(String(32))
    added_to_warehouse: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    url: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Expense(Base):
    __tablename__ = 'expenses'

    id: Mapped[int] = mapped_column(ID, primary_key=True)
    project_id: Mapped[int] = mapped_column(ID, ForeignKey('projects.id'), nullable=False)
    order_id: Mapped[int | None] = mapped_column(ID, ForeignKey('orders.id'))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    type: Mapped[ExpenseType] = mapped_column(_enum(ExpenseType, 'expense_type'), nullable=False)
    date: Mapped[CalendarDate] = mapped_column(Date, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
