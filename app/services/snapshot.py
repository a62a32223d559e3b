"""
Schema of a full data snapshot as exported by the offline (IndexedDB) client.

Field names follow the export (camelCase); every record model exposes the
same snake_case attribute names as the matching ORM model so the importer can
dump a record straight into a row. Source ``id`` values are kept only to
resolve references inside one snapshot.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.models import (
    EmployeeStatus,
    ExpenseType,
    NotificationType,
    OrderStatus,
    ProjectStatus,
    QuoteStatus,
    RelatedType,
    ResourceType,
    StockMovementType,
    TaskPriority,
    TaskStatus,
    ToolStatus,
)


class SnapshotError(ValueError):
    pass


def encode_list_field(value: Any) -> str | None:
    """Normalize a list field (task subtasks/checklist) to its stored text form.

    The offline client hands over these fields either already JSON-encoded or
    as plain lists, depending on which screen produced the export.
    """
    if value is None or value == '':
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        try:
            return json.dumps(list(value), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise ValueError(f'List field is not JSON serializable: {exc}') from exc
    raise ValueError(f'Expected a list or encoded text, got {type(value).__name__}')


def decode_list_field(value: str | None) -> list[dict] | None:
    if not value:
        return None
    try:
        decoded = json.loads(value)
    except ValueError:
        return None
    return decoded if isinstance(decoded, list) else None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _ref_or_none(value: Any) -> Any:
    if value in (None, '', 0, '0'):
        return None
    return value


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_datetime(value: Any) -> Any:
    value = _blank_to_none(value)
    if isinstance(value, str):
        return _parse_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return value


def _coerce_date(value: Any) -> Any:
    value = _coerce_datetime(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def _coerce_flag(value: Any) -> Any:
    if value is None or value == '':
        return False
    return value


OptionalText = Annotated[str | None, BeforeValidator(_blank_to_none)]
RefId = Annotated[int | None, BeforeValidator(_ref_or_none)]
LooseDate = Annotated[date | None, BeforeValidator(_coerce_date)]
RequiredDate = Annotated[date, BeforeValidator(_coerce_date)]
LooseDateTime = Annotated[datetime | None, BeforeValidator(_coerce_datetime)]
Flag = Annotated[bool, BeforeValidator(_coerce_flag)]
OptionalDecimal = Annotated[Decimal | None, BeforeValidator(_blank_to_none)]
ListField = Annotated[str | None, BeforeValidator(encode_list_field)]


class SnapshotRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    id: int | None = None


class EmbeddedRef(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int


class CategoryRecord(SnapshotRecord):
    name: str


class OrderTemplateRecord(SnapshotRecord):
    title: str
    default_amount: Decimal = Decimal('0')


class NotificationRecord(SnapshotRecord):
    type: NotificationType
    title: str
    message: str = ''
    read: Flag = False
    created_at: LooseDateTime = None
    related_id: RefId = None
    related_type: Annotated[RelatedType | None, BeforeValidator(_blank_to_none)] = None


class EmployeeRecord(SnapshotRecord):
    first_name: str
    last_name: str
    position: OptionalText = None
    phone: OptionalText = None
    email: OptionalText = None
    rate: Decimal = Decimal('0')
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    is_deleted: Flag = False


class ToolRecord(SnapshotRecord):
    name: str
    brand: OptionalText = None
    model: OptionalText = None
    serial_number: OptionalText = None
    status: ToolStatus = ToolStatus.AVAILABLE
    purchase_date: LooseDate = None
    price: Decimal = Decimal('0')
    last_inspection_date: LooseDate = None
    inspection_expiry_date: LooseDate = None
    protocol_number: OptionalText = None
    is_deleted: Flag = False
    assigned_employees: list[EmbeddedRef] = Field(default_factory=list)
    # older exports carry a single assignee
    assigned_to: RefId = None

    @property
    def assigned_employee_ids(self) -> list[int]:
        if self.assigned_employees:
            return [ref.id for ref in self.assigned_employees]
        if self.assigned_to:
            return [self.assigned_to]
        return []


class WarehouseItemRecord(SnapshotRecord):
    name: str
    description: OptionalText = None
    quantity: Decimal = Decimal('0')
    unit: str = 'szt.'
    min_quantity: OptionalDecimal = None
    category: OptionalText = None
    location: OptionalText = None
    last_updated: LooseDateTime = None
    is_deleted: Flag = False


class WarehouseHistoryRecord(SnapshotRecord):
    item_id: int
    type: StockMovementType
    quantity: Decimal
    date: LooseDateTime = None
    reason: OptionalText = None
    user_id: int | None = None


class ClientRecord(SnapshotRecord):
    name: str
    email: OptionalText = None
    phone: OptionalText = None
    notes: OptionalText = None
    color: OptionalText = None
    category_id: RefId = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None


class SupplierRecord(SnapshotRecord):
    name: str
    contact_person: OptionalText = None
    email: OptionalText = None
    phone: OptionalText = None
    address: OptionalText = None
    website: OptionalText = None
    notes: OptionalText = None
    category_id: RefId = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None


class ProjectRecord(SnapshotRecord):
    client_id: int
    parent_project_id: RefId = None
    supplier_ids: list[int] = Field(default_factory=list)
    employee_ids: list[int] = Field(default_factory=list)
    name: str
    description: OptionalText = None
    status: ProjectStatus
    start_date: LooseDate = None
    end_date: LooseDate = None
    total_value: Decimal = Decimal('0')
    quote_due_date: LooseDate = None
    quote_status: Annotated[QuoteStatus | None, BeforeValidator(_blank_to_none)] = None
    quotation_title: OptionalText = None
    accepted_date: LooseDate = None
    created_at: LooseDateTime = None
    address: OptionalText = None
    lat: float | None = None
    lng: float | None = None
    color_marker: OptionalText = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None

    @field_validator('supplier_ids', 'employee_ids', mode='before')
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class TaskRecord(SnapshotRecord):
    project_id: int
    title: str
    description: OptionalText = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: LooseDate = None
    subtasks: ListField = None
    checklist: ListField = None
    created_at: LooseDateTime = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None


class ResourceRecord(SnapshotRecord):
    project_id: int
    name: str
    type: ResourceType
    content: Any = None
    content_url: OptionalText = None
    content_blob: bytes | None = None
    folder: OptionalText = None
    created_at: LooseDateTime = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None

    @field_validator('content_blob', mode='before')
    @classmethod
    def _decode_blob(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if not isinstance(value, str):
            return value
        payload = value.split(',', 1)[1] if value.startswith('data:') else value
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise ValueError('contentBlob is not valid base64') from exc

    @model_validator(mode='after')
    def _legacy_content(self) -> ResourceRecord:
        if self.content_url is None and isinstance(self.content, str) and self.content.strip():
            self.content_url = self.content
        return self


class QuotationItemRecord(SnapshotRecord):
    project_id: int
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    margin: OptionalDecimal = None
    price_with_margin: OptionalDecimal = None
    total: Decimal
    section: OptionalText = None


class CostEstimateRecord(SnapshotRecord):
    project_id: int
    section: str = ''
    description: str
    quantity: Decimal
    unit: str
    unit_net_price: Decimal
    tax_rate: Decimal = Decimal('23')


class OrderRecord(SnapshotRecord):
    project_id: int
    task_id: RefId = None
    supplier_id: RefId = None
    title: str
    amount: Decimal
    net_amount: OptionalDecimal = None
    tax_rate: OptionalDecimal = None
    status: OrderStatus = OrderStatus.PENDING
    date: RequiredDate
    quantity: OptionalDecimal = None
    unit: OptionalText = None
    added_to_warehouse: Flag = False
    notes: OptionalText = None
    url: OptionalText = None
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None


class ExpenseRecord(SnapshotRecord):
    project_id: int
    order_id: RefId = None
    title: str
    amount: Decimal
    net_amount: OptionalDecimal = None
    tax_rate: OptionalDecimal = None
    type: ExpenseType
    date: RequiredDate
    is_deleted: Flag = False
    deleted_at: LooseDateTime = None


class MigrationSnapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')

    client_categories: list[CategoryRecord] = Field(default_factory=list)
    supplier_categories: list[CategoryRecord] = Field(default_factory=list)
    order_templates: list[OrderTemplateRecord] = Field(default_factory=list)
    notifications: list[NotificationRecord] = Field(default_factory=list)
    employees: list[EmployeeRecord] = Field(default_factory=list)
    tools: list[ToolRecord] = Field(default_factory=list)
    warehouse_items: list[WarehouseItemRecord] = Field(default_factory=list)
    warehouse_history: list[WarehouseHistoryRecord] = Field(default_factory=list)
    clients: list[ClientRecord] = Field(default_factory=list)
    suppliers: list[SupplierRecord] = Field(default_factory=list)
    projects: list[ProjectRecord] = Field(default_factory=list)
    tasks: list[TaskRecord] = Field(default_factory=list)
    resources: list[ResourceRecord] = Field(default_factory=list)
    quotation_items: list[QuotationItemRecord] = Field(default_factory=list)
    cost_estimates: list[CostEstimateRecord] = Field(default_factory=list)
    orders: list[OrderRecord] = Field(default_factory=list)
    expenses: list[ExpenseRecord] = Field(default_factory=list)

    @field_validator('*', mode='before')
    @classmethod
    def _null_collection(cls, value: Any) -> Any:
        return [] if value is None else value

    @classmethod
    def from_json(cls, raw: str | bytes) -> MigrationSnapshot:
        return cls.model_validate_json(raw)

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in type(self).model_fields}

    def total_records(self) -> int:
        return sum(self.counts().values())


# (referencing collection, field, referenced collection, required)
REFERENCES: tuple[tuple[str, str, str, bool], ...] = (
    ('warehouse_history', 'item_id', 'warehouse_items', True),
    ('clients', 'category_id', 'client_categories', False),
    ('suppliers', 'category_id', 'supplier_categories', False),
    ('projects', 'client_id', 'clients', True),
    ('projects', 'parent_project_id', 'projects', False),
    ('tasks', 'project_id', 'projects', True),
    ('resources', 'project_id', 'projects', True),
    ('quotation_items', 'project_id', 'projects', True),
    ('cost_estimates', 'project_id', 'projects', True),
    ('orders', 'project_id', 'projects', True),
    ('orders', 'task_id', 'tasks', False),
    ('orders', 'supplier_id', 'suppliers', False),
    ('expenses', 'project_id', 'projects', True),
    ('expenses', 'order_id', 'orders', False),
)

# (referencing collection, list attribute, referenced collection)
LIST_REFERENCES: tuple[tuple[str, str, str], ...] = (
    ('tools', 'assigned_employee_ids', 'employees'),
    ('projects', 'supplier_ids', 'suppliers'),
    ('projects', 'employee_ids', 'employees'),
)


def _source_ids(snapshot: MigrationSnapshot, collection: str) -> set[int]:
    ids: set[int] = set()
    for record in getattr(snapshot, collection):
        if record.id is None:
            continue
        if record.id in ids:
            raise SnapshotError(f'Duplicate id {record.id} in {collection}')
        ids.add(record.id)
    return ids


def find_dangling_references(snapshot: MigrationSnapshot) -> list[str]:
    """Return a description of every reference that points outside the snapshot."""
    known = {name: _source_ids(snapshot, name) for name in type(snapshot).model_fields}
    problems: list[str] = []

    for collection, attr, target, required in REFERENCES:
        for record in getattr(snapshot, collection):
            ref = getattr(record, attr)
            if ref is None:
                if required:
                    problems.append(f'{collection}[id={record.id}].{attr} is missing')
                continue
            if ref not in known[target]:
                problems.append(f'{collection}[id={record.id}].{attr}={ref} not found in {target}')

    for collection, attr, target in LIST_REFERENCES:
        for record in getattr(snapshot, collection):
            for ref in getattr(record, attr):
                if ref not in known[target]:
                    problems.append(f'{collection}[id={record.id}].{attr} contains {ref} not found in {target}')

    return problems
