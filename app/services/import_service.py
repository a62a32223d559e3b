"""
Bulk import of a full offline-client snapshot into the relational store.

A run deletes every row of the business tables and re-creates them from the
snapshot inside one transaction. Source ids are discarded; every reference is
translated to the id the database assigned during the same run. Projects
reference each other (parent/subproject), so they are inserted without the
parent link first and patched once every project row exists.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.db import SessionLocal
from app.models import (
    Client,
    ClientCategory,
    CostEstimateItem,
    Employee,
    Expense,
    Notification,
    Order,
    OrderTemplate,
    Project,
    ProjectEmployee,
    ProjectSupplier,
    QuotationItem,
    RelatedType,
    Resource,
    Supplier,
    SupplierCategory,
    Task,
    Tool,
    ToolEmployee,
    WarehouseHistoryItem,
    WarehouseItem,
)
from app.services.snapshot import MigrationSnapshot, SnapshotError, SnapshotRecord, find_dangling_references

logger = logging.getLogger(__name__)

# Most dependent first. Project.parent_project_id is cleared before Project rows go.
DELETE_ORDER: tuple[type, ...] = (
    Expense,
    Order,
    Task,
    Resource,
    QuotationItem,
    CostEstimateItem,
    ProjectSupplier,
    ProjectEmployee,
    Project,
    ToolEmployee,
    Tool,
    Employee,
    WarehouseHistoryItem,
    WarehouseItem,
    Client,
    Supplier,
    ClientCategory,
    SupplierCategory,
    OrderTemplate,
    Notification,
)

IMPORT_ADVISORY_LOCK_KEY = 0x52454E4F  # 'RENO'
SERVER_DEFAULTED_COLUMNS = ('created_at', 'last_updated')

_import_lock = threading.Lock()


class ImportBusyError(RuntimeError):
    pass


@dataclass(frozen=True)
class ImportResult:
    success: bool
    error: str | None = None
    counts: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        if self.success:
            return {'success': True}
        return {'success': False, 'error': self.error}


class IdMap:
    """Source id -> destination id, per snapshot collection."""

    def __init__(self) -> None:
        self._maps: dict[str, dict[int, int]] = {}

    def record(self, collection: str, source_id: int | None, new_id: int) -> None:
        if source_id is None:
            return
        self._maps.setdefault(collection, {})[source_id] = new_id

    def resolve(self, collection: str, source_id: int, *, owner: str) -> int:
        try:
            return self._maps[collection][source_id]
        except KeyError:
            raise SnapshotError(f'{owner} references unknown {collection} id {source_id}') from None

    def resolve_optional(self, collection: str, source_id: int | None, *, owner: str) -> int | None:
        if source_id is None:
            return None
        return self.resolve(collection, source_id, owner=owner)

    def get(self, collection: str, source_id: int | None) -> int | None:
        if source_id is None:
            return None
        return self._maps.get(collection, {}).get(source_id)


@dataclass
class _ImportContext:
    db: Session
    snapshot: MigrationSnapshot
    ids: IdMap = field(default_factory=IdMap)
    notifications: list[tuple[Notification, Any]] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _row_values(record: SnapshotRecord, *, exclude: Iterable[str] = ()) -> dict[str, Any]:
    values = record.model_dump(exclude={'id', *exclude})
    for column in SERVER_DEFAULTED_COLUMNS:
        if column in values and values[column] is None:
            del values[column]
    return values


def _insert(ctx: _ImportContext, collection: str, model: type, rows: list[tuple[SnapshotRecord, dict[str, Any]]]) -> list:
    objects = [model(**values) for _, values in rows]
    ctx.db.add_all(objects)
    ctx.db.flush()
    for (record, _), obj in zip(rows, objects):
        ctx.ids.record(collection, record.id, obj.id)
    return objects


def _unique(values: Iterable[int]) -> list[int]:
    return list(dict.fromkeys(values))


def clear_business_tables(db: Session) -> None:
    for model in DELETE_ORDER:
        if model is Project:
            db.execute(update(Project).values(parent_project_id=None))
        db.execute(delete(model))
    db.flush()


def _import_simple(collection: str, model: type) -> Callable[[_ImportContext], int]:
    def _step(ctx: _ImportContext) -> int:
        records = getattr(ctx.snapshot, collection)
        _insert(ctx, collection, model, [(r, _row_values(r)) for r in records])
        return len(records)

    _step.__name__ = f'_import_{collection}'
    return _step


def _import_notifications(ctx: _ImportContext) -> int:
    records = ctx.snapshot.notifications
    rows = [(r, _row_values(r, exclude={'related_id'})) for r in records]
    objects = _insert(ctx, 'notifications', Notification, rows)
    ctx.notifications = list(zip(objects, records))
    return len(records)


def _import_tools(ctx: _ImportContext) -> int:
    records = ctx.snapshot.tools
    rows = [(r, _row_values(r, exclude={'assigned_employees', 'assigned_to'})) for r in records]
    tools = _insert(ctx, 'tools', Tool, rows)

    links = []
    for tool, record in zip(tools, records):
        owner = f'tools[id={record.id}]'
        for employee_id in _unique(record.assigned_employee_ids):
            links.append(
                ToolEmployee(tool_id=tool.id, employee_id=ctx.ids.resolve('employees', employee_id, owner=owner))
            )
    ctx.db.add_all(links)
    ctx.db.flush()
    return len(records)


def _import_warehouse_history(ctx: _ImportContext) -> int:
    records = ctx.snapshot.warehouse_history
    rows = []
    for record in records:
        values = _row_values(record)
        values['item_id'] = ctx.ids.resolve('warehouse_items', record.item_id, owner=f'warehouse_history[id={record.id}]')
        values['date'] = values['date'] or _now()
        rows.append((record, values))
    _insert(ctx, 'warehouse_history', WarehouseHistoryItem, rows)
    return len(records)


def _with_category(collection: str, model: type, category_collection: str) -> Callable[[_ImportContext], int]:
    def _step(ctx: _ImportContext) -> int:
        records = getattr(ctx.snapshot, collection)
        rows = []
        for record in records:
            values = _row_values(record)
            values['category_id'] = ctx.ids.resolve_optional(
                category_collection, record.category_id, owner=f'{collection}[id={record.id}]'
            )
            rows.append((record, values))
        _insert(ctx, collection, model, rows)
        return len(records)

    _step.__name__ = f'_import_{collection}'
    return _step


def _import_projects(ctx: _ImportContext) -> int:
    records = ctx.snapshot.projects

    # Pass 1: every project without its parent link so all ids exist.
    rows = []
    for record in records:
        values = _row_values(record, exclude={'parent_project_id', 'supplier_ids', 'employee_ids'})
        values['client_id'] = ctx.ids.resolve('clients', record.client_id, owner=f'projects[id={record.id}]')
        values['parent_project_id'] = None
        rows.append((record, values))
    projects = _insert(ctx, 'projects', Project, rows)
    logger.info('Imported %s projects (pass 1)', len(projects))

    # Pass 2: parent links and supplier/employee assignments.
    links: list[Any] = []
    for project, record in zip(projects, records):
        owner = f'projects[id={record.id}]'
        project.parent_project_id = ctx.ids.resolve_optional('projects', record.parent_project_id, owner=owner)
        for supplier_id in _unique(record.supplier_ids):
            links.append(
                ProjectSupplier(project_id=project.id, supplier_id=ctx.ids.resolve('suppliers', supplier_id, owner=owner))
            )
        for employee_id in _unique(record.employee_ids):
            links.append(
                ProjectEmployee(project_id=project.id, employee_id=ctx.ids.resolve('employees', employee_id, owner=owner))
            )
    ctx.db.add_all(links)
    ctx.db.flush()
    return len(records)


def _project_dependent(collection: str, model: type, *, exclude: Iterable[str] = ()) -> Callable[[_ImportContext], int]:
    excluded = set(exclude)

    def _step(ctx: _ImportContext) -> int:
        records = getattr(ctx.snapshot, collection)
        rows = []
        for record in records:
            values = _row_values(record, exclude=excluded)
            values['project_id'] = ctx.ids.resolve('projects', record.project_id, owner=f'{collection}[id={record.id}]')
            rows.append((record, values))
        _insert(ctx, collection, model, rows)
        return len(records)

    _step.__name__ = f'_import_{collection}'
    return _step


def _import_orders(ctx: _ImportContext) -> int:
    records = ctx.snapshot.orders
    rows = []
    for record in records:
        owner = f'orders[id={record.id}]'
        values = _row_values(record)
        values['project_id'] = ctx.ids.resolve('projects', record.project_id, owner=owner)
        values['task_id'] = ctx.ids.resolve_optional('tasks', record.task_id, owner=owner)
        values['supplier_id'] = ctx.ids.resolve_optional('suppliers', record.supplier_id, owner=owner)
        rows.append((record, values))
    _insert(ctx, 'orders', Order, rows)
    return len(records)


def _import_expenses(ctx: _ImportContext) -> int:
    records = ctx.snapshot.expenses
    rows = []
    for record in records:
        owner = f'expenses[id={record.id}]'
        values = _row_values(record)
        values['project_id'] = ctx.ids.resolve('projects', record.project_id, owner=owner)
        values['order_id'] = ctx.ids.resolve_optional('orders', record.order_id, owner=owner)
        rows.append((record, values))
    _insert(ctx, 'expenses', Expense, rows)
    return len(records)


_RELATED_COLLECTIONS = {
    RelatedType.TASK: 'tasks',
    RelatedType.ORDER: 'orders',
    RelatedType.PROJECT: 'projects',
}


def _relink_notifications(ctx: _ImportContext) -> int:
    # Soft link without a foreign key; a target that is gone leaves it empty.
    relinked = 0
    for notification, record in ctx.notifications:
        collection = _RELATED_COLLECTIONS.get(record.related_type)
        if collection is None:
            continue
        notification.related_id = ctx.ids.get(collection, record.related_id)
        relinked += notification.related_id is not None
    ctx.db.flush()
    return relinked


# Least dependent first.
IMPORT_STEPS: tuple[tuple[str, Callable[[_ImportContext], int]], ...] = (
    ('client_categories', _import_simple('client_categories', ClientCategory)),
    ('supplier_categories', _import_simple('supplier_categories', SupplierCategory)),
    ('order_templates', _import_simple('order_templates', OrderTemplate)),
    ('notifications', _import_notifications),
    ('employees', _import_simple('employees', Employee)),
    ('tools', _import_tools),
    ('warehouse_items', _import_simple('warehouse_items', WarehouseItem)),
    ('warehouse_history', _import_warehouse_history),
    ('clients', _with_category('clients', Client, 'client_categories')),
    ('suppliers', _with_category('suppliers', Supplier, 'supplier_categories')),
    ('projects', _import_projects),
    ('tasks', _project_dependent('tasks', Task)),
    ('resources', _project_dependent('resources', Resource, exclude={'content'})),
    ('quotation_items', _project_dependent('quotation_items', QuotationItem)),
    ('cost_estimates', _project_dependent('cost_estimates', CostEstimateItem)),
    ('orders', _import_orders),
    ('expenses', _import_expenses),
)


def import_snapshot(db: Session, snapshot: MigrationSnapshot) -> dict[str, int]:
    """Replace the business tables with the snapshot. Flushes only; the caller owns the transaction."""
    clear_business_tables(db)
    logger.info('Cleanup complete, importing %s records', snapshot.total_records())

    ctx = _ImportContext(db=db, snapshot=snapshot)
    counts: dict[str, int] = {}
    for collection, step in IMPORT_STEPS:
        counts[collection] = step(ctx)
        logger.debug('Imported %s: %s', collection, counts[collection])
    _relink_notifications(ctx)
    return counts


def _acquire_advisory_lock(db: Session) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return
    acquired = db.execute(select(func.pg_try_advisory_xact_lock(IMPORT_ADVISORY_LOCK_KEY))).scalar()
    if not acquired:
        raise ImportBusyError('An import is already running')


def parse_snapshot(data: MigrationSnapshot | Mapping[str, Any] | str | bytes) -> MigrationSnapshot:
    if isinstance(data, MigrationSnapshot):
        snapshot = data
    elif isinstance(data, (str, bytes)):
        snapshot = MigrationSnapshot.from_json(data)
    else:
        snapshot = MigrationSnapshot.model_validate(data)

    problems = find_dangling_references(snapshot)
    if problems:
        shown = '; '.join(problems[:10])
        more = f' (and {len(problems) - 10} more)' if len(problems) > 10 else ''
        raise SnapshotError(f'Snapshot has {len(problems)} broken reference(s): {shown}{more}')
    return snapshot


def migrate_data(
    data: MigrationSnapshot | Mapping[str, Any] | str | bytes,
    *,
    session_factory: sessionmaker[Session] | None = None,
) -> ImportResult:
    """Run one complete import and report the outcome; nothing is committed on failure."""
    session_factory = session_factory or SessionLocal
    logger.info('Starting data import')

    if not _import_lock.acquire(blocking=False):
        logger.warning('Data import rejected: another import is running')
        return ImportResult(success=False, error='An import is already running')

    try:
        snapshot = parse_snapshot(data)
        with session_factory() as db:
            with db.begin():
                _acquire_advisory_lock(db)
                counts = import_snapshot(db, snapshot)
    except Exception as exc:
        logger.exception('Data import failed, all changes rolled back')
        return ImportResult(success=False, error=str(exc) or exc.__class__.__name__)
    finally:
        _import_lock.release()

    logger.info('Data import committed: %s', counts)
    return ImportResult(success=True, counts=counts)
