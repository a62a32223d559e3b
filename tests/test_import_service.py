from __future__ import annotations

import copy
import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from app.db import build_engine, build_session_factory
from app.models import (
    Base,
    Client,
    ClientCategory,
    Employee,
    Expense,
    ExpenseType,
    Notification,
    Order,
    Project,
    ProjectEmployee,
    ProjectSupplier,
    Resource,
    Supplier,
    Task,
    Tool,
    ToolEmployee,
    WarehouseHistoryItem,
    WarehouseItem,
)
from app.services import import_service
from app.services.import_service import DELETE_ORDER, ImportBusyError, migrate_data
from app.services.snapshot import decode_list_field

CHECKLIST = [{'id': 1, 'text': 'Buy paint', 'completed': False}, {'id': 2, 'text': 'Tape edges', 'completed': True}]


def sample_snapshot() -> dict:
    return {
        'clientCategories': [{'id': 1, 'name': 'Private'}],
        'supplierCategories': [{'id': 3, 'name': 'Materials'}],
        'orderTemplates': [{'id': 1, 'title': 'Cement', 'defaultAmount': 120}],
        'notifications': [
            {
                'id': 1,
                'type': 'task_created',
                'title': 'New task',
                'message': 'Paint walls',
                'read': 0,
                'relatedId': 100,
                'relatedType': 'task',
                'createdAt': '2024-03-01T09:00:00.000Z',
            }
        ],
        'employees': [
            {'id': 7, 'firstName': 'Jan', 'lastName': 'Kowalski', 'rate': 50, 'status': 'Active'},
            {'id': 8, 'firstName': 'Anna', 'lastName': 'Nowak', 'rate': 60, 'status': 'Inactive'},
        ],
        'tools': [
            {
                'id': 1,
                'name': 'Drill',
                'status': 'In Use',
                'price': 300,
                'inspectionExpiryDate': '2024-12-31',
                'assignedEmployees': [{'id': 7, 'firstName': 'Jan', 'lastName': 'Kowalski'}],
            },
            {'id': 2, 'name': 'Ladder', 'status': 'Available', 'assignedTo': 8},
        ],
        'warehouseItems': [{'id': 4, 'name': 'Paint', 'quantity': 10, 'unit': 'l', 'minQuantity': 2}],
        'warehouseHistory': [
            {'id': 1, 'itemId': 4, 'type': 'IN', 'quantity': 10, 'date': '2024-03-01T10:00:00.000Z'},
        ],
        'clients': [
            {'id': 10, 'name': 'Alice', 'categoryId': 1, 'color': '#ff0000'},
            {'id': 11, 'name': 'Bob', 'categoryId': 0},
        ],
        'suppliers': [
            {'id': 2, 'name': 'Supplier Two', 'categoryId': 3},
            {'id': 5, 'name': 'Supplier Five'},
        ],
        # Children listed before their parents.
        'projects': [
            {
                'id': 30,
                'clientId': 10,
                'parentProjectId': 20,
                'name': 'C',
                'status': 'Active',
                'totalValue': 100,
                'supplierIds': [2, 5],
                'employeeIds': [7],
            },
            {'id': 20, 'clientId': 10, 'parentProjectId': 15, 'name': 'B', 'status': 'Active', 'totalValue': 200},
            {
                'id': 15,
                'clientId': 11,
                'parentProjectId': None,
                'name': 'A',
                'status': 'Completed',
                'totalValue': 1000,
                'endDate': '2024-02-28',
                'supplierIds': None,
            },
        ],
        'tasks': [
            {
                'id': 100,
                'projectId': 30,
                'title': 'Paint walls',
                'status': 'Todo',
                'priority': 'High',
                'checklist': '[{"id": 1, "text": "Buy paint", "completed": false}, '
                '{"id": 2, "text": "Tape edges", "completed": true}]',
            },
            {'id': 101, 'projectId': 30, 'title': 'Lay tiles', 'checklist': copy.deepcopy(CHECKLIST)},
            {'id': 102, 'projectId': 20, 'title': 'Measure', 'checklist': None, 'subtasks': []},
        ],
        'resources': [
            {'id': 1, 'projectId': 15, 'name': 'Plan', 'type': 'Link', 'content': 'https://example.com/plan.pdf'},
        ],
        'quotationItems': [
            {'id': 1, 'projectId': 15, 'description': 'Walls', 'quantity': 2, 'unit': 'm2', 'unitPrice': 50, 'total': 100},
        ],
        'costEstimates': [
            {
                'id': 1,
                'projectId': 30,
                'section': 'Walls',
                'description': 'Paint',
                'quantity': 2,
                'unit': 'l',
                'unitNetPrice': 10,
                'taxRate': 23,
            },
        ],
        'orders': [
            {
                'id': 200,
                'projectId': 30,
                'taskId': 100,
                'supplierId': 5,
                'title': 'Paint order',
                'amount': 246,
                'status': 'Ordered',
                'date': '2024-03-02',
            },
            {
                'id': 201,
                'projectId': 15,
                'supplierId': 2,
                'title': 'Tiles',
                'amount': 500,
                'status': 'Delivered',
                'date': '2024-02-01',
                'isDeleted': 1,
                'deletedAt': '2024-02-05T12:00:00.000Z',
            },
        ],
        'expenses': [
            {
                'id': 300,
                'projectId': 30,
                'orderId': 200,
                'title': 'Order: Paint order',
                'amount': 246,
                'type': 'Purchase',
                'date': '2024-03-02',
            },
            {'id': 301, 'projectId': 15, 'title': 'Labour', 'amount': 400, 'type': 'Employee', 'date': '2024-02-10'},
        ],
    }


class ImportServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine(
            'sqlite+pysqlite://',
            poolclass=StaticPool,
            connect_args={'check_same_thread': False},
        )
        Base.metadata.create_all(self.engine)
        self.Session = build_session_factory(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _import(self, snapshot: dict | None = None):
        return migrate_data(snapshot or sample_snapshot(), session_factory=self.Session)

    def _count(self, model) -> int:
        with self.Session() as db:
            return db.execute(select(func.count()).select_from(model)).scalar_one()

    def _counts(self) -> dict[str, int]:
        return {model.__tablename__: self._count(model) for model in DELETE_ORDER}

    def test_import_reports_success_and_counts(self) -> None:
        result = self._import()

        self.assertTrue(result.success, result.error)
        self.assertIsNone(result.error)
        self.assertEqual(result.as_dict(), {'success': True})
        self.assertEqual(result.counts['projects'], 3)
        self.assertEqual(result.counts['tasks'], 3)
        self.assertEqual(self._count(Project), 3)
        self.assertEqual(self._count(Order), 2)
        self.assertEqual(self._count(Expense), 2)
        self.assertEqual(self._count(ProjectSupplier), 2)
        self.assertEqual(self._count(ToolEmployee), 2)

    def test_self_reference_chain_is_preserved(self) -> None:
        self.assertTrue(self._import().success)

        with self.Session() as db:
            projects = {p.name: p for p in db.execute(select(Project)).scalars()}
        self.assertEqual(projects['C'].parent_project_id, projects['B'].id)
        self.assertEqual(projects['B'].parent_project_id, projects['A'].id)
        self.assertIsNone(projects['A'].parent_project_id)

    def test_references_resolve_to_the_same_named_rows(self) -> None:
        self.assertTrue(self._import().success)

        with self.Session() as db:
            rows = db.execute(
                select(Order.title, Supplier.name, Task.title, Project.name)
                .join(Supplier, Supplier.id == Order.supplier_id)
                .join(Project, Project.id == Order.project_id)
                .outerjoin(Task, Task.id == Order.task_id)
            ).all()
            expense_order = db.execute(
                select(Order.title).join(Expense, Expense.order_id == Order.id).where(Expense.title == 'Order: Paint order')
            ).scalar_one()
            clients = {
                c.name: c for c in db.execute(select(Client)).scalars()
            }
            category = db.execute(select(ClientCategory).where(ClientCategory.name == 'Private')).scalar_one()

        self.assertEqual(
            sorted(rows),
            [('Paint order', 'Supplier Five', 'Paint walls', 'C'), ('Tiles', 'Supplier Two', None, 'A')],
        )
        self.assertEqual(expense_order, 'Paint order')
        self.assertEqual(clients['Alice'].category_id, category.id)
        self.assertIsNone(clients['Bob'].category_id)

    def test_many_to_many_links_are_preserved(self) -> None:
        self.assertTrue(self._import().success)

        with self.Session() as db:
            project_c = db.execute(select(Project).where(Project.name == 'C')).scalar_one()
            supplier_names = set(
                db.execute(
                    select(Supplier.name)
                    .join(ProjectSupplier, ProjectSupplier.supplier_id == Supplier.id)
                    .where(ProjectSupplier.project_id == project_c.id)
                ).scalars()
            )
            employee_names = set(
                db.execute(
                    select(Employee.first_name)
                    .join(ProjectEmployee, ProjectEmployee.employee_id == Employee.id)
                    .where(ProjectEmployee.project_id == project_c.id)
                ).scalars()
            )
            tool_assignments = set(
                db.execute(
                    select(Tool.name, Employee.first_name)
                    .join(ToolEmployee, ToolEmployee.tool_id == Tool.id)
                    .join(Employee, Employee.id == ToolEmployee.employee_id)
                ).all()
            )

        self.assertEqual(supplier_names, {'Supplier Two', 'Supplier Five'})
        self.assertEqual(employee_names, {'Jan'})
        self.assertEqual(tool_assignments, {('Drill', 'Jan'), ('Ladder', 'Anna')})

    def test_encoded_and_structured_checklists_decode_to_the_same_list(self) -> None:
        self.assertTrue(self._import().success)

        with self.Session() as db:
            tasks = {t.title: t for t in db.execute(select(Task)).scalars()}
        self.assertEqual(decode_list_field(tasks['Paint walls'].checklist), CHECKLIST)
        self.assertEqual(decode_list_field(tasks['Lay tiles'].checklist), CHECKLIST)
        self.assertIsNone(tasks['Measure'].checklist)
        self.assertIsNone(tasks['Measure'].subtasks)

    def test_rerun_with_same_snapshot_gives_same_logical_data(self) -> None:
        self.assertTrue(self._import().success)
        first_counts = self._counts()
        with self.Session() as db:
            first_total = db.execute(select(func.sum(Project.total_value))).scalar_one()

        self.assertTrue(self._import().success)
        with self.Session() as db:
            second_total = db.execute(select(func.sum(Project.total_value))).scalar_one()

        self.assertEqual(self._counts(), first_counts)
        self.assertEqual(Decimal(str(second_total)), Decimal(str(first_total)))
        self.assertEqual(Decimal(str(first_total)), Decimal('1300'))

    def test_failure_in_last_step_leaves_previous_data_untouched(self) -> None:
        self.assertTrue(self._import().success)
        before = self._counts()
        with self.Session() as db:
            before_names = sorted(db.execute(select(Project.name)).scalars())

        def boom(ctx) -> int:
            raise RuntimeError('disk full')

        replacement = sample_snapshot()
        replacement['projects'] = [{'id': 1, 'clientId': 10, 'name': 'Only', 'status': 'Active'}]
        replacement['tasks'] = []
        replacement['resources'] = []
        replacement['quotationItems'] = []
        replacement['costEstimates'] = []
        replacement['orders'] = []
        replacement['expenses'] = []

        steps = import_service.IMPORT_STEPS[:-1] + (('expenses', boom),)
        with patch.object(import_service, 'IMPORT_STEPS', steps):
            result = self._import(replacement)

        self.assertFalse(result.success)
        self.assertIn('disk full', result.error)
        self.assertEqual(result.as_dict(), {'success': False, 'error': 'disk full'})
        self.assertEqual(self._counts(), before)
        with self.Session() as db:
            self.assertEqual(sorted(db.execute(select(Project.name)).scalars()), before_names)

    def test_foreign_key_violation_rolls_back_the_run(self) -> None:
        self.assertTrue(self._import().success)
        before = self._counts()
        with self.Session() as db:
            before_names = sorted(db.execute(select(Project.name)).scalars())

        def orphan_expense(ctx) -> int:
            ctx.db.add(
                Expense(
                    project_id=999999,
                    title='Orphan',
                    amount=Decimal('1'),
                    type=ExpenseType.EMPLOYEE,
                    date=date(2024, 1, 1),
                )
            )
            ctx.db.flush()
            return 1

        steps = import_service.IMPORT_STEPS[:-1] + (('expenses', orphan_expense),)
        with patch.object(import_service, 'IMPORT_STEPS', steps):
            result = self._import()

        self.assertFalse(result.success)
        self.assertIn('FOREIGN KEY constraint failed', result.error)
        self.assertEqual(self._counts(), before)
        with self.Session() as db:
            self.assertEqual(sorted(db.execute(select(Project.name)).scalars()), before_names)
            self.assertIsNone(db.execute(select(Expense).where(Expense.title == 'Orphan')).scalar_one_or_none())

    def test_advisory_lock_held_elsewhere_rejects_the_run(self) -> None:
        db = MagicMock()
        db.get_bind.return_value.dialect.name = 'postgresql'
        db.execute.return_value.scalar.return_value = False

        with self.assertRaisesRegex(ImportBusyError, 'An import is already running'):
            import_service._acquire_advisory_lock(db)
        statement = db.execute.call_args.args[0]
        self.assertIn('pg_try_advisory_xact_lock', str(statement))

        db.execute.return_value.scalar.return_value = True
        import_service._acquire_advisory_lock(db)

    def test_advisory_lock_is_skipped_on_sqlite(self) -> None:
        db = MagicMock()
        db.get_bind.return_value.dialect.name = 'sqlite'

        import_service._acquire_advisory_lock(db)

        db.execute.assert_not_called()

    def test_busy_database_lock_fails_the_run_without_writes(self) -> None:
        with patch.object(
            import_service,
            '_acquire_advisory_lock',
            side_effect=ImportBusyError('An import is already running'),
        ):
            result = self._import()

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'An import is already running')
        self.assertEqual(self._count(Project), 0)
        # The in-process lock is released again.
        self.assertTrue(self._import().success)

    def test_dangling_reference_is_rejected_before_any_write(self) -> None:
        self.assertTrue(self._import().success)
        before = self._counts()

        broken = sample_snapshot()
        broken['projects'][1]['clientId'] = 999
        result = self._import(broken)

        self.assertFalse(result.success)
        self.assertIn('client_id=999', result.error)
        self.assertEqual(self._counts(), before)

    def test_malformed_record_is_rejected(self) -> None:
        broken = sample_snapshot()
        broken['tasks'][0]['checklist'] = 42
        result = self._import(broken)

        self.assertFalse(result.success)
        self.assertEqual(self._count(Task), 0)

    def test_concurrent_run_is_rejected(self) -> None:
        self.assertTrue(import_service._import_lock.acquire(blocking=False))
        try:
            result = self._import()
        finally:
            import_service._import_lock.release()

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'An import is already running')
        self.assertEqual(self._count(Project), 0)

    def test_soft_deleted_rows_and_soft_links_survive_import(self) -> None:
        self.assertTrue(self._import().success)

        with self.Session() as db:
            tiles = db.execute(select(Order).where(Order.title == 'Tiles')).scalar_one()
            notification = db.execute(select(Notification)).scalar_one()
            paint_task = db.execute(select(Task).where(Task.title == 'Paint walls')).scalar_one()
            resource = db.execute(select(Resource)).scalar_one()
            history = db.execute(select(WarehouseHistoryItem)).scalar_one()
            item = db.execute(select(WarehouseItem)).scalar_one()

        self.assertTrue(tiles.is_deleted)
        self.assertIsNotNone(tiles.deleted_at)
        self.assertEqual(notification.related_id, paint_task.id)
        self.assertFalse(notification.read)
        self.assertEqual(resource.content_url, 'https://example.com/plan.pdf')
        self.assertEqual(history.item_id, item.id)

    def test_empty_snapshot_clears_business_tables(self) -> None:
        self.assertTrue(self._import().success)

        result = migrate_data({}, session_factory=self.Session)

        self.assertTrue(result.success, result.error)
        self.assertEqual(sum(self._counts().values()), 0)


if __name__ == '__main__':
    unittest.main()
