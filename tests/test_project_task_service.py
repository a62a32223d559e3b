from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from app.db import build_engine, build_session_factory
from app.models import (
    Base,
    Client,
    Employee,
    EmployeeStatus,
    NotificationType,
    ProjectStatus,
    ProjectSupplier,
    RelatedType,
    Supplier,
    TaskStatus,
)
from app.services.notification_service import list_notifications, mark_all_read, mark_read
from app.services.project_service import (
    ProjectInput,
    create_project,
    delete_project,
    get_project_detail,
    list_projects,
    update_project,
)
from app.services.snapshot import decode_list_field
from app.services.task_service import (
    create_task,
    list_tasks,
    set_status,
    toggle_checklist_item,
    update_task,
)


class ProjectServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
        Base.metadata.create_all(self.engine)
        self.db = build_session_factory(self.engine)()

        self.client = Client(name='Alice')
        self.supplier = Supplier(name='Timber Co')
        self.employee = Employee(first_name='Jan', last_name='Kowalski', status=EmployeeStatus.ACTIVE)
        self.db.add_all([self.client, self.supplier, self.employee])
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _input(self, **overrides) -> ProjectInput:
        values = {'client_id': self.client.id, 'name': 'House'}
        values.update(overrides)
        return ProjectInput(**values)

    def test_create_with_links_and_nested_listing(self) -> None:
        parent = create_project(
            self.db,
            data=self._input(supplier_ids=(self.supplier.id, self.supplier.id), employee_ids=(self.employee.id,)),
        )
        child = create_project(self.db, data=self._input(name='Roof', parent_project_id=parent.id))
        self.db.commit()

        links = list(self.db.execute(select(ProjectSupplier)).scalars())
        self.assertEqual(len(links), 1)
        listed = list_projects(self.db)
        self.assertEqual([row['project'].id for row in listed], [parent.id])
        self.assertEqual([p.id for p in listed[0]['subprojects']], [child.id])

        detail = get_project_detail(self.db, project_id=parent.id)
        self.assertEqual(detail['supplier_ids'], [self.supplier.id])
        self.assertEqual(detail['employee_ids'], [self.employee.id])
        self.assertEqual([p.id for p in detail['subprojects']], [child.id])
        self.assertEqual(detail['expenses_total'], Decimal('0'))

    def test_validation(self) -> None:
        with self.assertRaises(ValueError):
            create_project(self.db, data=self._input(name='  '))
        with self.assertRaises(ValueError):
            create_project(self.db, data=self._input(client_id=404))
        with self.assertRaises(ValueError):
            create_project(self.db, data=self._input(start_date=date(2024, 5, 2), end_date=date(2024, 5, 1)))
        with self.assertRaises(ValueError):
            create_project(self.db, data=self._input(supplier_ids=(77,)))

    def test_parent_cycle_is_rejected(self) -> None:
        a = create_project(self.db, data=self._input(name='A'))
        b = create_project(self.db, data=self._input(name='B', parent_project_id=a.id))
        self.db.commit()

        with self.assertRaisesRegex(ValueError, 'own parent'):
            update_project(self.db, project_id=a.id, data=self._input(name='A', parent_project_id=b.id))

    def test_deleted_project_is_hidden(self) -> None:
        project = create_project(self.db, data=self._input(status=ProjectStatus.TO_QUOTE))
        self.db.commit()
        delete_project(self.db, project_id=project.id)
        self.db.commit()

        self.assertEqual(list_projects(self.db), [])
        with self.assertRaises(ValueError):
            get_project_detail(self.db, project_id=project.id)


class TaskServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
        Base.metadata.create_all(self.engine)
        self.db = build_session_factory(self.engine)()
        client = Client(name='Alice')
        self.db.add(client)
        self.db.flush()
        self.project = create_project(self.db, data=ProjectInput(client_id=client.id, name='Kitchen'))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_create_task_encodes_lists_and_notifies(self) -> None:
        task = create_task(
            self.db,
            project_id=self.project.id,
            title=' Paint walls ',
            checklist=[{'id': 1, 'text': 'Buy paint', 'completed': False}],
        )
        self.db.commit()

        self.assertEqual(task.title, 'Paint walls')
        self.assertIsNone(task.subtasks)
        self.assertEqual(decode_list_field(task.checklist), [{'id': 1, 'text': 'Buy paint', 'completed': False}])
        notifications = list_notifications(self.db)
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].type, NotificationType.TASK_CREATED)
        self.assertEqual(notifications[0].related_type, RelatedType.TASK)
        self.assertEqual(notifications[0].related_id, task.id)

    def test_toggle_checklist_item(self) -> None:
        task = create_task(
            self.db,
            project_id=self.project.id,
            title='Paint',
            checklist='[{"id": 1, "text": "Tape", "completed": false}]',
        )

        toggle_checklist_item(self.db, task_id=task.id, item_id='1')
        self.assertTrue(decode_list_field(task.checklist)[0]['completed'])
        with self.assertRaises(ValueError):
            toggle_checklist_item(self.db, task_id=task.id, item_id=2)

    def test_update_and_filter_by_status(self) -> None:
        first = create_task(self.db, project_id=self.project.id, title='Measure', due_date=date(2024, 6, 1))
        second = create_task(self.db, project_id=self.project.id, title='Order')
        set_status(self.db, task_id=first.id, status=TaskStatus.DONE)
        update_task(self.db, task_id=second.id, subtasks=[{'id': 'a', 'title': 'Call'}], description='Windows')
        self.db.commit()

        self.assertEqual([t.id for t in list_tasks(self.db, project_id=self.project.id)], [first.id, second.id])
        self.assertEqual([t.id for t in list_tasks(self.db, status=TaskStatus.TODO)], [second.id])
        self.assertEqual(second.description, 'Windows')
        with self.assertRaises(ValueError):
            update_task(self.db, task_id=second.id, project_id=3)
        with self.assertRaises(ValueError):
            update_task(self.db, task_id=second.id, title='')

    def test_notifications_can_be_marked_read(self) -> None:
        create_task(self.db, project_id=self.project.id, title='One')
        create_task(self.db, project_id=self.project.id, title='Two')
        self.db.commit()
        first = list_notifications(self.db)[0]

        mark_read(self.db, notification_id=first.id)
        self.assertEqual(len(list_notifications(self.db, unread_only=True)), 1)
        self.assertEqual(mark_all_read(self.db), 1)
        self.assertEqual(list_notifications(self.db, unread_only=True), [])
        with self.assertRaises(ValueError):
            mark_read(self.db, notification_id=999)


if __name__ == '__main__':
    unittest.main()
