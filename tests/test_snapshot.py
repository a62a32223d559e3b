from __future__ import annotations

import json
import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from pydantic import ValidationError

from app.models import ResourceType
from app.services.snapshot import (
    MigrationSnapshot,
    SnapshotError,
    decode_list_field,
    encode_list_field,
    find_dangling_references,
)


class ListFieldTests(unittest.TestCase):
    def test_encoded_text_passes_through_unchanged(self) -> None:
        raw = '[{"id":1,"title":"Prime","completed":false}]'
        self.assertEqual(encode_list_field(raw), raw)

    def test_structured_list_is_json_encoded(self) -> None:
        encoded = encode_list_field([{'id': 1, 'text': 'Zażółć', 'completed': True}])
        self.assertEqual(json.loads(encoded), [{'id': 1, 'text': 'Zażółć', 'completed': True}])
        self.assertIn('Zażółć', encoded)

    def test_empty_values_become_null(self) -> None:
        for value in (None, '', []):
            self.assertIsNone(encode_list_field(value))

    def test_other_shapes_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            encode_list_field({'id': 1})
        with self.assertRaises(ValueError):
            encode_list_field(42)

    def test_decode_is_tolerant(self) -> None:
        self.assertEqual(decode_list_field('[{"id": 1}]'), [{'id': 1}])
        self.assertIsNone(decode_list_field('not json'))
        self.assertIsNone(decode_list_field('{"id": 1}'))
        self.assertIsNone(decode_list_field(None))


class MigrationSnapshotTests(unittest.TestCase):
    def test_missing_and_null_collections_are_empty(self) -> None:
        snapshot = MigrationSnapshot.model_validate({'clients': None})
        self.assertEqual(snapshot.clients, [])
        self.assertEqual(snapshot.projects, [])
        self.assertEqual(snapshot.total_records(), 0)

    def test_camel_case_fields_and_loose_values(self) -> None:
        snapshot = MigrationSnapshot.from_json(
            json.dumps(
                {
                    'clients': [{'id': 1, 'name': 'Alice', 'email': '  ', 'categoryId': 0}],
                    'projects': [
                        {
                            'id': 2,
                            'clientId': 1,
                            'name': 'Attic',
                            'status': 'To Quote',
                            'startDate': '2024-05-01T00:00:00.000Z',
                            'createdAt': 1714521600000,
                            'quoteStatus': 'W trakcie',
                            'totalValue': '1500.50',
                            'isDeleted': 0,
                        }
                    ],
                }
            )
        )
        client = snapshot.clients[0]
        project = snapshot.projects[0]

        self.assertIsNone(client.email)
        self.assertIsNone(client.category_id)
        self.assertEqual(project.client_id, 1)
        self.assertEqual(project.start_date, date(2024, 5, 1))
        self.assertEqual(project.created_at, datetime(2024, 5, 1, tzinfo=timezone.utc))
        self.assertEqual(project.total_value, Decimal('1500.50'))
        self.assertFalse(project.is_deleted)
        self.assertEqual(project.supplier_ids, [])
        self.assertEqual(snapshot.counts()['projects'], 1)

    def test_resource_blob_and_legacy_content(self) -> None:
        snapshot = MigrationSnapshot.model_validate(
            {
                'resources': [
                    {'id': 1, 'projectId': 1, 'name': 'a.png', 'type': 'Image', 'contentBlob': 'data:image/png;base64,aGVsbG8='},
                    {'id': 2, 'projectId': 1, 'name': 'site', 'type': 'Link', 'content': 'https://example.com'},
                ]
            }
        )
        blob, link = snapshot.resources
        self.assertEqual(blob.type, ResourceType.IMAGE)
        self.assertEqual(blob.content_blob, b'hello')
        self.assertEqual(link.content_url, 'https://example.com')

    def test_invalid_enum_value_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            MigrationSnapshot.model_validate(
                {'projects': [{'id': 1, 'clientId': 1, 'name': 'X', 'status': 'Paused'}]}
            )

    def test_order_without_date_is_a_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            MigrationSnapshot.model_validate(
                {'orders': [{'id': 1, 'projectId': 1, 'title': 'Sand', 'amount': 10}]}
            )


class DanglingReferenceTests(unittest.TestCase):
    def _snapshot(self, **overrides) -> MigrationSnapshot:
        data = {
            'clients': [{'id': 1, 'name': 'Alice'}],
            'suppliers': [{'id': 4, 'name': 'Timber Co'}],
            'employees': [{'id': 9, 'firstName': 'Jan', 'lastName': 'K'}],
            'projects': [
                {'id': 2, 'clientId': 1, 'name': 'Main', 'status': 'Active', 'supplierIds': [4], 'employeeIds': [9]},
                {'id': 3, 'clientId': 1, 'parentProjectId': 2, 'name': 'Sub', 'status': 'Active'},
            ],
        }
        data.update(overrides)
        return MigrationSnapshot.model_validate(data)

    def test_consistent_snapshot_has_no_problems(self) -> None:
        self.assertEqual(find_dangling_references(self._snapshot()), [])

    def test_unknown_parent_and_list_members_are_reported(self) -> None:
        snapshot = self._snapshot(
            projects=[
                {'id': 2, 'clientId': 1, 'parentProjectId': 77, 'name': 'Main', 'status': 'Active', 'supplierIds': [4, 5]},
            ]
        )
        problems = find_dangling_references(snapshot)
        self.assertEqual(len(problems), 2)
        self.assertIn('parent_project_id=77', problems[0])
        self.assertIn('contains 5', problems[1])

    def test_duplicate_ids_are_rejected(self) -> None:
        snapshot = self._snapshot(clients=[{'id': 1, 'name': 'Alice'}, {'id': 1, 'name': 'Bob'}])
        with self.assertRaises(SnapshotError):
            find_dangling_references(snapshot)


if __name__ == '__main__':
    unittest.main()
