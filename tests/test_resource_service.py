from __future__ import annotations

import unittest

from sqlalchemy.pool import StaticPool

from app.db import build_engine, build_session_factory
from app.models import Base, Client, Project, ProjectStatus, Resource, ResourceType
from app.services.resource_service import (
    create_resource,
    delete_resource,
    get_resource,
    list_folders,
    list_resources,
)
from app.services.trash_service import list_deleted, purge_item, restore_item


class ResourceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
        Base.metadata.create_all(self.engine)
        self.db = build_session_factory(self.engine)()
        client = Client(name='Alice')
        self.db.add(client)
        self.db.flush()
        self.project = Project(client_id=client.id, name='Kitchen', status=ProjectStatus.ACTIVE)
        self.db.add(self.project)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_links_keep_url_and_files_keep_bytes(self) -> None:
        link = create_resource(
            self.db,
            project_id=self.project.id,
            name=' Plans ',
            type=ResourceType.LINK,
            content_url=' https://example.com/plans ',
            content=b'ignored',
        )
        photo = create_resource(
            self.db,
            project_id=self.project.id,
            name='Before',
            type=ResourceType.IMAGE,
            folder=' Photos ',
            content_url='https://example.com/ignored',
            content=b'\x89PNG',
        )
        self.db.commit()

        self.assertEqual(link.name, 'Plans')
        self.assertEqual(link.content_url, 'https://example.com/plans')
        self.assertIsNone(link.content_blob)
        self.assertIsNone(link.folder)
        self.assertEqual(photo.content_blob, b'\x89PNG')
        self.assertIsNone(photo.content_url)
        self.assertEqual(photo.folder, 'Photos')

    def test_rejects_bad_resources(self) -> None:
        with self.assertRaisesRegex(ValueError, 'http'):
            create_resource(self.db, project_id=self.project.id, name='Plans', type=ResourceType.LINK, content_url='ftp://x')
        with self.assertRaisesRegex(ValueError, 'Choose a file'):
            create_resource(self.db, project_id=self.project.id, name='Invoice', type=ResourceType.FILE, content=b'')
        with self.assertRaisesRegex(ValueError, 'name'):
            create_resource(self.db, project_id=self.project.id, name=' ', type=ResourceType.FILE, content=b'x')
        with self.assertRaisesRegex(ValueError, 'Project not found'):
            create_resource(self.db, project_id=999, name='Invoice', type=ResourceType.FILE, content=b'x')

    def test_folders_and_filtering(self) -> None:
        for name, folder in (('a', 'Invoices'), ('b', 'Photos'), ('c', 'Invoices'), ('d', None)):
            create_resource(self.db, project_id=self.project.id, name=name, type=ResourceType.FILE, folder=folder, content=b'x')
        self.db.commit()

        self.assertEqual(list_folders(self.db, project_id=self.project.id), ['Invoices', 'Photos'])
        self.assertEqual(
            sorted(r.name for r in list_resources(self.db, project_id=self.project.id, folder='Invoices')),
            ['a', 'c'],
        )
        self.assertEqual(len(list_resources(self.db, project_id=self.project.id)), 4)

    def test_soft_delete_goes_to_trash(self) -> None:
        kept = create_resource(self.db, project_id=self.project.id, name='Contract', type=ResourceType.FILE, content=b'pdf')
        gone = create_resource(self.db, project_id=self.project.id, name='Draft', type=ResourceType.FILE, content=b'pdf')
        delete_resource(self.db, resource_id=gone.id)
        self.db.commit()

        self.assertIsNotNone(gone.deleted_at)
        self.assertEqual([r.id for r in list_resources(self.db, project_id=self.project.id)], [kept.id])
        self.assertEqual([r.id for r in list_deleted(self.db)['resource']], [gone.id])
        with self.assertRaisesRegex(ValueError, 'Resource not found'):
            get_resource(self.db, resource_id=gone.id)

        restore_item(self.db, kind='resource', item_id=gone.id)
        self.db.commit()
        self.assertEqual(get_resource(self.db, resource_id=gone.id).name, 'Draft')

        delete_resource(self.db, resource_id=gone.id)
        purge_item(self.db, kind='resource', item_id=gone.id)
        self.db.commit()
        self.assertIsNone(self.db.get(Resource, gone.id))
        self.assertIsNotNone(self.db.get(Resource, kept.id))


if __name__ == '__main__':
    unittest.main()
