from __future__ import annotations

import unittest

from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from app.auth import Principal
from app.db import build_engine, build_session_factory
from app.models import Base, PrincipalRole, WebSession
from app.security.passwords import verify_password
from app.security.sessions import create_web_session
from app.services.user_service import (
    create_principal,
    list_principals,
    reset_principal_password,
    set_principal_active,
    set_principal_role,
)


class UserServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine('sqlite+pysqlite://', poolclass=StaticPool, connect_args={'check_same_thread': False})
        Base.metadata.create_all(self.engine)
        self.db = build_session_factory(self.engine)()
        self.admin = create_principal(self.db, username='boss', password='correct horse', role=PrincipalRole.ADMINISTRATOR)
        self.db.commit()
        self.actor = Principal(id=self.admin.id, username='boss', role=PrincipalRole.ADMINISTRATOR, active=True)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _open_sessions(self, principal_id: int) -> int:
        rows = self.db.execute(
            select(WebSession).where(WebSession.principal_id == principal_id, WebSession.revoked_at.is_(None))
        ).scalars()
        return len(list(rows))

    def test_create_validates_and_hashes(self) -> None:
        user = create_principal(self.db, username=' anna ', password='long enough', role=PrincipalRole.USER, display_name=' ')
        self.db.commit()

        self.assertEqual(user.username, 'anna')
        self.assertIsNone(user.display_name)
        self.assertNotEqual(user.password_hash, 'long enough')
        self.assertTrue(verify_password('long enough', user.password_hash)[0])
        self.assertEqual([p.username for p in list_principals(self.db)], ['anna', 'boss'])

        with self.assertRaisesRegex(ValueError, 'already exists'):
            create_principal(self.db, username='anna', password='long enough', role=PrincipalRole.USER)
        with self.assertRaisesRegex(ValueError, 'at least'):
            create_principal(self.db, username='piotr', password='short', role=PrincipalRole.USER)
        with self.assertRaises(ValueError):
            create_principal(self.db, username=' ', password='long enough', role=PrincipalRole.USER)

    def test_role_changes_keep_an_administrator(self) -> None:
        with self.assertRaises(PermissionError):
            set_principal_role(self.db, actor=self.actor, target_principal_id=self.admin.id, role=PrincipalRole.USER)

        other = create_principal(self.db, username='second', password='long enough', role=PrincipalRole.ADMINISTRATOR)
        set_principal_active(self.db, actor=self.actor, target_principal_id=other.id, active=False)
        # An inactive administrator does not count towards the guard.
        viewer = create_principal(self.db, username='viewer', password='long enough', role=PrincipalRole.VIEWER)
        outsider = Principal(id=viewer.id, username='viewer', role=PrincipalRole.ADMINISTRATOR, active=True)
        with self.assertRaisesRegex(ValueError, 'active administrator'):
            set_principal_role(self.db, actor=outsider, target_principal_id=self.admin.id, role=PrincipalRole.USER)

        set_principal_active(self.db, actor=self.actor, target_principal_id=other.id, active=True)
        demoted = set_principal_role(self.db, actor=outsider, target_principal_id=self.admin.id, role=PrincipalRole.USER)
        self.assertEqual(demoted.role, PrincipalRole.USER)

    def test_deactivation_revokes_sessions(self) -> None:
        user = create_principal(self.db, username='anna', password='long enough', role=PrincipalRole.USER)
        create_web_session(self.db, user.id, ip=None, user_agent=None)
        create_web_session(self.db, user.id, ip=None, user_agent=None)
        self.db.commit()
        self.assertEqual(self._open_sessions(user.id), 2)

        with self.assertRaises(PermissionError):
            set_principal_active(self.db, actor=self.actor, target_principal_id=self.admin.id, active=False)

        set_principal_active(self.db, actor=self.actor, target_principal_id=user.id, active=False)
        self.db.commit()

        self.assertFalse(user.active)
        self.assertEqual(self._open_sessions(user.id), 0)
        with self.assertRaisesRegex(ValueError, 'User not found'):
            set_principal_active(self.db, actor=self.actor, target_principal_id=999, active=True)

    def test_password_reset_revokes_target_sessions_only(self) -> None:
        user = create_principal(self.db, username='anna', password='long enough', role=PrincipalRole.USER)
        create_web_session(self.db, user.id, ip=None, user_agent=None)
        create_web_session(self.db, self.admin.id, ip=None, user_agent=None)
        self.db.commit()

        reset_principal_password(self.db, actor=self.actor, target_principal_id=user.id, new_password='brand new secret')
        reset_principal_password(self.db, actor=self.actor, target_principal_id=self.admin.id, new_password='another secret')
        self.db.commit()

        self.assertTrue(verify_password('brand new secret', user.password_hash)[0])
        self.assertFalse(verify_password('long enough', user.password_hash)[0])
        self.assertEqual(self._open_sessions(user.id), 0)
        self.assertEqual(self._open_sessions(self.admin.id), 1)
        with self.assertRaises(ValueError):
            reset_principal_password(self.db, actor=self.actor, target_principal_id=user.id, new_password='short')


if __name__ == '__main__':
    unittest.main()
