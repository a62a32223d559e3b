from __future__ import annotations

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from app import import_snapshot
from app.services.import_service import ImportResult


class ImportCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        patcher = patch.object(import_snapshot, 'setup_logging')
        patcher.start()
        self.addCleanup(patcher.stop)

    def _write(self, payload) -> Path:
        path = Path(self.tmp.name) / 'export.json'
        path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding='utf-8')
        return path

    def _run(self, *argv: str) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = import_snapshot.main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_dry_run_prints_counts(self) -> None:
        path = self._write({'clients': [{'id': 1, 'name': 'Alice'}], 'projects': [{'id': 2, 'clientId': 1, 'name': 'Attic', 'status': 'Active'}]})
        with patch.object(import_snapshot, 'migrate_data') as migrate:
            code, out, _ = self._run(str(path), '--dry-run')

        self.assertEqual(code, 0)
        self.assertIn('clients: 1', out)
        self.assertIn('projects: 1', out)
        self.assertIn('2 records', out)
        migrate.assert_not_called()

    def test_dry_run_reports_broken_references(self) -> None:
        path = self._write({'projects': [{'id': 2, 'clientId': 9, 'name': 'Attic', 'status': 'Active'}]})
        code, _, err = self._run(str(path), '--dry-run')

        self.assertEqual(code, 1)
        self.assertIn('client_id=9', err)

    def test_dry_run_reports_malformed_json(self) -> None:
        path = self._write('{not json')
        code, _, err = self._run(str(path), '--dry-run')

        self.assertEqual(code, 1)
        self.assertIn('Snapshot is invalid', err)

    def test_missing_file(self) -> None:
        code, _, err = self._run(str(Path(self.tmp.name) / 'missing.json'))
        self.assertEqual(code, 1)
        self.assertIn('Cannot read', err)

    def test_import_records_outcome(self) -> None:
        path = self._write({})
        result = ImportResult(success=False, error='An import is already running')
        with (
            patch.object(import_snapshot, 'migrate_data', return_value=result) as migrate,
            patch.object(import_snapshot, '_record_run') as record,
        ):
            code, _, err = self._run(str(path))

        self.assertEqual(code, 1)
        self.assertIn('already running', err)
        migrate.assert_called_once_with(b'{}')
        record.assert_called_once_with(path, result)


if __name__ == '__main__':
    unittest.main()
