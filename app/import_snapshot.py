from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from app.config import settings
from app.db import SessionLocal
from app.logging_config import setup_logging
from app.services.audit_service import log_audit
from app.services.import_service import ImportResult, migrate_data, parse_snapshot
from app.services.snapshot import SnapshotError

logger = logging.getLogger(__name__)


def _record_run(path: Path, result: ImportResult) -> None:
    with SessionLocal() as db:
        log_audit(
            db,
            actor_principal_id=None,
            action='DATA_IMPORT_COMMITTED' if result.success else 'DATA_IMPORT_FAILED',
            ip=None,
            metadata={'source': 'cli', 'filename': path.name, 'counts': result.counts, 'error': result.error},
        )
        db.commit()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Replace all business data with a snapshot export.')
    parser.add_argument('path', type=Path, help='Snapshot JSON file exported by the offline client.')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate the snapshot and print record counts without touching the database.',
    )
    args = parser.parse_args(argv)
    setup_logging(settings.log_level, settings.log_dir)

    try:
        raw = args.path.read_bytes()
    except OSError as exc:
        print(f'Cannot read {args.path}: {exc}', file=sys.stderr)
        return 1

    if args.dry_run:
        try:
            snapshot = parse_snapshot(raw)
        except (SnapshotError, ValidationError) as exc:
            print(f'Snapshot is invalid: {exc}', file=sys.stderr)
            return 1
        for name, count in snapshot.counts().items():
            print(f'{name}: {count}')
        print(f'Snapshot OK: {snapshot.total_records()} records (dry run, nothing written)')
        return 0

    result = migrate_data(raw)
    _record_run(args.path, result)
    if not result.success:
        print(f'Import failed: {result.error}', file=sys.stderr)
        return 1

    summary = ', '.join(f'{name}={count}' for name, count in result.counts.items())
    print(f'Import complete: {summary}')
    return 0


if __name__ == '__main__':
    sys.exit(main())
