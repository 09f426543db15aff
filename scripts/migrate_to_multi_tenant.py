# scripts/migrate_to_multi_tenant.py
"""
Migrate legacy user data (/users/{uid}/projects, posts, leads, files, stores,
domains) into the multi-tenant layout (/tenants/{tenantId}/...).

Usage:
  python -m scripts.migrate_to_multi_tenant [--dry-run] [--user=<userId>] [--batch=<n>]

Exit code 0 on success, 1 when the run aborts.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Ensure repo root is importable when called as a plain script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quimera.core.logging import configure_logging
from quimera.core.settings import settings
from quimera.db.session import get_store
from quimera.db.store import DocumentStore
from quimera.services.migration_service import MigrationOptions, MigrationReport, migrate

logger = logging.getLogger("scripts.migrate_to_multi_tenant")

RULE = "=" * 40


def parse_args(argv: Optional[Sequence[str]] = None) -> MigrationOptions:
    ap = argparse.ArgumentParser(
        description="Copy per-user data into tenants (source data is kept).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    ap.add_argument("--dry-run", action="store_true", help="Preview migration without making changes")
    ap.add_argument("--user", dest="user_id", default=None, help="Migrate only this user id")
    ap.add_argument(
        "--batch",
        dest="batch_size",
        type=int,
        default=settings.MIGRATION_DEFAULT_BATCH_SIZE,
        help="Max users per run in batch mode",
    )
    args = ap.parse_args(argv)
    if args.batch_size < 1:
        ap.error("--batch must be >= 1")
    return MigrationOptions(dry_run=args.dry_run, user_id=args.user_id, batch_size=args.batch_size)


def run(db: DocumentStore, options: MigrationOptions) -> MigrationReport:
    print(RULE)
    print("Multi-Tenant Migration")
    print(RULE)
    print(f"Mode: {'DRY RUN (no changes will be made)' if options.dry_run else 'LIVE'}")
    print(f"Batch size: {options.batch_size}")
    if options.user_id:
        print(f"Single user mode: {options.user_id}")
    print(RULE)

    report = migrate(db, options)

    print()
    print(RULE)
    print("Migration Summary")
    print(RULE)
    for line in report.summary_lines():
        print(line)
    print(RULE)
    return report


def main(argv: Optional[Sequence[str]] = None, db: Optional[DocumentStore] = None) -> int:
    configure_logging(settings.LOG_LEVEL)
    options = parse_args(argv)
    try:
        run(db if db is not None else get_store(), options)
    except Exception as exc:
        logger.exception("Migration failed")
        print(f"Migration failed: {exc}")
        return 1
    print("Migration completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
