"""Apply or list storage layout migrations.

Usage:
    python -m updraft.scripts.migrate list
    python -m updraft.scripts.migrate migrate [--yes] [--dry-run]

Uses the storage backend configured by STORAGE_BACKEND / S3_* settings.
Exits 0 when everything is applied (or nothing was pending), 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from updraft.config import get_settings
from updraft.migrations.engine import BACKUP_PREFIX, MigrationEngine
from updraft.storage.base import ObjectStorage
from updraft.storage.router import get_object_storage


def _confirm(pending: list[str]) -> bool:
    print("Pending migrations:")
    for name in pending:
        print(f"  - {name}")
    answer = input("Apply these migrations? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def list_migrations(engine: MigrationEngine) -> int:
    status = await engine.list()
    print("Applied:")
    for record in status.applied:
        print(f"  {record.name}  ({record.applied_at.isoformat()})")
    if not status.applied:
        print("  (none)")
    descriptions = {m.name: m.description for m in engine.migrations}
    print("Pending:")
    for name in status.pending:
        description = descriptions.get(name)
        print(f"  {name}  - {description}" if description else f"  {name}")
    if not status.pending:
        print("  (none)")
    return 0


async def run_migrations(engine: MigrationEngine, yes: bool, dry_run: bool) -> int:
    status = await engine.list()
    if not status.pending:
        print("No pending migrations.")
        return 0
    if not yes and not dry_run and not _confirm(status.pending):
        print("Aborted; nothing applied.")
        return 0

    try:
        applied = await engine.run(dry_run=dry_run)
    except Exception as e:
        if dry_run:
            print(f"ERROR: migration failed (dry run, nothing written): {e}", file=sys.stderr)
        elif engine.failed_rollback:
            print(
                f"ERROR: migration failed and could not be rolled back; backups kept under "
                f"{BACKUP_PREFIX}/{engine.failed_rollback}/: {e}",
                file=sys.stderr,
            )
        else:
            print(f"ERROR: migration failed and was rolled back: {e}", file=sys.stderr)
        return 1

    prefix = "[dry run] would apply" if dry_run else "applied"
    for name in applied:
        print(f"{prefix} {name}")
    return 0


def main(argv: Optional[list[str]] = None, storage: Optional[ObjectStorage] = None) -> int:
    parser = argparse.ArgumentParser(description="Updraft storage migrations")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Apply pending migrations")
    migrate_parser.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would change without writing anything"
    )
    subparsers.add_parser("list", help="Show applied and pending migrations")
    args = parser.parse_args(argv)

    settings = get_settings()
    try:
        storage = storage or get_object_storage(settings)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    engine = MigrationEngine(storage, ledger_key=settings.migration_ledger_key)

    if args.command == "list":
        return asyncio.run(list_migrations(engine))
    return asyncio.run(run_migrations(engine, yes=args.yes, dry_run=args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
