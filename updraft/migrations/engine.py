"""
Migration engine for the object-storage layout.

Migrations are async functions taking a MigrationContext. They run in
registration order; each one is applied at most once, recorded in a JSON
ledger object (``migrate.json``):

    [{"name": "0001_channel_prefix", "appliedAt": "2025-03-01T12:00:00Z"}]

Every mutation made through the context first copies the old content to
``backup/{migration}/{key}``. If the migration raises, the touched keys are
restored, the error propagates and later migrations do not run. Migrations
applied earlier in the same run stay applied.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from updraft.schemas.migration import MigrationRecord, MigrationStatus
from updraft.storage.base import ObjectNotFoundError, ObjectStorage

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup"
DEFAULT_LEDGER_KEY = "migrate.json"

_records_adapter = TypeAdapter(list[MigrationRecord])


class MigrationError(Exception):
    """Raised for an unreadable ledger or an invalid migration registry."""

    pass


@dataclass(frozen=True)
class Migration:
    name: str
    apply: Callable[["MigrationContext"], Awaitable[None]]
    description: str = ""


@dataclass
class MigrationContext:
    """Storage handle given to one migration run.

    Writes, deletes and moves snapshot the old content first. In dry-run mode
    nothing is written; the intended actions are only recorded.
    """

    storage: ObjectStorage
    name: str
    dry_run: bool = False
    # original key -> backup key
    backups: dict[str, str] = field(default_factory=dict)
    # keys that did not exist before this migration wrote them
    created: set[str] = field(default_factory=set)
    actions: list[str] = field(default_factory=list)

    # ── Reads ───────────────────────────────────────────────────────

    async def list(self, prefix: str = "") -> list[str]:
        return await self.storage.list_objects(prefix.lstrip("/"))

    async def read(self, key: str) -> Optional[bytes]:
        try:
            return await self.storage.read_object(key.lstrip("/"))
        except ObjectNotFoundError:
            return None

    async def read_json(self, key: str) -> Any:
        """Parsed JSON at key, or None if the object does not exist."""
        raw = await self.read(key)
        if raw is None:
            return None
        return json.loads(raw)

    # ── Mutations ───────────────────────────────────────────────────

    def backup_key(self, key: str) -> str:
        return f"{BACKUP_PREFIX}/{self.name}/{key}"

    async def _snapshot(self, key: str) -> None:
        """Copy key's current content to its backup key, once per run."""
        if key in self.backups or key in self.created:
            return
        content = await self.read(key)
        if content is None:
            self.created.add(key)
            return
        backup_key = self.backup_key(key)
        await self.storage.write_object(backup_key, content)
        self.backups[key] = backup_key

    async def write(
        self,
        key: str,
        data: Union[bytes, str],
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None,
    ) -> None:
        key = key.lstrip("/")
        self.actions.append(f"write {key}")
        if self.dry_run:
            logger.info("[dry run] %s: would write %s", self.name, key)
            return
        await self._snapshot(key)
        body = data.encode("utf-8") if isinstance(data, str) else data
        await self.storage.write_object(
            key, body, content_type=content_type, cache_control=cache_control
        )

    async def write_json(
        self, key: str, value: Any, cache_control: Optional[str] = None
    ) -> None:
        await self.write(
            key,
            json.dumps(value),
            content_type="application/json",
            cache_control=cache_control,
        )

    async def delete(self, key: str) -> None:
        key = key.lstrip("/")
        self.actions.append(f"delete {key}")
        if self.dry_run:
            logger.info("[dry run] %s: would delete %s", self.name, key)
            return
        await self._snapshot(key)
        await self.storage.delete_object(key)

    async def move(self, source: str, destination: str) -> None:
        source = source.lstrip("/")
        destination = destination.lstrip("/")
        self.actions.append(f"move {source} -> {destination}")
        if self.dry_run:
            logger.info("[dry run] %s: would move %s -> %s", self.name, source, destination)
            return
        content = await self.read(source)
        if content is None:
            raise ObjectNotFoundError(source)
        await self._snapshot(source)
        await self._snapshot(destination)
        await self.storage.write_object(destination, content)
        await self.storage.delete_object(source)

    # ── Recovery ────────────────────────────────────────────────────

    async def rollback(self) -> None:
        """Put every touched key back to its pre-migration state."""
        logger.warning(
            "Rolling back %s: restoring %d key(s), removing %d created key(s)",
            self.name,
            len(self.backups),
            len(self.created),
        )
        for key in sorted(self.created):
            await self.storage.delete_object(key)
        for key, backup_key in self.backups.items():
            content = await self.storage.read_object(backup_key)
            await self.storage.write_object(key, content)
        await self.cleanup()

    async def cleanup(self) -> None:
        """Delete the backups taken during this run."""
        for backup_key in self.backups.values():
            await self.storage.delete_object(backup_key)
        self.backups.clear()
        self.created.clear()


class MigrationEngine:
    """Applies pending migrations against one object storage namespace."""

    def __init__(
        self,
        storage: ObjectStorage,
        migrations: Optional[Sequence[Migration]] = None,
        ledger_key: str = DEFAULT_LEDGER_KEY,
    ) -> None:
        if migrations is None:
            from updraft.migrations.definitions import MIGRATIONS

            migrations = MIGRATIONS
        names = [m.name for m in migrations]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise MigrationError(f"Duplicate migration name(s): {', '.join(duplicates)}")
        self.storage = storage
        self.migrations = list(migrations)
        self.ledger_key = ledger_key
        # Name of the migration whose rollback failed during the last run
        self.failed_rollback: Optional[str] = None

    async def load_records(self) -> list[MigrationRecord]:
        """The ledger; a missing ledger object means nothing was applied yet."""
        try:
            raw = await self.storage.read_object(self.ledger_key)
        except ObjectNotFoundError:
            return []
        try:
            return _records_adapter.validate_json(raw)
        except ValidationError as exc:
            raise MigrationError(f"Unreadable migration ledger at {self.ledger_key}") from exc

    async def _save_records(self, records: list[MigrationRecord]) -> None:
        body = json.dumps(
            [r.model_dump(mode="json", by_alias=True) for r in records], indent=2
        )
        await self.storage.write_object(
            self.ledger_key, body.encode("utf-8"), content_type="application/json"
        )

    async def list(self) -> MigrationStatus:
        """Applied vs pending migration names. Runs nothing."""
        records = await self.load_records()
        applied_names = {r.name for r in records}
        return MigrationStatus(
            applied=records,
            pending=[m.name for m in self.migrations if m.name not in applied_names],
        )

    async def run(self, dry_run: bool = False) -> list[str]:
        """Apply pending migrations in order. Returns the names applied.

        Raises:
            Exception: Whatever the failing migration raised, after its
                changes were rolled back. A rollback that itself fails is
                logged and recorded in ``failed_rollback``; the migration's
                error still propagates and its backups stay in storage.
        """
        self.failed_rollback = None
        records = await self.load_records()
        applied_names = {r.name for r in records}
        applied: list[str] = []

        for migration in self.migrations:
            if migration.name in applied_names:
                logger.debug("Skipping %s (already applied)", migration.name)
                continue

            logger.info("%sApplying migration %s", "[dry run] " if dry_run else "", migration.name)
            context = MigrationContext(self.storage, migration.name, dry_run=dry_run)
            try:
                await migration.apply(context)
            except Exception:
                logger.exception("Migration %s failed", migration.name)
                if not dry_run:
                    try:
                        await context.rollback()
                    except Exception:
                        self.failed_rollback = migration.name
                        logger.exception(
                            "Rollback of %s failed; backups kept under %s/%s/",
                            migration.name,
                            BACKUP_PREFIX,
                            migration.name,
                        )
                raise

            applied.append(migration.name)
            if dry_run:
                logger.info(
                    "[dry run] %s would make %d change(s)", migration.name, len(context.actions)
                )
                continue

            records.append(MigrationRecord(name=migration.name, applied_at=datetime.now(UTC)))
            await self._save_records(records)
            await context.cleanup()
            logger.info("Migration %s applied", migration.name)

        return applied
