"""
Bundle store: a partitioned document store on plain object storage.

Bundles live in JSON array documents, one per (channel, platform, target),
sorted by descending id. A per-(channel, platform) index lists the targets that
currently have a document. There is no database: reads always reload from
storage; writes are staged in memory and applied by commit(), which rewrites
the affected documents, refreshes the indexes and sends one CDN invalidation.

Concurrent commits touching the same document are last-writer-wins. Callers
must serialize them.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import ValidationError

from updraft.schemas.bundle import Bundle, BundleList, BundleUpdate, Pagination
from updraft.services.version_matcher import filter_compatible_app_versions
from updraft.storage.base import CdnInvalidator, ObjectNotFoundError, ObjectStorage
from updraft.store import keys

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
DEFAULT_CACHE_CONTROL = "max-age=0, no-cache, must-revalidate"

Operation = Literal["insert", "update", "delete"]
DatabaseUpdatedHook = Callable[[], Union[Awaitable[None], None]]


class BundleStoreError(Exception):
    """Base error for bundle store operations."""

    pass


class BundleNotFoundError(BundleStoreError):
    """Raised when an update or delete targets an id that is not stored."""

    def __init__(self, bundle_id: str) -> None:
        super().__init__(f"Bundle {bundle_id} not found")
        self.bundle_id = bundle_id


class InvalidBundleError(BundleStoreError):
    """Raised when a staged bundle has no valid partition target."""

    pass


@dataclass
class PendingChange:
    operation: Operation
    bundle: Bundle


def calculate_pagination(total: int, limit: Optional[int], offset: int) -> Pagination:
    """Page metadata for a slice [offset, offset + limit) of total items."""
    if not limit:
        return Pagination(
            total=total,
            has_next_page=False,
            has_previous_page=offset > 0,
            current_page=1,
            total_pages=1 if total else 0,
        )
    total_pages = math.ceil(total / limit)
    return Pagination(
        total=total,
        has_next_page=offset + limit < total,
        has_previous_page=offset > 0,
        current_page=offset // limit + 1,
        total_pages=total_pages,
    )


def _merge(bundle: Bundle, changes: dict[str, Any]) -> Bundle:
    data = bundle.model_dump()
    data.update(changes)
    try:
        return Bundle.model_validate(data)
    except ValidationError as exc:
        raise InvalidBundleError(str(exc)) from exc


def _sorted_desc(bundles: Iterable[Bundle]) -> list[Bundle]:
    return sorted(bundles, key=lambda b: b.id, reverse=True)


class BundleStore:
    """Bundle metadata over an ObjectStorage, with batched commits.

    One instance per application; staged changes are local to the instance.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        cdn: CdnInvalidator,
        api_base_path: str = "/api/check-update",
        cache_control: str = DEFAULT_CACHE_CONTROL,
        on_database_updated: Optional[DatabaseUpdatedHook] = None,
    ) -> None:
        self.storage = storage
        self.cdn = cdn
        self.api_base_path = api_base_path.rstrip("/")
        self.cache_control = cache_control
        self.on_database_updated = on_database_updated
        self._pending: dict[str, PendingChange] = {}
        # id -> partition key, as of the last full reload
        self._locations: dict[str, str] = {}

    # ── Raw documents ───────────────────────────────────────────────

    async def _read_json(self, key: str, default: Any) -> Any:
        try:
            raw = await self.storage.read_object(key)
        except ObjectNotFoundError:
            return default
        return json.loads(raw)

    async def _write_json(self, key: str, value: Any) -> None:
        await self.storage.write_object(
            key,
            json.dumps(value).encode("utf-8"),
            content_type=JSON_CONTENT_TYPE,
            cache_control=self.cache_control,
        )

    async def _read_document(self, key: str) -> list[Bundle]:
        return [Bundle.model_validate(item) for item in await self._read_json(key, [])]

    async def _list_partition_keys(
        self, channel: Optional[str] = None, platform: Optional[str] = None
    ) -> list[str]:
        pattern = keys.partition_key_pattern(channel, platform)
        listed = await self.storage.list_objects(keys.partition_prefix(channel, platform))
        return [key for key in listed if pattern.match(key)]

    async def _reload(
        self, channel: Optional[str] = None, platform: Optional[str] = None
    ) -> list[Bundle]:
        """Read every partition document under the filters, newest first."""
        partition_keys = await self._list_partition_keys(channel, platform)
        documents = await asyncio.gather(*(self._read_document(k) for k in partition_keys))
        bundles: list[Bundle] = []
        locations: dict[str, str] = {}
        for key, document in zip(partition_keys, documents):
            for bundle in document:
                locations[bundle.id] = key
                bundles.append(bundle)
        if channel is None and platform is None:
            self._locations = locations
        else:
            self._locations.update(locations)
        return _sorted_desc(bundles)

    # ── Reads ───────────────────────────────────────────────────────

    async def get_bundles(
        self,
        channel: Optional[str] = None,
        platform: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> BundleList:
        """One page of stored bundles, newest first. Staged changes are not included."""
        bundles = await self._reload(channel, platform)
        bundles = [
            b
            for b in bundles
            if (channel is None or b.channel == channel)
            and (platform is None or b.platform == platform)
        ]
        total = len(bundles)
        page = bundles[offset:]
        if limit:
            page = page[:limit]
        return BundleList(data=page, pagination=calculate_pagination(total, limit, offset))

    async def get_bundle_by_id(self, bundle_id: str) -> Optional[Bundle]:
        """Staged version if this instance has one, else the stored bundle.

        A bundle staged for deletion reads as missing.
        """
        pending = self._pending.get(bundle_id)
        if pending is not None:
            return None if pending.operation == "delete" else pending.bundle
        for bundle in await self._reload():
            if bundle.id == bundle_id:
                return bundle
        return None

    async def get_channels(self) -> list[str]:
        """Channels that currently hold at least one bundle."""
        partition_keys = await self._list_partition_keys()
        return sorted({keys.split_partition_key(k)[0] for k in partition_keys})

    async def get_target_app_versions(self, channel: str, platform: str) -> list[str]:
        """The version index for (channel, platform)."""
        return await self._read_json(keys.index_key(channel, platform), [])

    async def get_candidate_bundles(
        self,
        platform: str,
        channel: str,
        app_version: Optional[str] = None,
        fingerprint_hash: Optional[str] = None,
    ) -> list[Bundle]:
        """Bundles that could answer a resolution request, read via the index.

        Fingerprint requests read a single document. App version requests read
        the version index, then only the documents whose range accepts the
        version. Without an index the partition documents are listed instead.
        """
        if fingerprint_hash is not None:
            return await self._read_document(keys.partition_key(channel, platform, fingerprint_hash))

        try:
            raw = await self.storage.read_object(keys.index_key(channel, platform))
            targets = json.loads(raw)
        except ObjectNotFoundError:
            targets = [
                keys.split_partition_key(k)[2]
                for k in await self._list_partition_keys(channel, platform)
            ]
        compatible = filter_compatible_app_versions(targets, app_version or "")
        documents = await asyncio.gather(
            *(self._read_document(keys.partition_key(channel, platform, t)) for t in compatible)
        )
        return _sorted_desc(b for document in documents for b in document)

    # ── Staging ─────────────────────────────────────────────────────

    @property
    def pending(self) -> dict[str, PendingChange]:
        return dict(self._pending)

    def insert(self, bundle: Bundle) -> None:
        """Stage a new bundle."""
        if keys.bundle_partition_key(bundle) is None:
            raise InvalidBundleError(f"Bundle {bundle.id} has no partition target")
        self._pending[bundle.id] = PendingChange("insert", bundle)

    async def update(self, bundle_id: str, changes: Union[BundleUpdate, dict[str, Any]]) -> Bundle:
        """Stage a partial update; returns the bundle as it will be committed.

        Raises:
            BundleNotFoundError: No staged or stored bundle has this id.
            InvalidBundleError: The merged bundle fails validation.
        """
        if isinstance(changes, BundleUpdate):
            changes = changes.changes()

        pending = self._pending.get(bundle_id)
        if pending is not None and pending.operation != "delete":
            merged = _merge(pending.bundle, changes)
            self._pending[bundle_id] = PendingChange(pending.operation, merged)
            return merged

        current = None if pending is not None else await self.get_bundle_by_id(bundle_id)
        if current is None:
            raise BundleNotFoundError(bundle_id)
        merged = _merge(current, changes)
        self._pending[bundle_id] = PendingChange("update", merged)
        return merged

    async def delete(self, bundle: Union[Bundle, str]) -> None:
        """Stage removal of a bundle (by object or id).

        Deleting a bundle that was only staged for insert just drops it.
        """
        bundle_id = bundle if isinstance(bundle, str) else bundle.id
        pending = self._pending.get(bundle_id)
        if pending is not None and pending.operation == "insert":
            del self._pending[bundle_id]
            return
        if pending is not None:
            current: Optional[Bundle] = pending.bundle
        else:
            current = await self.get_bundle_by_id(bundle_id)
        if current is None:
            raise BundleNotFoundError(bundle_id)
        self._pending[bundle_id] = PendingChange("delete", current)

    def discard(self) -> None:
        """Drop every staged change."""
        self._pending.clear()

    # ── Commit ──────────────────────────────────────────────────────

    async def commit(self) -> list[str]:
        """Apply staged changes. Returns the invalidated (encoded) CDN paths.

        Every check runs before the first write, so a failing plan leaves
        storage untouched.
        """
        if not self._pending:
            return []

        changes = list(self._pending.values())
        stored = {b.id: b for b in await self._reload()}

        removals: dict[str, set[str]] = {}
        upserts: dict[str, dict[str, Bundle]] = {}
        paths: set[str] = set()

        for change in changes:
            bundle = change.bundle
            old_key = self._locations.get(bundle.id)
            if change.operation != "insert" and old_key is None:
                raise BundleNotFoundError(bundle.id)

            new_key = None
            if change.operation != "delete":
                new_key = keys.bundle_partition_key(bundle)
                if new_key is None:
                    raise InvalidBundleError(f"Bundle {bundle.id} has no partition target")
                upserts.setdefault(new_key, {})[bundle.id] = bundle
                paths.add(keys.object_path(new_key))
                paths |= keys.resolution_paths(bundle, self.api_base_path)

            if old_key is not None and old_key != new_key:
                removals.setdefault(old_key, set()).add(bundle.id)
                paths.add(keys.object_path(old_key))
            previous = stored.get(bundle.id)
            if previous is not None:
                paths |= keys.resolution_paths(previous, self.api_base_path)

        affected = sorted(set(removals) | set(upserts))
        await asyncio.gather(
            *(
                self._rewrite_document(key, removals.get(key, set()), upserts.get(key, {}))
                for key in affected
            )
        )

        pairs = sorted({keys.split_partition_key(k)[:2] for k in affected})
        for channel, platform in pairs:
            index_path = await self._refresh_index(channel, platform)
            if index_path is not None:
                paths.add(index_path)

        encoded = sorted({keys.encode_path(p) for p in paths})
        await self.cdn.invalidate(encoded)

        logger.info(
            "Committed %d change(s) across %d document(s); invalidated %d path(s)",
            len(changes),
            len(affected),
            len(encoded),
        )
        self._pending.clear()
        for change in changes:
            if change.operation == "delete":
                self._locations.pop(change.bundle.id, None)
            else:
                self._locations[change.bundle.id] = keys.bundle_partition_key(change.bundle)

        if self.on_database_updated is not None:
            result = self.on_database_updated()
            if inspect.isawaitable(result):
                await result
        return encoded

    async def _rewrite_document(
        self, key: str, remove_ids: set[str], upsert: dict[str, Bundle]
    ) -> None:
        """Read-modify-write one partition document; an empty one is deleted."""
        current = {b.id: b for b in await self._read_document(key)}
        for bundle_id in remove_ids:
            current.pop(bundle_id, None)
        current.update(upsert)
        if not current:
            await self.storage.delete_object(key)
            return
        await self._write_json(key, [b.to_document() for b in _sorted_desc(current.values())])

    async def _refresh_index(self, channel: str, platform: str) -> Optional[str]:
        """Sync the version index with the documents present. Returns its path if changed."""
        key = keys.index_key(channel, platform)
        present = [
            keys.split_partition_key(k)[2]
            for k in await self._list_partition_keys(channel, platform)
        ]
        old: list[str] = await self._read_json(key, [])
        new = [target for target in old if target in present]
        new += [target for target in present if target not in new]
        if new == old:
            return None
        if new:
            await self._write_json(key, new)
        else:
            await self.storage.delete_object(key)
        return keys.object_path(key)
