"""In-process object storage and CDN recorder for development and tests."""

from __future__ import annotations

import logging

from updraft.storage.base import CdnInvalidator, ObjectNotFoundError, ObjectStorage

logger = logging.getLogger(__name__)


class MemoryStorage(ObjectStorage):
    """Dict-backed bucket. Keys are kept as given; listing is sorted."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        # key -> (content_type, cache_control) of the last write
        self.headers: dict[str, tuple[str | None, str | None]] = {}

    async def list_objects(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    async def read_object(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError:
            raise ObjectNotFoundError(key) from None

    async def write_object(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        self.objects[key] = bytes(data)
        self.headers[key] = (content_type, cache_control)

    async def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)
        self.headers.pop(key, None)


class NullInvalidator(CdnInvalidator):
    """No CDN in front of the bucket: invalidation is a logged no-op."""

    async def invalidate(self, paths: list[str]) -> None:
        logger.debug("CDN disabled; skipping invalidation of %d path(s)", len(paths))


class RecordingInvalidator(CdnInvalidator):
    """Keeps every invalidation batch it receives (one list per call)."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def invalidate(self, paths: list[str]) -> None:
        self.calls.append(list(paths))
