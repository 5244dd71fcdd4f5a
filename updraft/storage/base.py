"""
Object storage and CDN abstractions.

The bundle store and the migration engine only ever talk to these two
interfaces. A backend lists, reads, writes and deletes opaque byte objects
by key; a CDN invalidator purges cached paths. Neither retries: transient
failures propagate to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ObjectNotFoundError(KeyError):
    """Raised by read_object when the key does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


class ObjectStorage(ABC):
    """Abstract base for object storage backends."""

    @abstractmethod
    async def list_objects(self, prefix: str) -> list[str]:
        """Return every key starting with prefix ("" lists the whole bucket)."""
        ...

    @abstractmethod
    async def read_object(self, key: str) -> bytes:
        """Return the object body. Raises ObjectNotFoundError if missing."""
        ...

    @abstractmethod
    async def write_object(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        """Create or overwrite the object at key."""
        ...

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        """Delete the object at key. Deleting a missing key is not an error."""
        ...


class CdnInvalidator(ABC):
    """Abstract base for CDN cache invalidation."""

    @abstractmethod
    async def invalidate(self, paths: list[str]) -> None:
        """Purge the given paths (may contain trailing ``*`` wildcards)."""
        ...
