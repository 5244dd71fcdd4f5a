"""Object storage and CDN collaborators."""

from updraft.storage.base import CdnInvalidator, ObjectNotFoundError, ObjectStorage
from updraft.storage.memory import MemoryStorage, NullInvalidator, RecordingInvalidator
from updraft.storage.router import get_cdn_invalidator, get_object_storage

__all__ = [
    "CdnInvalidator",
    "MemoryStorage",
    "NullInvalidator",
    "ObjectNotFoundError",
    "ObjectStorage",
    "RecordingInvalidator",
    "get_cdn_invalidator",
    "get_object_storage",
]
