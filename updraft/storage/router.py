"""
Storage / CDN factory.

Returns the backend implementations selected by application settings.
Instances are not cached: the application lifespan owns them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from updraft.storage.base import CdnInvalidator, ObjectStorage

if TYPE_CHECKING:
    from updraft.config import Settings

logger = logging.getLogger(__name__)


def get_object_storage(settings: Settings | None = None) -> ObjectStorage:
    """Return the ObjectStorage for STORAGE_BACKEND.

    Raises:
        ValueError: If the backend is unknown or its required settings are missing.
    """
    if settings is None:
        from updraft.config import get_settings

        settings = get_settings()

    backend = settings.storage_backend
    if backend == "memory":
        from updraft.storage.memory import MemoryStorage

        logger.warning("Using in-memory object storage; data is lost on restart")
        return MemoryStorage()
    if backend == "s3":
        from updraft.storage.s3 import S3Storage

        return S3Storage(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    raise ValueError(f"Unsupported storage backend: {backend!r}")


def get_cdn_invalidator(settings: Settings | None = None) -> CdnInvalidator:
    """Return the CdnInvalidator for CDN_BACKEND."""
    if settings is None:
        from updraft.config import get_settings

        settings = get_settings()

    backend = settings.cdn_backend
    if backend in ("", "none"):
        from updraft.storage.memory import NullInvalidator

        return NullInvalidator()
    if backend == "cloudfront":
        from updraft.storage.s3 import CloudFrontInvalidator

        return CloudFrontInvalidator(settings.cloudfront_distribution_id)
    raise ValueError(f"Unsupported CDN backend: {backend!r}")
