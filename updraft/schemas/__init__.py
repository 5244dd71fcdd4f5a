"""Pydantic schemas for stored documents and request/response validation."""

from updraft.schemas.bundle import (
    DEFAULT_CHANNEL,
    PLATFORMS,
    Bundle,
    BundleList,
    BundleUpdate,
    Pagination,
    Platform,
)
from updraft.schemas.migration import MigrationRecord, MigrationStatus
from updraft.schemas.update import (
    BASELINE_BUNDLE_ID,
    UpdateDecision,
    UpdateRequest,
    UpdateStatus,
)

__all__ = [
    "BASELINE_BUNDLE_ID",
    "Bundle",
    "BundleList",
    "BundleUpdate",
    "DEFAULT_CHANNEL",
    "MigrationRecord",
    "MigrationStatus",
    "PLATFORMS",
    "Pagination",
    "Platform",
    "UpdateDecision",
    "UpdateRequest",
    "UpdateStatus",
]
