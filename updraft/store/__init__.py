"""Blob-backed bundle store."""

from updraft.store.bundle_store import (
    BundleNotFoundError,
    BundleStore,
    BundleStoreError,
    InvalidBundleError,
)

__all__ = [
    "BundleNotFoundError",
    "BundleStore",
    "BundleStoreError",
    "InvalidBundleError",
]
