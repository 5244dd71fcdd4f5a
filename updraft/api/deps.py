"""Shared FastAPI dependencies for API routes.

The storage backend and bundle store are built once by the application
lifespan and kept on ``app.state``; tests replace them through
``app.dependency_overrides``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets

from fastapi import Header, HTTPException, Request

from updraft.config import Settings, get_settings
from updraft.storage.base import ObjectStorage
from updraft.store.bundle_store import BundleStore

logger = logging.getLogger(__name__)

__all__ = [
    "get_app_settings",
    "get_bundle_store",
    "get_commit_lock",
    "get_storage",
    "require_admin_token",
]


def get_app_settings() -> Settings:
    return get_settings()


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_bundle_store(request: Request) -> BundleStore:
    return request.app.state.bundle_store


def get_commit_lock(request: Request) -> asyncio.Lock:
    """Serializes stage+commit sequences: the store's pending buffer is shared."""
    return request.app.state.commit_lock


def require_admin_token(x_admin_token: str | None = Header(None)) -> None:
    """Validate the admin token from the X-Admin-Token header.

    Uses constant-time comparison. Raises 403 if the token is missing, not
    configured, or does not match.
    """
    expected = get_settings().admin_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Admin endpoint auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid admin token")
