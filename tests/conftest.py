"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from tests.test_constants import BUNDLE_ID_1, PUBLIC_BASE_URL, TEST_ADMIN_TOKEN

# Always test against in-process storage; don't inherit cloud settings from .env
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["CDN_BACKEND"] = "none"
os.environ["PUBLIC_BASE_URL"] = PUBLIC_BASE_URL
os.environ.pop("API_BASE_PATH", None)
os.environ["ADMIN_TOKEN"] = TEST_ADMIN_TOKEN

from updraft.schemas.bundle import Bundle  # noqa: E402
from updraft.storage.memory import MemoryStorage, RecordingInvalidator  # noqa: E402
from updraft.store.bundle_store import BundleStore  # noqa: E402


@pytest.fixture
def storage() -> MemoryStorage:
    """Empty in-memory bucket."""
    return MemoryStorage()


@pytest.fixture
def cdn() -> RecordingInvalidator:
    """CDN stand-in that records each invalidation batch."""
    return RecordingInvalidator()


@pytest.fixture
def store(storage: MemoryStorage, cdn: RecordingInvalidator) -> BundleStore:
    return BundleStore(storage, cdn, api_base_path="/api/check-update")


@pytest.fixture
def make_bundle() -> Callable[..., Bundle]:
    """Factory for valid bundles; keyword arguments override the defaults."""

    def _make(**overrides) -> Bundle:
        bundle_id = overrides.pop("id", BUNDLE_ID_1)
        fields = {
            "id": bundle_id,
            "platform": "ios",
            "channel": "production",
            "target_app_version": "1.0",
            "enabled": True,
            "force_update": False,
            "storage_uri": f"s3://bundles/{bundle_id}/bundle.zip",
            "file_hash": f"sha256-{bundle_id[-4:]}",
        }
        fields.update(overrides)
        return Bundle(**fields)

    return _make


@pytest.fixture
def client(storage: MemoryStorage, store: BundleStore) -> TestClient:
    """FastAPI test client wired to the per-test storage and bundle store."""
    from updraft.api.deps import get_bundle_store, get_commit_lock, get_storage
    from updraft.main import app

    lock = asyncio.Lock()
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_bundle_store] = lambda: store
    app.dependency_overrides[get_commit_lock] = lambda: lock
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_storage, None)
    app.dependency_overrides.pop(get_bundle_store, None)
    app.dependency_overrides.pop(get_commit_lock, None)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}
