"""Tests for the device-facing update check routes."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from tests.test_constants import API_BASE_PATH, BUNDLE_ID_1, BUNDLE_ID_2, PUBLIC_BASE_URL
from updraft.schemas.update import BASELINE_BUNDLE_ID

BASE = BASELINE_BUNDLE_ID


def _seed(store, *bundles) -> None:
    for bundle in bundles:
        store.insert(bundle)
    asyncio.run(store.commit())


def _app_version_url(app_version="1.0", current=BASE, min_id=BASE, channel="production", device=None):
    url = f"{API_BASE_PATH}/app-version/ios/{app_version}/{channel}/{min_id}/{current}"
    return f"{url}/{device}" if device else url


class TestAppVersionRoute:
    def test_returns_update(self, client: TestClient, store, make_bundle) -> None:
        """Device on the native bundle gets the newest matching bundle."""
        _seed(store, make_bundle(id=BUNDLE_ID_1, target_app_version="1.0", force_update=True))

        response = client.get(_app_version_url())

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == BUNDLE_ID_1
        assert data["status"] == "UPDATE"
        assert data["forceUpdate"] is True
        assert data["fileUrl"] == f"{PUBLIC_BASE_URL}/{BUNDLE_ID_1}/bundle.zip"
        assert data["fileHash"] == f"sha256-{BUNDLE_ID_1[-4:]}"
        assert "storageUri" not in data

    def test_up_to_date_returns_null(self, client: TestClient, store, make_bundle) -> None:
        _seed(store, make_bundle(id=BUNDLE_ID_1))

        response = client.get(_app_version_url(current=BUNDLE_ID_1))

        assert response.status_code == 200
        assert response.json() is None

    def test_no_bundles_returns_null(self, client: TestClient) -> None:
        response = client.get(_app_version_url())
        assert response.status_code == 200
        assert response.json() is None

    def test_disabled_bundle_rolls_back(self, client: TestClient, store, make_bundle) -> None:
        _seed(store, make_bundle(id=BUNDLE_ID_1, enabled=False))

        data = client.get(_app_version_url(current=BUNDLE_ID_1)).json()

        assert data["id"] == BASE
        assert data["status"] == "ROLLBACK"
        assert data["forceUpdate"] is True
        assert data["fileUrl"] is None

    def test_device_route_applies_rollout(self, client: TestClient, store, make_bundle) -> None:
        _seed(store, make_bundle(id=BUNDLE_ID_1, rollout_percentage=0, target_device_ids=["tester"]))

        assert client.get(_app_version_url(device="someone-else")).json() is None
        assert client.get(_app_version_url(device="tester")).json()["id"] == BUNDLE_ID_1

    def test_other_channel_not_served(self, client: TestClient, store, make_bundle) -> None:
        _seed(store, make_bundle(id=BUNDLE_ID_1, channel="beta"))

        assert client.get(_app_version_url()).json() is None
        assert client.get(_app_version_url(channel="beta")).json()["id"] == BUNDLE_ID_1

    def test_min_bundle_id_floor(self, client: TestClient, store, make_bundle) -> None:
        _seed(store, make_bundle(id=BUNDLE_ID_1))

        response = client.get(_app_version_url(min_id=BUNDLE_ID_2, current=BUNDLE_ID_2))
        assert response.json() is None

    def test_invalid_platform_is_422(self, client: TestClient) -> None:
        response = client.get(f"{API_BASE_PATH}/app-version/windows/1.0/production/{BASE}/{BASE}")
        assert response.status_code == 422


class TestFingerprintRoute:
    def test_exact_fingerprint_match(self, client: TestClient, store, make_bundle) -> None:
        _seed(
            store,
            make_bundle(id=BUNDLE_ID_1, target_app_version=None, fingerprint_hash="fp-a"),
            make_bundle(id=BUNDLE_ID_2, target_app_version=None, fingerprint_hash="fp-b"),
        )

        data = client.get(f"{API_BASE_PATH}/fingerprint/ios/fp-a/production/{BASE}/{BASE}").json()
        assert data["id"] == BUNDLE_ID_1
        assert data["status"] == "UPDATE"

    def test_fingerprint_with_device(self, client: TestClient, store, make_bundle) -> None:
        _seed(
            store,
            make_bundle(id=BUNDLE_ID_1, target_app_version=None, fingerprint_hash="fp-a", rollout_percentage=0),
        )

        url = f"{API_BASE_PATH}/fingerprint/ios/fp-a/production/{BASE}/{BASE}/device-1"
        assert client.get(url).json() is None


@pytest.mark.parametrize("suffix", ["", "/device-1"])
def test_routes_are_public(client: TestClient, suffix: str) -> None:
    """Update checks do not need the admin token."""
    response = client.get(_app_version_url() + suffix)
    assert response.status_code == 200
