"""Update check routes called by devices (mounted under API_BASE_PATH).

Paths are fully positional so the CDN can cache each answer and the bundle
store can invalidate exactly the affected prefixes:

    /app-version/{platform}/{appVersion}/{channel}/{minBundleId}/{bundleId}[/{deviceId}]
    /fingerprint/{platform}/{fingerprintHash}/{channel}/{minBundleId}/{bundleId}[/{deviceId}]

The body is ``null`` when the device is up to date.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from updraft.api.deps import get_app_settings, get_bundle_store
from updraft.config import Settings
from updraft.schemas.update import UpdateDecision, UpdateRequest
from updraft.services.update_resolver import check_update
from updraft.store.bundle_store import BundleStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _build_request(**fields) -> UpdateRequest:
    try:
        return UpdateRequest(**fields)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=exc.errors(include_url=False, include_context=False)
        ) from None


async def _resolve(
    store: BundleStore, settings: Settings, request: UpdateRequest
) -> Optional[UpdateDecision]:
    decision = await check_update(store, request, public_base_url=settings.public_base_url)
    logger.debug(
        "Update check %s/%s current=%s -> %s",
        request.platform,
        request.channel,
        request.current_bundle_id,
        decision.status if decision else "up to date",
    )
    return decision


@router.get(
    "/app-version/{platform}/{app_version}/{channel}/{min_bundle_id}/{bundle_id}",
    response_model=Optional[UpdateDecision],
)
@router.get(
    "/app-version/{platform}/{app_version}/{channel}/{min_bundle_id}/{bundle_id}/{device_id}",
    response_model=Optional[UpdateDecision],
)
async def app_version_update(
    platform: str,
    app_version: str,
    channel: str,
    min_bundle_id: str,
    bundle_id: str,
    device_id: Optional[str] = None,
    store: BundleStore = Depends(get_bundle_store),
    settings: Settings = Depends(get_app_settings),
) -> Optional[UpdateDecision]:
    """Resolve an update for a device identified by its native app version."""
    request = _build_request(
        platform=platform,
        channel=channel,
        app_version=app_version,
        current_bundle_id=bundle_id,
        min_bundle_id=min_bundle_id,
        device_id=device_id,
    )
    return await _resolve(store, settings, request)


@router.get(
    "/fingerprint/{platform}/{fingerprint_hash}/{channel}/{min_bundle_id}/{bundle_id}",
    response_model=Optional[UpdateDecision],
)
@router.get(
    "/fingerprint/{platform}/{fingerprint_hash}/{channel}/{min_bundle_id}/{bundle_id}/{device_id}",
    response_model=Optional[UpdateDecision],
)
async def fingerprint_update(
    platform: str,
    fingerprint_hash: str,
    channel: str,
    min_bundle_id: str,
    bundle_id: str,
    device_id: Optional[str] = None,
    store: BundleStore = Depends(get_bundle_store),
    settings: Settings = Depends(get_app_settings),
) -> Optional[UpdateDecision]:
    """Resolve an update for a device identified by its native build fingerprint."""
    request = _build_request(
        platform=platform,
        channel=channel,
        fingerprint_hash=fingerprint_hash,
        current_bundle_id=bundle_id,
        min_bundle_id=min_bundle_id,
        device_id=device_id,
    )
    return await _resolve(store, settings, request)
