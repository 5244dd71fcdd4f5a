"""
Update resolver: decides what a device should run next.

Given the bundles stored for a (channel, platform) and what the device reports,
the outcome is one of:

    None      the device is up to date
    UPDATE    download and apply a newer bundle
    ROLLBACK  the installed bundle is gone or disabled; go back to an older
              enabled bundle, or to the bundle shipped in the native build
              (id == BASELINE_BUNDLE_ID, no file)

resolve_update() is pure. check_update() loads candidates from a BundleStore
first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote, urlsplit

from updraft.schemas.bundle import Bundle
from updraft.schemas.update import BASELINE_BUNDLE_ID, UpdateDecision, UpdateRequest
from updraft.services.version_matcher import match_versions

if TYPE_CHECKING:
    from updraft.store.bundle_store import BundleStore

logger = logging.getLogger(__name__)


# ── Rollout eligibility ─────────────────────────────────────────────


def device_rollout_bucket(device_id: str) -> int:
    """Stable bucket in [0, 100) for a device id.

    32-bit ``h = h * 31 + c`` string hash over UTF-16 code units, so devices
    land in the same bucket as the mobile SDK computes.
    """
    data = device_id.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % 100


def is_device_eligible(bundle: Bundle, device_id: Optional[str]) -> bool:
    """True if the bundle's rollout rules include this device.

    An explicit target_device_ids list wins over the percentage. Requests
    without a device id are not gated.
    """
    if device_id is None:
        return True
    if bundle.target_device_ids:
        return device_id in bundle.target_device_ids
    if bundle.rollout_percentage >= 100:
        return True
    if bundle.rollout_percentage <= 0:
        return False
    return device_rollout_bucket(device_id) < bundle.rollout_percentage


# ── File URLs ───────────────────────────────────────────────────────


def build_file_url(storage_uri: Optional[str], public_base_url: str = "") -> Optional[str]:
    """Turn a bundle's storage_uri into a URL the device can download.

    http(s) URIs are returned as is. ``<scheme>://<bucket>/<key>`` becomes
    ``{public_base_url}/{key}``; without a public base URL the URI is returned
    unchanged.
    """
    if not storage_uri:
        return None
    parts = urlsplit(storage_uri)
    if parts.scheme in ("http", "https") or not public_base_url:
        return storage_uri
    key = parts.path.lstrip("/")
    return f"{public_base_url.rstrip('/')}/{quote(key)}"


# ── Resolution ──────────────────────────────────────────────────────


def select_candidates(bundles: Iterable[Bundle], request: UpdateRequest) -> list[Bundle]:
    """Bundles that could be served to this device, best match first."""
    scoped = [
        b
        for b in bundles
        if b.platform == request.platform
        and b.channel == request.channel
        and b.id >= request.min_bundle_id
    ]
    if request.fingerprint_hash is not None:
        matched = [b for b in scoped if b.fingerprint_hash == request.fingerprint_hash]
        return sorted(matched, key=lambda b: b.id, reverse=True)
    return match_versions(scoped, request.app_version)


def _decision(bundle: Bundle, status: str, force_update: bool, public_base_url: str) -> UpdateDecision:
    return UpdateDecision(
        id=bundle.id,
        status=status,
        force_update=force_update,
        file_url=build_file_url(bundle.storage_uri, public_base_url),
        file_hash=bundle.file_hash,
        message=bundle.message,
    )


def resolve_update(
    bundles: Iterable[Bundle],
    request: UpdateRequest,
    public_base_url: str = "",
) -> UpdateDecision | None:
    """Decide the device's next bundle. Returns None when nothing changes.

    | latest enabled (L) | device on baseline | device on bundle X           |
    |--------------------|--------------------|------------------------------|
    | none               | None               | ROLLBACK to baseline, forced |
    | L                  | UPDATE to L        | L == X: None                 |
    |                    |                    | L >  X: UPDATE to L          |
    |                    |                    | L <  X: ROLLBACK to L, forced|

    With no candidate, a device whose bundle is not newer than min_bundle_id
    gets None instead of the baseline rollback.
    """
    candidates = select_candidates(bundles, request)
    current = request.current_bundle_id
    has_prior_bundle = current != BASELINE_BUNDLE_ID

    enabled = [b for b in candidates if b.enabled]
    latest = max(enabled, key=lambda b: b.id) if enabled else None

    if latest is None:
        # A device at or below the floor already runs the native build's bundle
        if has_prior_bundle and current > request.min_bundle_id:
            return UpdateDecision(
                id=BASELINE_BUNDLE_ID,
                status="ROLLBACK",
                force_update=True,
                file_url=None,
                file_hash=None,
            )
        return None

    if has_prior_bundle:
        if latest.id == current:
            return None
        if latest.id < current:
            return _decision(latest, "ROLLBACK", True, public_base_url)

    if not is_device_eligible(latest, request.device_id):
        logger.debug(
            "Device %s outside rollout of bundle %s (%d%%)",
            request.device_id,
            latest.id,
            latest.rollout_percentage,
        )
        return None
    return _decision(latest, "UPDATE", latest.force_update, public_base_url)


async def check_update(
    store: BundleStore,
    request: UpdateRequest,
    public_base_url: str = "",
) -> UpdateDecision | None:
    """Load candidate bundles for the request from the store and resolve."""
    bundles = await store.get_candidate_bundles(
        platform=request.platform,
        channel=request.channel,
        app_version=request.app_version,
        fingerprint_hash=request.fingerprint_hash,
    )
    return resolve_update(bundles, request, public_base_url=public_base_url)
