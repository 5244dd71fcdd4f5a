"""Object key layout of the bundle store and the CDN paths derived from it.

    {channel}/{platform}/{target}/update.json        partition document
    {channel}/{platform}/target-app-versions.json    version index

``target`` is the bundle's fingerprint hash when it has one, otherwise its
normalized target app version.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

from semver import Version

from updraft.schemas.bundle import Bundle
from updraft.services.version_matcher import coerce_version

DOCUMENT_FILENAME = "update.json"
INDEX_FILENAME = "target-app-versions.json"

# Characters encodeURI leaves alone, so CDN paths match what clients request
_URI_SAFE = "/;,?:@&=+$!*'()#"

_COMPARATOR_SPACE = re.compile(r"([><=~^]+)\s+(\d)")


def normalize_target_app_version(version: Optional[str]) -> Optional[str]:
    """Canonical key form of a version range.

    ">=  5.7.0   <= 5.7.4" -> ">=5.7.0 <=5.7.4": whitespace collapsed, no
    space inside a comparator, one space between comparators.
    """
    if not version:
        return None
    normalized = " ".join(version.split())
    return _COMPARATOR_SPACE.sub(r"\1\2", normalized) or None


def is_exact_version(version: Optional[str]) -> bool:
    """True for a single concrete version ("1.2.3"), False for any range."""
    normalized = normalize_target_app_version(version)
    if not normalized:
        return False
    return Version.is_valid(normalized)


def semver_normalized_versions(version: str) -> list[str]:
    """Every spelling a client may use for an exact version.

    "1.0.0" -> ["1.0.0", "1.0", "1"]; "2.1.0" -> ["2.1.0", "2.1"];
    "1.2.3" -> ["1.2.3"].
    """
    normalized = normalize_target_app_version(version) or version
    coerced = coerce_version(normalized)
    if coerced is None:
        return [normalized]
    versions = [str(coerced)]
    if coerced.patch == 0:
        versions.append(f"{coerced.major}.{coerced.minor}")
        if coerced.minor == 0:
            versions.append(f"{coerced.major}")
    return versions


def partition_target(bundle: Bundle) -> Optional[str]:
    return bundle.fingerprint_hash or normalize_target_app_version(bundle.target_app_version)


def partition_key(channel: str, platform: str, target: str) -> str:
    return f"{channel}/{platform}/{target}/{DOCUMENT_FILENAME}"


def bundle_partition_key(bundle: Bundle) -> Optional[str]:
    target = partition_target(bundle)
    if not target:
        return None
    return partition_key(bundle.channel, bundle.platform, target)


def index_key(channel: str, platform: str) -> str:
    return f"{channel}/{platform}/{INDEX_FILENAME}"


def partition_prefix(channel: Optional[str] = None, platform: Optional[str] = None) -> str:
    """Narrowest listing prefix for the filters (platform alone cannot narrow)."""
    if channel and platform:
        return f"{channel}/{platform}/"
    if channel:
        return f"{channel}/"
    return ""


def partition_key_pattern(
    channel: Optional[str] = None, platform: Optional[str] = None
) -> re.Pattern[str]:
    channel_part = re.escape(channel) if channel else "[^/]+"
    platform_part = re.escape(platform) if platform else "[^/]+"
    return re.compile(
        rf"^{channel_part}/{platform_part}/[^/]+/{re.escape(DOCUMENT_FILENAME)}$"
    )


def split_partition_key(key: str) -> tuple[str, str, str]:
    """(channel, platform, target) of a partition document key."""
    channel, platform, target, _ = key.split("/")
    return channel, platform, target


# ── CDN paths ───────────────────────────────────────────────────────


def object_path(key: str) -> str:
    return f"/{key}"


def resolution_paths(bundle: Bundle, api_base_path: str) -> set[str]:
    """Cached resolution routes whose answer may change when bundle changes."""
    if bundle.fingerprint_hash:
        return {
            f"{api_base_path}/fingerprint/{bundle.platform}/"
            f"{bundle.fingerprint_hash}/{bundle.channel}/*"
        }
    if not bundle.target_app_version:
        return set()
    if not is_exact_version(bundle.target_app_version):
        # Any requested version may fall inside a range
        return {f"{api_base_path}/app-version/{bundle.platform}/*"}
    return {
        f"{api_base_path}/app-version/{bundle.platform}/{version}/{bundle.channel}/*"
        for version in semver_normalized_versions(bundle.target_app_version)
    }


def encode_path(path: str) -> str:
    """Percent-encode a CDN path the way encodeURI does (``*`` and ``/`` kept)."""
    return quote(path, safe=_URI_SAFE)
