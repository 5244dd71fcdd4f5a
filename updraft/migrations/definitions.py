"""Registered storage layout migrations, applied in definition order.

Never rename or reorder a released migration: the ledger records names.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from updraft.migrations.engine import Migration, MigrationContext, MigrationError
from updraft.schemas.bundle import DEFAULT_CHANNEL, PLATFORMS
from updraft.store import keys
from updraft.store.bundle_store import DEFAULT_CACHE_CONTROL

MigrationFunc = Callable[[MigrationContext], Awaitable[None]]

MIGRATIONS: list[Migration] = []

LEGACY_INDEX_FILENAME = "target-app-version.json"
LEGACY_ROOT_DOCUMENT = "update.json"


def migration(name: str) -> Callable[[MigrationFunc], MigrationFunc]:
    """Register an async migration function under a permanent name."""

    def decorator(func: MigrationFunc) -> MigrationFunc:
        if any(m.name == name for m in MIGRATIONS):
            raise MigrationError(f"Migration {name!r} is already registered")
        doc = (func.__doc__ or "").strip()
        MIGRATIONS.append(Migration(name=name, apply=func, description=doc.splitlines()[0] if doc else ""))
        return func

    return decorator


def _into_channel(bundle: dict[str, Any]) -> dict[str, Any]:
    moved = {k: v for k, v in bundle.items() if k != "fileUrl"}
    moved["channel"] = DEFAULT_CHANNEL
    return moved


@migration("0001_channel_prefix")
async def channel_prefix(ctx: MigrationContext) -> None:
    """Move platform-rooted keys (ios/..., android/...) under the production channel."""
    for key in await ctx.list(""):
        if key.split("/", 1)[0] not in PLATFORMS:
            continue
        new_key = f"{DEFAULT_CHANNEL}/{key}"
        if key.endswith(f"/{keys.DOCUMENT_FILENAME}"):
            bundles = await ctx.read_json(key) or []
            await ctx.write_json(
                new_key, [_into_channel(b) for b in bundles], cache_control=DEFAULT_CACHE_CONTROL
            )
            await ctx.delete(key)
        else:
            await ctx.move(key, new_key)

    root = await ctx.read_json(LEGACY_ROOT_DOCUMENT)
    if root:
        await ctx.write_json(
            LEGACY_ROOT_DOCUMENT,
            [_into_channel(b) for b in root],
            cache_control=DEFAULT_CACHE_CONTROL,
        )


def _current_bundle_fields(
    bundle: dict[str, Any], channel: str, platform: str, target: str
) -> dict[str, Any]:
    fixed = dict(bundle)
    if "shouldForceUpdate" in fixed:
        legacy = fixed.pop("shouldForceUpdate")
        fixed.setdefault("forceUpdate", legacy)
    fixed.setdefault("rolloutPercentage", 100)
    fixed.setdefault("enabled", True)
    fixed.setdefault("channel", channel)
    fixed.setdefault("platform", platform)
    if not fixed.get("fingerprintHash") and not fixed.get("targetAppVersion"):
        fixed["targetAppVersion"] = target
    return fixed


@migration("0002_bundle_field_names")
async def bundle_field_names(ctx: MigrationContext) -> None:
    """Rename legacy bundle fields and rebuild target-app-versions.json indexes."""
    pattern = keys.partition_key_pattern()
    listed = await ctx.list("")
    targets: dict[tuple[str, str], list[str]] = {}

    for key in listed:
        if not pattern.match(key):
            continue
        channel, platform, target = keys.split_partition_key(key)
        targets.setdefault((channel, platform), []).append(target)
        bundles = await ctx.read_json(key) or []
        fixed = [_current_bundle_fields(b, channel, platform, target) for b in bundles]
        fixed.sort(key=lambda b: str(b.get("id", "")), reverse=True)
        if fixed != bundles:
            await ctx.write_json(key, fixed, cache_control=DEFAULT_CACHE_CONTROL)

    for key in listed:
        parts = key.split("/")
        if len(parts) == 3 and parts[2] == LEGACY_INDEX_FILENAME:
            targets.setdefault((parts[0], parts[1]), [])
            await ctx.delete(key)

    for (channel, platform), present in sorted(targets.items()):
        index = keys.index_key(channel, platform)
        if not present:
            if await ctx.read(index) is not None:
                await ctx.delete(index)
            continue
        if await ctx.read_json(index) != present:
            await ctx.write_json(index, present, cache_control=DEFAULT_CACHE_CONTROL)
