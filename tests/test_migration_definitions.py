"""Tests for the registered storage layout migrations."""

from __future__ import annotations

import json

import pytest

from tests.test_constants import BUNDLE_ID_1, BUNDLE_ID_2, BUNDLE_ID_3
from updraft.migrations import definitions
from updraft.migrations.definitions import MIGRATIONS, bundle_field_names, channel_prefix
from updraft.migrations.engine import Migration, MigrationEngine, MigrationError
from updraft.storage.memory import MemoryStorage, NullInvalidator
from updraft.store.bundle_store import BundleStore


def _legacy_bundle(bundle_id: str, platform: str, target: str, **extra) -> dict:
    bundle = {
        "id": bundle_id,
        "platform": platform,
        "targetAppVersion": target,
        "shouldForceUpdate": False,
        "enabled": True,
        "fileUrl": f"https://old.example.com/{bundle_id}.zip",
        "storageUri": f"s3://bundles/{bundle_id}/bundle.zip",
        "fileHash": f"sha256-{bundle_id[-4:]}",
        "gitCommitHash": None,
        "message": None,
    }
    bundle.update(extra)
    return bundle


def _dump(value) -> bytes:
    return json.dumps(value).encode("utf-8")


def _load(storage: MemoryStorage, key: str):
    return json.loads(storage.objects[key])


@pytest.fixture
def legacy_storage() -> MemoryStorage:
    """A bucket in the pre-channel layout."""
    return MemoryStorage(
        {
            "ios/1.0.x/update.json": _dump([_legacy_bundle(BUNDLE_ID_1, "ios", "1.0.x")]),
            "ios/1.0.2/update.json": _dump(
                [
                    _legacy_bundle(BUNDLE_ID_2, "ios", "1.0.2"),
                    _legacy_bundle(BUNDLE_ID_3, "ios", "1.0.2", shouldForceUpdate=True),
                ]
            ),
            "android/1.0.x/update.json": _dump([_legacy_bundle(BUNDLE_ID_1, "android", "1.0.x")]),
            "ios/target-app-version.json": _dump(["1.0.x", "1.0.2"]),
            "android/target-app-version.json": _dump(["1.0.x"]),
        }
    )


def _only(migration_name: str) -> list[Migration]:
    return [m for m in MIGRATIONS if m.name == migration_name]


# ── 0001_channel_prefix ─────────────────────────────────────────────


class TestChannelPrefix:
    async def test_moves_documents_under_production(self, legacy_storage):
        await MigrationEngine(legacy_storage, _only("0001_channel_prefix")).run()

        assert not [k for k in legacy_storage.objects if k.startswith(("ios/", "android/"))]
        moved = _load(legacy_storage, "production/ios/1.0.2/update.json")
        assert [b["id"] for b in moved] == [BUNDLE_ID_2, BUNDLE_ID_3]
        assert all(b["channel"] == "production" for b in moved)
        assert all("fileUrl" not in b for b in moved)
        assert "production/android/1.0.x/update.json" in legacy_storage.objects

    async def test_non_document_keys_are_moved_verbatim(self, legacy_storage):
        await MigrationEngine(legacy_storage, _only("0001_channel_prefix")).run()

        assert _load(legacy_storage, "production/ios/target-app-version.json") == ["1.0.x", "1.0.2"]

    async def test_unrelated_keys_untouched(self, legacy_storage):
        legacy_storage.objects["assets/logo.png"] = b"\x89PNG"
        await MigrationEngine(legacy_storage, _only("0001_channel_prefix")).run()

        assert legacy_storage.objects["assets/logo.png"] == b"\x89PNG"

    async def test_rewrites_legacy_root_document(self):
        storage = MemoryStorage({"update.json": _dump([_legacy_bundle(BUNDLE_ID_1, "ios", "1.0")])})
        await MigrationEngine(storage, _only("0001_channel_prefix")).run()

        root = _load(storage, "update.json")
        assert root[0]["channel"] == "production"
        assert "fileUrl" not in root[0]

    async def test_dry_run_leaves_layout_alone(self, legacy_storage):
        before = dict(legacy_storage.objects)
        await MigrationEngine(legacy_storage, _only("0001_channel_prefix")).run(dry_run=True)

        assert legacy_storage.objects == before


# ── 0002_bundle_field_names ─────────────────────────────────────────


class TestBundleFieldNames:
    @pytest.fixture
    def channel_storage(self) -> MemoryStorage:
        return MemoryStorage(
            {
                "production/ios/1.0.2/update.json": _dump(
                    [
                        {
                            "id": BUNDLE_ID_2,
                            "shouldForceUpdate": True,
                            "storageUri": "s3://bundles/b2.zip",
                            "fileHash": "h2",
                        },
                        {"id": BUNDLE_ID_3, "storageUri": "s3://bundles/b3.zip", "fileHash": "h3"},
                    ]
                ),
                "production/ios/target-app-version.json": _dump(["1.0.2"]),
            }
        )

    async def test_renames_and_fills_fields(self, channel_storage):
        await MigrationEngine(channel_storage, _only("0002_bundle_field_names")).run()

        bundles = _load(channel_storage, "production/ios/1.0.2/update.json")
        assert [b["id"] for b in bundles] == [BUNDLE_ID_3, BUNDLE_ID_2]
        older = bundles[1]
        assert "shouldForceUpdate" not in older
        assert older["forceUpdate"] is True
        assert older["rolloutPercentage"] == 100
        assert older["enabled"] is True
        assert older["channel"] == "production"
        assert older["platform"] == "ios"
        assert older["targetAppVersion"] == "1.0.2"

    async def test_replaces_legacy_index(self, channel_storage):
        await MigrationEngine(channel_storage, _only("0002_bundle_field_names")).run()

        assert "production/ios/target-app-version.json" not in channel_storage.objects
        assert _load(channel_storage, "production/ios/target-app-versions.json") == ["1.0.2"]

    async def test_empty_partition_drops_index(self):
        storage = MemoryStorage(
            {
                "beta/android/target-app-version.json": _dump([]),
                "beta/android/target-app-versions.json": _dump(["1.0"]),
            }
        )
        await MigrationEngine(storage, _only("0002_bundle_field_names")).run()

        assert storage.objects == {"migrate.json": storage.objects["migrate.json"]}

    async def test_current_documents_not_rewritten(self):
        current = [
            {
                "id": BUNDLE_ID_1,
                "platform": "ios",
                "channel": "production",
                "targetAppVersion": "1.0",
                "enabled": True,
                "forceUpdate": False,
                "rolloutPercentage": 100,
                "storageUri": "s3://b.zip",
                "fileHash": "h",
            }
        ]
        storage = MemoryStorage(
            {
                "production/ios/1.0/update.json": _dump(current),
                "production/ios/target-app-versions.json": _dump(["1.0"]),
            }
        )
        context_actions = []

        async def spy(ctx):
            await bundle_field_names(ctx)
            context_actions.extend(ctx.actions)

        await MigrationEngine(storage, [Migration("0002_bundle_field_names", spy)]).run()
        assert context_actions == []


# ── Full chain ──────────────────────────────────────────────────────


async def test_full_run_produces_readable_store(legacy_storage):
    engine = MigrationEngine(legacy_storage)
    applied = await engine.run()

    assert applied == ["0001_channel_prefix", "0002_bundle_field_names"]
    assert (await engine.list()).pending == []

    store = BundleStore(legacy_storage, NullInvalidator())
    listing = await store.get_bundles(platform="ios")
    assert [b.id for b in listing.data] == [BUNDLE_ID_3, BUNDLE_ID_2, BUNDLE_ID_1]
    assert (await store.get_bundle_by_id(BUNDLE_ID_3)).force_update is True
    assert sorted(await store.get_target_app_versions("production", "ios")) == ["1.0.2", "1.0.x"]

    candidates = await store.get_candidate_bundles("ios", "production", app_version="1.0.2")
    assert {b.id for b in candidates} == {BUNDLE_ID_1, BUNDLE_ID_2, BUNDLE_ID_3}

    assert not [k for k in legacy_storage.objects if k.startswith("backup/")]


# ── Registry ────────────────────────────────────────────────────────


def test_registry_order():
    assert [m.name for m in MIGRATIONS] == ["0001_channel_prefix", "0002_bundle_field_names"]
    assert MIGRATIONS[0].apply is channel_prefix
    assert MIGRATIONS[0].description.startswith("Move platform-rooted keys")


def test_duplicate_registration_rejected():
    with pytest.raises(MigrationError):

        @definitions.migration("0001_channel_prefix")
        async def again(ctx):
            pass
