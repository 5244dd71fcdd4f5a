"""Bundle administration routes (token-protected).

Every write stages its change in the bundle store and commits immediately,
under the application's commit lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query

from updraft.api.deps import get_bundle_store, get_commit_lock, require_admin_token
from updraft.schemas.bundle import Bundle, BundleList, BundleUpdate, Platform
from updraft.store.bundle_store import (
    BundleNotFoundError,
    BundleStore,
    InvalidBundleError,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_token)])


async def _commit(store: BundleStore) -> list[str]:
    """Commit staged changes; on failure drop them so they do not leak into the next request."""
    try:
        return await store.commit()
    except Exception:
        logger.exception("Bundle commit failed; discarding %d staged change(s)", len(store.pending))
        store.discard()
        raise


@router.get("", response_model=BundleList)
async def api_list_bundles(
    channel: Optional[str] = Query(None),
    platform: Optional[Platform] = Query(None),
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: BundleStore = Depends(get_bundle_store),
) -> BundleList:
    """List bundles, newest first."""
    return await store.get_bundles(channel=channel, platform=platform, limit=limit, offset=offset)


@router.get("/channels")
async def api_list_channels(store: BundleStore = Depends(get_bundle_store)) -> list[str]:
    """Channels that hold at least one bundle."""
    return await store.get_channels()


@router.get("/{bundle_id}", response_model=Bundle)
async def api_get_bundle(
    bundle_id: str,
    store: BundleStore = Depends(get_bundle_store),
) -> Bundle:
    bundle = await store.get_bundle_by_id(bundle_id)
    if bundle is None:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return bundle


@router.post("", status_code=201)
async def api_create_bundles(
    data: Union[Bundle, list[Bundle]],
    store: BundleStore = Depends(get_bundle_store),
    lock: asyncio.Lock = Depends(get_commit_lock),
) -> dict:
    """Insert one bundle or a list of bundles."""
    bundles = data if isinstance(data, list) else [data]
    ids = [b.id for b in bundles]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=422, detail="Duplicate bundle id in request")

    async with lock:
        existing = {b.id for b in (await store.get_bundles()).data}
        conflicts = sorted(existing.intersection(ids))
        if conflicts:
            raise HTTPException(
                status_code=409, detail=f"Bundle already exists: {', '.join(conflicts)}"
            )
        try:
            for bundle in bundles:
                store.insert(bundle)
        except InvalidBundleError as exc:
            store.discard()
            raise HTTPException(status_code=422, detail=str(exc)) from None
        await _commit(store)

    logger.info("Inserted %d bundle(s)", len(bundles))
    return {"success": True, "ids": ids}


@router.patch("/{bundle_id}", response_model=Bundle)
async def api_update_bundle(
    bundle_id: str,
    data: BundleUpdate,
    store: BundleStore = Depends(get_bundle_store),
    lock: asyncio.Lock = Depends(get_commit_lock),
) -> Bundle:
    """Apply a partial update; the bundle moves partitions if its target changes."""
    async with lock:
        try:
            updated = await store.update(bundle_id, data)
        except BundleNotFoundError:
            raise HTTPException(status_code=404, detail="Bundle not found") from None
        except InvalidBundleError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from None
        await _commit(store)
    return updated


@router.delete("/{bundle_id}")
async def api_delete_bundle(
    bundle_id: str,
    store: BundleStore = Depends(get_bundle_store),
    lock: asyncio.Lock = Depends(get_commit_lock),
) -> dict:
    async with lock:
        try:
            await store.delete(bundle_id)
        except BundleNotFoundError:
            raise HTTPException(status_code=404, detail="Bundle not found") from None
        await _commit(store)
    return {"success": True, "id": bundle_id}
