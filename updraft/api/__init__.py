"""API routes."""

from updraft.api.bundles import router as bundles_router
from updraft.api.updates import router as updates_router

__all__ = ["bundles_router", "updates_router"]
