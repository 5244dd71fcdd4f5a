"""
Updraft FastAPI application entry point.

Devices ask the update routes what to run; administrators manage bundles
through /api/bundles. Both go through one BundleStore per process.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from updraft import __version__
from updraft.api.deps import get_storage
from updraft.config import get_settings
from updraft.migrations.engine import MigrationEngine
from updraft.storage.base import ObjectStorage
from updraft.storage.router import get_cdn_invalidator, get_object_storage
from updraft.store.bundle_store import BundleStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: build storage, CDN and bundle store."""
    logger.info("Updraft starting")
    settings = get_settings()
    try:
        storage = get_object_storage(settings)
        cdn = get_cdn_invalidator(settings)
    except ValueError as e:
        logger.critical("Storage configuration invalid: %s", e)
        raise

    app.state.storage = storage
    app.state.cdn = cdn
    app.state.bundle_store = BundleStore(
        storage,
        cdn,
        api_base_path=settings.api_base_path,
        cache_control=settings.document_cache_control,
    )
    app.state.commit_lock = asyncio.Lock()
    logger.info(
        "Serving update checks under %s (storage=%s, cdn=%s)",
        settings.api_base_path,
        settings.storage_backend,
        settings.cdn_backend,
    )
    try:
        yield
    finally:
        logger.info("Updraft shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    from updraft.api.bundles import router as bundles_router
    from updraft.api.updates import router as updates_router

    app.include_router(bundles_router, prefix="/api/bundles", tags=["bundles"])
    app.include_router(updates_router, prefix=settings.api_base_path, tags=["updates"])

    @app.get("/health")
    async def health(storage: ObjectStorage = Depends(get_storage)):
        """Health check endpoint. Confirms storage is reachable and reports pending migrations."""
        engine = MigrationEngine(storage, ledger_key=settings.migration_ledger_key)
        try:
            status = await engine.list()
        except Exception:
            logger.warning("Health check: storage unreachable", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "version": __version__,
                    "storage": "disconnected",
                },
            )
        return {
            "status": "ok",
            "version": __version__,
            "storage": "connected",
            "pending_migrations": status.pending,
        }

    return app


app = create_app()
