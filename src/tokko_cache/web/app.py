"""FastAPI application factory with the periodic cache-warming loop."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tokko_cache.cache.hot import create_hot_store
from tokko_cache.cache.service import HybridCacheService
from tokko_cache.config import Settings
from tokko_cache.db import CacheStorage
from tokko_cache.jobs import BackgroundJobs, ImageProcessingJob, PropertySyncJob
from tokko_cache.logging import configure_logging, get_logger
from tokko_cache.origin.client import TokkoClient
from tokko_cache.origin.errors import TokkoConfigError

logger = get_logger(__name__)

WARMING_INITIAL_DELAY_SECONDS = 30


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def _warming_loop(cache: HybridCacheService, settings: Settings) -> None:
    """Preload popular properties and prune old checkpoints on a schedule."""
    logger.info("warming_scheduler_initial_delay", seconds=WARMING_INITIAL_DELAY_SECONDS)
    await asyncio.sleep(WARMING_INITIAL_DELAY_SECONDS)

    while True:
        try:
            await cache.warm_cache(settings.warming_limit)
            await cache.storage.cleanup_old_checkpoints(settings.checkpoint_retention_days)
        except Exception:
            logger.error("warming_scheduler_error", exc_info=True)
        logger.info("warming_scheduler_sleeping", minutes=settings.warming_interval_minutes)
        await asyncio.sleep(settings.warming_interval_minutes * 60)


def _build_origin(settings: Settings) -> TokkoClient | None:
    if not settings.origin_configured:
        logger.warning("origin_not_configured")
        return None
    try:
        return TokkoClient.from_settings(settings)
    except TokkoConfigError:
        logger.error("origin_config_invalid", exc_info=True)
        return None


def create_app(
    settings: Settings | None = None,
    *,
    run_warming: bool = True,
    cache: HybridCacheService | None = None,
    origin: TokkoClient | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        run_warming: Whether to start the background warming scheduler.
        cache: Pre-built cache service (its storage and origin are reused).
        origin: Origin client to use instead of one built from settings.
    """
    if settings is None:
        settings = Settings()

    configure_logging(json_output=settings.log_json, level=settings.log_level)

    if cache is None:
        cache = HybridCacheService(
            settings,
            hot=create_hot_store(settings),
            storage=CacheStorage(
                settings.database_path,
                max_images_per_property=settings.image_max_per_property,
            ),
            origin=origin if origin is not None else _build_origin(settings),
        )
    service = cache
    jobs = BackgroundJobs()
    warming_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        nonlocal warming_task
        await service.storage.initialize()
        await service.connect()

        app.state.settings = settings
        app.state.cache = service
        app.state.storage = service.storage
        app.state.jobs = jobs
        app.state.sync_job = (
            PropertySyncJob(
                settings, cache=service, storage=service.storage, origin=service.origin
            )
            if service.origin is not None
            else None
        )
        app.state.image_job = ImageProcessingJob(settings, storage=service.storage)

        if run_warming and settings.warming_enabled:
            warming_task = asyncio.create_task(_warming_loop(service, settings))
            logger.info(
                "web_server_started", warming_interval=settings.warming_interval_minutes
            )
        else:
            logger.info("web_server_started", warming="disabled")

        yield

        # Shutdown
        if warming_task:
            warming_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await warming_task
        await jobs.cancel_all()
        await service.close()
        await service.storage.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="Tokko Cache", lifespan=lifespan)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    # Register routes
    from tokko_cache.web.routes import router

    app.include_router(router)

    return app
