"""Command-line entry point: serve the API or run one-off cache jobs."""

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import BaseModel

from tokko_cache.cache.hot import create_hot_store
from tokko_cache.cache.service import HybridCacheService
from tokko_cache.config import Settings
from tokko_cache.db import CacheStorage
from tokko_cache.jobs import ImageProcessingJob, PropertySyncJob
from tokko_cache.logging import configure_logging, get_logger
from tokko_cache.models import SyncMode
from tokko_cache.origin.client import TokkoClient
from tokko_cache.origin.errors import TokkoConfigError

logger = get_logger(__name__)


@asynccontextmanager
async def open_cache(settings: Settings, *, need_origin: bool = False) -> AsyncIterator[
    HybridCacheService
]:
    """Build and initialise the cache service for a one-off command.

    Raises:
        TokkoConfigError: If ``need_origin`` and the API key is missing or invalid.
    """
    origin = TokkoClient.from_settings(settings) if need_origin else None
    storage = CacheStorage(
        settings.database_path, max_images_per_property=settings.image_max_per_property
    )
    cache = HybridCacheService(
        settings, hot=create_hot_store(settings), storage=storage, origin=origin
    )
    await storage.initialize()
    try:
        yield cache
    finally:
        await cache.close()
        await storage.close()


async def run_sync(
    settings: Settings, mode: SyncMode, limit: int, process_id: str | None = None
) -> BaseModel:
    async with open_cache(settings, need_origin=True) as cache:
        if cache.origin is None:
            raise TokkoConfigError("Sync requires a configured origin API key")
        job = PropertySyncJob(settings, cache=cache, storage=cache.storage, origin=cache.origin)
        return await job.run(mode, limit, process_id)


async def run_warm(settings: Settings, limit: int) -> BaseModel:
    async with open_cache(settings) as cache:
        return await cache.warm_cache(limit)


async def run_process_images(settings: Settings, limit: int) -> BaseModel:
    async with open_cache(settings) as cache:
        return await ImageProcessingJob(settings, storage=cache.storage).run(limit)


async def run_cleanup(settings: Settings) -> int:
    async with open_cache(settings) as cache:
        return await cache.storage.cleanup_old_checkpoints(settings.checkpoint_retention_days)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Tokko Cache - read-only, three-tier cache for the TokkoBroker API"
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start the API server with the background warming scheduler",
    )
    parser.add_argument(
        "--no-warming",
        action="store_true",
        help="With --serve: start the API only, skip periodic cache warming",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Sync properties from the origin API into the cache",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SyncMode],
        default=SyncMode.INCREMENTAL.value,
        help="With --sync: resume (incremental) or restart and reconcile (full)",
    )
    parser.add_argument("--limit", type=int, default=100, help="With --sync: max properties")
    parser.add_argument(
        "--process-id",
        default=None,
        help="With --sync: checkpoint id to resume or create",
    )
    parser.add_argument(
        "--warm",
        type=int,
        metavar="N",
        default=None,
        help="Load the N most requested properties into the hot tier",
    )
    parser.add_argument(
        "--process-images",
        type=int,
        metavar="N",
        default=None,
        help="Convert up to N pending images to WebP",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete finished checkpoints older than the retention period",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    configure_logging(json_output=False, level=logging.DEBUG if args.debug else logging.INFO)

    try:
        settings = Settings()
    except Exception as e:
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from TOKKO_CACHE_* environment variables or a .env file.")
        sys.exit(1)
    if args.debug:
        settings = settings.model_copy(update={"log_level": "debug"})

    logger.info(
        "starting_tokko_cache",
        hot_backend="redis" if settings.redis_url else "memory",
        database=settings.database_path,
        origin_configured=settings.origin_configured,
    )

    if args.serve:
        import uvicorn

        from tokko_cache.web.app import create_app

        app = create_app(settings, run_warming=not args.no_warming)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
    elif args.sync:
        if not settings.origin_configured:
            print("Error: TOKKO_CACHE_TOKKO_API_KEY is required for --sync")
            sys.exit(1)
        result = asyncio.run(
            run_sync(settings, SyncMode(args.mode), args.limit, args.process_id)
        )
        print(result.model_dump_json(indent=2))
    elif args.warm is not None:
        if not settings.redis_url:
            logger.warning("warm_without_shared_hot_tier")
            print("Error: --warm needs TOKKO_CACHE_REDIS_URL; the in-memory hot tier")
            print("would be discarded when this command exits.")
            sys.exit(1)
        warmed = asyncio.run(run_warm(settings, args.warm))
        print(warmed.model_dump_json(indent=2))
    elif args.process_images is not None:
        processed = asyncio.run(run_process_images(settings, args.process_images))
        print(processed.model_dump_json(indent=2))
    elif args.cleanup:
        deleted = asyncio.run(run_cleanup(settings))
        print(f"Deleted {deleted} old checkpoints")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
