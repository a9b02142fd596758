"""JSON API routes: property reads, cache management, sync and checkpoints."""

from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import ValidationError

from tokko_cache.cache.hot import HotStoreError
from tokko_cache.cache.service import HybridCacheService, OriginUnavailableError
from tokko_cache.db.storage import CacheStorage
from tokko_cache.jobs.images import ImageProcessingJob
from tokko_cache.jobs.runner import BackgroundJobs
from tokko_cache.jobs.sync import PropertySyncJob, new_process_id
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    ACTIVE_CHECKPOINT_STATUSES,
    Checkpoint,
    ProcessType,
    SearchFilters,
)
from tokko_cache.utils.image_cache import resolve_cached_file
from tokko_cache.web.schemas import (
    ImageProcessRequest,
    InitialSyncRequest,
    InvalidateRequest,
    PauseCheckpointRequest,
    StopCheckpointRequest,
    SyncRequest,
    WarmRequest,
)

logger = get_logger(__name__)

router = APIRouter()

MAX_PAGE_SIZE = 50


def _get_cache(request: Request) -> HybridCacheService:
    return request.app.state.cache  # type: ignore[no-any-return]


def _get_storage(request: Request) -> CacheStorage:
    return request.app.state.storage  # type: ignore[no-any-return]


def _get_jobs(request: Request) -> BackgroundJobs:
    return request.app.state.jobs  # type: ignore[no-any-return]


def _get_sync_job(request: Request) -> PropertySyncJob | None:
    return request.app.state.sync_job  # type: ignore[no-any-return]


def _get_data_dir(request: Request) -> str:
    return request.app.state.settings.data_dir  # type: ignore[no-any-return]


def _error(status_code: int, error: str, details: Any = None) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error, "details": details}, status_code=status_code
    )


def _checkpoint_payload(checkpoint: Checkpoint) -> dict[str, Any]:
    return {
        **checkpoint.model_dump(mode="json"),
        "progress": checkpoint.progress_info().model_dump(mode="json"),
    }


def _origin_not_configured() -> JSONResponse:
    return _error(503, "Origin API not configured", "Set TOKKO_CACHE_TOKKO_API_KEY")


def _first_set(*values: float | None) -> float | None:
    return next((v for v in values if v is not None), None)


@router.get("/health")
async def health_check() -> JSONResponse:
    return JSONResponse({"status": "ok"})


# ----------------------------------------------------------------------
# Properties
# ----------------------------------------------------------------------


@router.get("/api/properties/search")
async def search_properties(
    request: Request,
    query: str | None = None,
    property_type: str | None = Query(default=None, alias="type"),
    operation: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    min_surface: float | None = None,
    max_surface: float | None = None,
    featured: bool | None = None,
    tags: list[str] = Query(default=[]),
    page: int = 1,
    limit: int = 12,
    min_price_alias: float | None = Query(default=None, alias="minPrice"),
    max_price_alias: float | None = Query(default=None, alias="maxPrice"),
    min_surface_alias: float | None = Query(default=None, alias="minSurface"),
    max_surface_alias: float | None = Query(default=None, alias="maxSurface"),
) -> JSONResponse:
    """Search cached properties; out-of-range page/limit values are clamped.

    Range filters are accepted in snake_case or camelCase (``minPrice``);
    the snake_case value wins when both are given.
    """
    try:
        filters = SearchFilters(
            query=query,
            type=property_type,
            operation=operation,
            min_price=_first_set(min_price, min_price_alias),
            max_price=_first_set(max_price, max_price_alias),
            min_surface=_first_set(min_surface, min_surface_alias),
            max_surface=_first_set(max_surface, max_surface_alias),
            featured=featured,
            tags=tuple(tags),
            page=max(1, page),
            limit=max(1, min(MAX_PAGE_SIZE, limit)),
        )
    except ValidationError as e:
        return _error(
            400,
            "Invalid search filters",
            e.errors(include_url=False, include_context=False, include_input=False),
        )

    try:
        result = await _get_cache(request).search(filters)
    except Exception as e:
        logger.error("search_failed", exc_info=True)
        return _error(500, "Search failed", str(e))
    return JSONResponse(result.model_dump(mode="json"))


@router.get("/api/properties/cache-stats")
async def property_cache_stats(request: Request) -> JSONResponse:
    try:
        stats = await _get_storage(request).get_cache_stats()
    except Exception as e:
        logger.error("cache_stats_failed", exc_info=True)
        return _error(500, "Failed to load cache statistics", str(e))
    return JSONResponse({"success": True, "stats": stats.model_dump(mode="json")})


@router.post("/api/properties/sync", status_code=202)
async def start_sync(request: Request, body: SyncRequest) -> JSONResponse:
    """Start a background property sync and return its process id."""
    sync_job = _get_sync_job(request)
    if sync_job is None:
        return _origin_not_configured()

    process_id = body.process_id or new_process_id()
    try:
        _get_jobs(request).start(
            f"sync:{process_id}", sync_job.run(body.mode, body.limit, process_id)
        )
    except RuntimeError as e:
        return _error(409, "Sync already running", str(e))
    return JSONResponse(
        {
            "success": True,
            "process_id": process_id,
            "mode": body.mode.value,
            "limit": body.limit,
            "message": "Sync started",
        },
        status_code=202,
    )


@router.post("/api/properties/sync-initial")
async def initial_sync(request: Request, body: InitialSyncRequest | None = None) -> JSONResponse:
    """Seed the warm tier when it is (nearly) empty."""
    sync_job = _get_sync_job(request)
    if sync_job is None:
        return _origin_not_configured()
    body = body or InitialSyncRequest()
    try:
        result = await sync_job.seed_if_empty(body.threshold, body.limit)
    except Exception as e:
        logger.error("initial_sync_failed", exc_info=True)
        return _error(500, "Initial sync failed", str(e))
    if result is None:
        return JSONResponse(
            {"success": True, "skipped": True, "message": "Cache already populated"}
        )
    return JSONResponse({"success": True, "skipped": False, **result.model_dump(mode="json")})


@router.get("/api/properties/sync/{process_id}")
async def sync_status(request: Request, process_id: str) -> JSONResponse:
    checkpoint = await _get_storage(request).get_checkpoint(
        ProcessType.PROPERTY_SYNC, process_id
    )
    if checkpoint is None:
        return _error(404, "Sync process not found", process_id)
    return JSONResponse(
        {
            "success": True,
            "checkpoint": _checkpoint_payload(checkpoint),
            "running": _get_jobs(request).is_running(f"sync:{process_id}"),
        }
    )


@router.post("/api/properties/sync/{process_id}/stop")
async def stop_sync(request: Request, process_id: str) -> JSONResponse:
    sync_job = _get_sync_job(request)
    if sync_job is not None:
        paused = await sync_job.request_stop(process_id)
    else:
        paused = await _get_storage(request).pause_checkpoint(
            ProcessType.PROPERTY_SYNC, process_id
        )
    if not paused:
        return _error(404, "No active sync with this id", process_id)
    return JSONResponse({"success": True, "message": f"Sync {process_id} will stop"})


@router.get("/api/properties/{property_id}")
async def get_property(request: Request, property_id: str) -> JSONResponse:
    """Single property through the hot -> warm -> origin fallthrough."""
    if not property_id.isdigit() or int(property_id) < 1:
        return _error(400, "Invalid property ID", property_id)

    tokko_id = int(property_id)
    try:
        lookup = await _get_cache(request).get_property(tokko_id)
    except OriginUnavailableError as e:
        return _error(502, "Origin API unavailable", str(e))
    except Exception as e:
        logger.error("property_lookup_failed", tokko_id=tokko_id, exc_info=True)
        return _error(500, "Failed to load property", str(e))

    if lookup is None:
        return _error(404, "Property not found", tokko_id)
    return JSONResponse(
        {
            "success": True,
            "property": lookup.property.model_dump(mode="json"),
            "source": lookup.source.value,
        }
    )


# ----------------------------------------------------------------------
# Cache management
# ----------------------------------------------------------------------


@router.get("/api/cache/stats")
async def cache_stats(request: Request) -> JSONResponse:
    cache = _get_cache(request)
    status = await cache.connection_status()
    try:
        hot_keys: int | None = await cache.hot.size()
    except HotStoreError:
        logger.warning("hot_size_failed", exc_info=True)
        hot_keys = None
    return JSONResponse(
        {
            "success": True,
            "metrics": cache.get_metrics(),
            "connection": status.model_dump(mode="json"),
            "hot_keys": hot_keys,
            "running_jobs": _get_jobs(request).running,
        }
    )


@router.get("/api/cache/connection-status")
async def connection_status(request: Request) -> JSONResponse:
    status = await _get_cache(request).connection_status()
    return JSONResponse({"success": True, **status.model_dump(mode="json")})


@router.post("/api/cache/clear")
async def clear_cache(request: Request) -> JSONResponse:
    result = await _get_cache(request).clear_hot()
    return JSONResponse(result.model_dump(mode="json"), status_code=200 if result.success else 500)


@router.post("/api/cache/warm")
async def warm_cache(request: Request, body: WarmRequest | None = None) -> JSONResponse:
    body = body or WarmRequest()
    result = await _get_cache(request).warm_cache(body.limit)
    return JSONResponse(result.model_dump(mode="json"), status_code=200 if result.success else 500)


@router.post("/api/cache/invalidate")
async def invalidate_property(request: Request, body: InvalidateRequest) -> JSONResponse:
    try:
        result = await _get_cache(request).invalidate_property(body.property_id)
    except Exception as e:
        logger.error("invalidate_failed", tokko_id=body.property_id, exc_info=True)
        return _error(500, "Failed to invalidate property", str(e))
    return JSONResponse(result.model_dump(mode="json"), status_code=200 if result.success else 500)


# ----------------------------------------------------------------------
# Checkpoints and images
# ----------------------------------------------------------------------


@router.get("/api/checkpoints/active")
async def active_checkpoints(
    request: Request, process_type: ProcessType | None = None
) -> JSONResponse:
    checkpoints = await _get_storage(request).list_active_checkpoints(process_type)
    return JSONResponse(
        {
            "success": True,
            "checkpoints": [_checkpoint_payload(cp) for cp in checkpoints],
        }
    )


@router.post("/api/checkpoints/pause")
async def pause_checkpoint(request: Request, body: PauseCheckpointRequest) -> JSONResponse:
    paused = await _get_storage(request).pause_checkpoint(body.process_type, body.process_id)
    if not paused:
        return _error(404, "No active checkpoint found", body.process_id)
    return JSONResponse({"success": True, "message": f"Process {body.process_id} paused"})


@router.post("/api/checkpoints/stop")
async def stop_checkpoint(request: Request, body: StopCheckpointRequest) -> JSONResponse:
    storage = _get_storage(request)
    checkpoint = await storage.find_checkpoint(body.process_id)
    if checkpoint is None or checkpoint.status not in ACTIVE_CHECKPOINT_STATUSES:
        return _error(404, "No active process with this id", body.process_id)
    await storage.pause_checkpoint(checkpoint.process_type, checkpoint.process_id)
    return JSONResponse(
        {
            "success": True,
            "process_type": checkpoint.process_type.value,
            "message": f"Process {body.process_id} will stop after the current batch",
        }
    )


@router.post("/api/images/process", status_code=202)
async def process_images(
    request: Request, body: ImageProcessRequest | None = None
) -> JSONResponse:
    body = body or ImageProcessRequest()
    image_job: ImageProcessingJob = request.app.state.image_job
    process_id = new_process_id("images")
    try:
        _get_jobs(request).start(f"images:{process_id}", image_job.run(body.limit, process_id))
    except RuntimeError as e:
        return _error(409, "Image processing already running", str(e))
    return JSONResponse(
        {"success": True, "process_id": process_id, "message": "Image processing started"},
        status_code=202,
    )


@router.get("/images/{tokko_id}/{filename}")
async def serve_cached_image(request: Request, tokko_id: str, filename: str) -> Response:
    """Serve a processed image from disk.

    Returns the image with immutable cache headers (images never change).
    """
    if ".." in filename or "/" in filename or "\\" in filename:
        return _error(400, "Invalid filename", filename)

    image_path = resolve_cached_file(_get_data_dir(request), tokko_id, filename)
    if image_path is None:
        return _error(404, "Image not found", filename)

    return FileResponse(
        image_path,
        media_type="image/webp",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
