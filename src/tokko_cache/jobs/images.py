"""Checkpointed conversion of origin photos into locally served WebP files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from PIL import Image, UnidentifiedImageError

from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.jobs.sync import new_process_id
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    CheckpointStatus,
    ImageJobResult,
    ProcessType,
    PropertyImage,
)
from tokko_cache.utils.image_cache import (
    get_cache_dir,
    is_valid_image_url,
    public_image_url,
    save_image_bytes,
    url_to_filename,
)
from tokko_cache.utils.image_processing import Rendition, to_thumbnail, to_webp

logger = get_logger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30.0


class ImageDownloadError(Exception):
    """An image could not be fetched or decoded."""


@dataclass(frozen=True)
class _Renditions:
    original_size: int
    full: Rendition
    thumb: Rendition


class ImageProcessingJob:
    """Download pending images, write WebP renditions, record their URLs."""

    def __init__(
        self,
        settings: Settings,
        *,
        storage: CacheStorage,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self._client = client

    def _render(self, data: bytes) -> _Renditions:
        return _Renditions(
            original_size=len(data),
            full=to_webp(
                data, self.settings.image_max_dimension, self.settings.image_webp_quality
            ),
            thumb=to_thumbnail(data, self.settings.image_thumbnail_size),
        )

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        if not is_valid_image_url(url):
            raise ImageDownloadError(f"Unsupported image URL: {url}")
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageDownloadError(f"Download failed: {e}") from e
        content_type = response.headers.get("content-type", "")
        if content_type and not content_type.startswith("image/"):
            raise ImageDownloadError(f"Not an image: {content_type}")
        return response.content

    async def process_image(self, client: httpx.AsyncClient, image: PropertyImage) -> bool:
        """Process one image row. Returns True on success; failures are recorded.

        If processing is cancelled or hits an unexpected error, the row goes
        back to pending so a later run picks it up, and the exception propagates.
        """
        await self.storage.mark_image_processing(image.id)
        try:
            return await self._process_claimed(client, image)
        except BaseException:
            logger.warning("image_processing_interrupted", image_id=image.id)
            await asyncio.shield(self.storage.reset_image(image.id))
            raise

    async def _process_claimed(self, client: httpx.AsyncClient, image: PropertyImage) -> bool:
        try:
            data = await self._download(client, image.original_url)
            renditions = await asyncio.to_thread(self._render, data)
        except (
            ImageDownloadError,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
        ) as e:
            logger.warning(
                "image_processing_failed",
                image_id=image.id,
                tokko_id=image.property_id,
                error=str(e),
            )
            await self.storage.fail_image(image.id, str(e))
            return False

        cache_dir = get_cache_dir(self.settings.data_dir, image.property_id)
        full_name = url_to_filename(image.original_url, "full", image.display_order)
        thumb_name = url_to_filename(image.original_url, "thumb", image.display_order)
        try:
            await asyncio.to_thread(save_image_bytes, cache_dir / full_name, renditions.full.data)
            await asyncio.to_thread(
                save_image_bytes, cache_dir / thumb_name, renditions.thumb.data
            )
        except OSError as e:
            logger.error("image_save_failed", image_id=image.id, error=str(e), exc_info=True)
            await self.storage.fail_image(image.id, f"Save failed: {e}")
            return False

        await self.storage.complete_image(
            image.id,
            webp_url=public_image_url(image.property_id, full_name),
            thumbnail_url=public_image_url(image.property_id, thumb_name),
            width=renditions.full.width,
            height=renditions.full.height,
            file_size_original=renditions.original_size,
            file_size_webp=len(renditions.full.data),
        )
        logger.debug("image_processed", image_id=image.id, tokko_id=image.property_id)
        return True

    async def run(self, limit: int = 50, process_id: str | None = None) -> ImageJobResult:
        """Process up to ``limit`` pending images, checkpointing after each batch."""
        process_id = process_id or new_process_id("images")
        ptype = ProcessType.IMAGE_PROCESSING
        pending = await self.storage.get_pending_images(limit)

        processed = failed = batch = 0
        await self.storage.save_checkpoint(
            ptype, process_id, status=CheckpointStatus.RUNNING, total_items=len(pending)
        )
        logger.info("image_job_started", process_id=process_id, pending=len(pending))

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True
        )
        semaphore = asyncio.Semaphore(self.settings.image_concurrency)

        async def _bounded(image: PropertyImage) -> bool:
            async with semaphore:
                return await self.process_image(client, image)

        batch_size = self.settings.sync_batch_size
        stopped = False
        try:
            for start in range(0, len(pending), batch_size):
                current = await self.storage.get_checkpoint(ptype, process_id)
                if current is not None and current.status == CheckpointStatus.PAUSED:
                    stopped = True
                    break
                chunk = pending[start : start + batch_size]
                results = await asyncio.gather(*(_bounded(img) for img in chunk))
                processed += sum(results)
                failed += len(results) - sum(results)
                batch += 1
                await self.storage.save_checkpoint(
                    ptype,
                    process_id,
                    status=CheckpointStatus.RUNNING,
                    total_items=len(pending),
                    processed_items=processed,
                    failed_items=failed,
                    current_batch=batch,
                    last_processed_tokko_id=chunk[-1].property_id,
                    checkpoint_data={"offset": start + len(chunk)},
                    preserve_pause=True,
                )
        except Exception as e:
            logger.error("image_job_failed", process_id=process_id, exc_info=True)
            await self.storage.complete_checkpoint(
                ptype, process_id, CheckpointStatus.FAILED, error_message=str(e)
            )
            raise
        finally:
            if owns_client:
                await client.aclose()

        if stopped:
            return ImageJobResult(
                process_id=process_id,
                status=CheckpointStatus.PAUSED,
                processed=processed,
                failed=failed,
                message=f"Image processing paused after {processed + failed} images",
            )

        await self.storage.complete_checkpoint(ptype, process_id)
        logger.info(
            "image_job_completed", process_id=process_id, processed=processed, failed=failed
        )
        return ImageJobResult(
            process_id=process_id,
            status=CheckpointStatus.COMPLETED,
            processed=processed,
            failed=failed,
            message=f"Processed {processed} images ({failed} failed)",
        )
