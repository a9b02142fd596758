"""Tests for the image processing job."""

import asyncio
from collections.abc import Callable
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from PIL import Image
from pytest_httpx import HTTPXMock

from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.jobs.images import ImageProcessingJob
from tokko_cache.models import (
    CheckpointStatus,
    ImageStatus,
    ProcessType,
    Property,
    PropertyImage,
)


def _png(width: int = 800, height: int = 600, mode: str = "RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, (width, height), "red").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def job(app_settings: Settings, storage: CacheStorage) -> ImageProcessingJob:
    return ImageProcessingJob(app_settings, storage=storage)


def _url(tokko_id: int, index: int = 0) -> str:
    return f"https://static.tokko.test/{tokko_id}/{index}.jpg"


class TestRun:
    async def test_processes_pending_images(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        app_settings: Settings,
        httpx_mock: HTTPXMock,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=1, images=1))
        httpx_mock.add_response(
            url=_url(1), content=_png(), headers={"content-type": "image/png"}
        )

        result = await job.run(limit=10, process_id="images_a")

        assert result.status == CheckpointStatus.COMPLETED
        assert result.processed == 1
        assert result.failed == 0

        [image] = await storage.get_property_images(1)
        assert image.processing_status == ImageStatus.COMPLETED
        assert image.width == 800
        assert image.height == 600
        assert image.webp_url is not None
        assert image.webp_url.startswith("/images/1/full_000_")
        assert image.thumbnail_url is not None
        assert image.file_size_webp and image.file_size_webp > 0

        cache_dir = Path(app_settings.data_dir) / "image_cache" / "1"
        names = sorted(p.name for p in cache_dir.iterdir())
        assert len(names) == 2
        assert names[0].startswith("full_") and names[1].startswith("thumb_")

        checkpoint = await storage.get_checkpoint(ProcessType.IMAGE_PROCESSING, "images_a")
        assert checkpoint is not None
        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert checkpoint.processed_items == 1

    async def test_large_image_downscaled(
        self,
        app_settings: Settings,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        make_property: Callable[..., Property],
    ) -> None:
        settings = app_settings.model_copy(
            update={"image_max_dimension": 100, "image_thumbnail_size": 40}
        )
        job = ImageProcessingJob(settings, storage=storage)
        await storage.upsert_property(make_property(id=2, images=1))
        httpx_mock.add_response(
            url=_url(2), content=_png(400, 200, "L"), headers={"content-type": "image/png"}
        )

        await job.run()

        [image] = await storage.get_property_images(2)
        assert (image.width, image.height) == (100, 50)

    async def test_served_url_replaces_origin_url(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=3, images=1))
        httpx_mock.add_response(
            url=_url(3), content=_png(), headers={"content-type": "image/png"}
        )

        await job.run()

        prop = await storage.get_property(3)
        assert prop is not None
        assert prop.images[0].url.startswith("/images/3/")

    async def test_nothing_pending(self, job: ImageProcessingJob) -> None:
        result = await job.run()
        assert result.status == CheckpointStatus.COMPLETED
        assert result.processed == 0


class TestFailures:
    @pytest.fixture
    async def image_id(
        self, storage: CacheStorage, make_property: Callable[..., Property]
    ) -> int:
        await storage.upsert_property(make_property(id=9, images=1))
        [image] = await storage.get_property_images(9)
        return image.id

    async def _status(self, storage: CacheStorage) -> tuple[ImageStatus, str | None]:
        [image] = await storage.get_property_images(9)
        return image.processing_status, image.processing_error

    async def test_http_error(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        image_id: int,
    ) -> None:
        httpx_mock.add_response(url=_url(9), status_code=404)

        result = await job.run()

        assert result.failed == 1
        status, error = await self._status(storage)
        assert status == ImageStatus.ERROR
        assert error is not None and "Download failed" in error

    async def test_not_an_image_content_type(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        image_id: int,
    ) -> None:
        httpx_mock.add_response(
            url=_url(9), text="<html></html>", headers={"content-type": "text/html"}
        )

        await job.run()

        status, error = await self._status(storage)
        assert status == ImageStatus.ERROR
        assert error is not None and "Not an image" in error

    async def test_corrupt_bytes(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        image_id: int,
    ) -> None:
        httpx_mock.add_response(
            url=_url(9), content=b"definitely not a jpeg", headers={"content-type": "image/jpeg"}
        )

        result = await job.run()

        assert result.status == CheckpointStatus.COMPLETED
        assert result.failed == 1
        status, _ = await self._status(storage)
        assert status == ImageStatus.ERROR

    async def test_failed_images_are_not_retried(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        image_id: int,
    ) -> None:
        httpx_mock.add_response(url=_url(9), status_code=500)
        await job.run()

        result = await job.run()

        assert result.processed == 0
        assert result.failed == 0

    async def test_unexpected_error_requeues_image(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        image_id: int,
    ) -> None:
        httpx_mock.add_exception(RuntimeError("transport exploded"), url=_url(9))

        with pytest.raises(RuntimeError):
            await job.run(process_id="images_x")

        status, _ = await self._status(storage)
        assert status == ImageStatus.PENDING
        assert [img.id for img in await storage.get_pending_images(10)] == [image_id]
        checkpoint = await storage.get_checkpoint(ProcessType.IMAGE_PROCESSING, "images_x")
        assert checkpoint is not None
        assert checkpoint.status == CheckpointStatus.FAILED

    async def test_cancelled_image_is_requeued(
        self,
        job: ImageProcessingJob,
        storage: CacheStorage,
        image_id: int,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def cancelled_download(client: httpx.AsyncClient, url: str) -> bytes:
            raise asyncio.CancelledError

        monkeypatch.setattr(job, "_download", cancelled_download)
        [image] = await storage.get_property_images(9)

        async with httpx.AsyncClient() as client:
            with pytest.raises(asyncio.CancelledError):
                await job.process_image(client, image)

        status, _ = await self._status(storage)
        assert status == ImageStatus.PENDING


class TestPause:
    async def test_paused_job_stops_before_next_batch(
        self,
        app_settings: Settings,
        storage: CacheStorage,
        httpx_mock: HTTPXMock,
        make_property: Callable[..., Property],
    ) -> None:
        settings = app_settings.model_copy(update={"sync_batch_size": 1})
        job = ImageProcessingJob(settings, storage=storage)
        await storage.upsert_property(make_property(id=20, images=2))

        httpx_mock.add_response(
            url=_url(20, 0), content=_png(), headers={"content-type": "image/png"}
        )
        original = job.process_image

        async def process_then_pause(client: httpx.AsyncClient, image: PropertyImage) -> bool:
            ok = await original(client, image)
            await storage.pause_checkpoint(ProcessType.IMAGE_PROCESSING, "images_p")
            return ok

        job.process_image = process_then_pause  # type: ignore[method-assign]

        result = await job.run(process_id="images_p")

        assert result.status == CheckpointStatus.PAUSED
        assert result.processed == 1
        pending = await storage.get_pending_images(10)
        assert [img.display_order for img in pending] == [1]
