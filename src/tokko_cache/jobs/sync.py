"""Checkpointed property sync from the origin into the warm and hot tiers."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from tokko_cache.cache.service import HybridCacheService
from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    CheckpointStatus,
    ProcessType,
    SyncMode,
    SyncResult,
)
from tokko_cache.origin.client import TokkoClient
from tokko_cache.origin.errors import TokkoError
from tokko_cache.origin.models import OriginQuery
from tokko_cache.origin.transformer import transform_tokko_property

logger = get_logger(__name__)

SEED_THRESHOLD = 10
SEED_LIMIT = 20


def new_process_id(prefix: str = "sync") -> str:
    """E.g. "sync_20250115T103000_1a2b3c4d"."""
    return f"{prefix}_{datetime.now(UTC):%Y%m%dT%H%M%S}_{uuid.uuid4().hex[:8]}"


class PropertySyncJob:
    """Copy origin listings into the cache in small, resumable batches.

    Progress lives in a ``property_sync`` checkpoint keyed by process id, so
    an interrupted incremental run picks up at the offset it reached. Stop
    requests pause the checkpoint and take effect before the next batch.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        cache: HybridCacheService,
        storage: CacheStorage,
        origin: TokkoClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.storage = storage
        self.origin = origin
        self._sleep = sleep

    async def run(
        self,
        mode: SyncMode = SyncMode.INCREMENTAL,
        limit: int = 100,
        process_id: str | None = None,
    ) -> SyncResult:
        """Sync up to ``limit`` properties.

        Args:
            mode: ``incremental`` resumes an unfinished run with the same id;
                ``full`` restarts at offset 0 and afterwards marks rows the
                origin no longer lists as stale.
            limit: Maximum number of properties to fetch.
            process_id: Checkpoint id; generated when omitted.
        """
        limit = max(1, min(limit, self.settings.sync_max_limit))
        process_id = process_id or new_process_id()
        ptype = ProcessType.PROPERTY_SYNC

        offset = synced = errors = batch = 0
        last_id: int | None = None
        if mode == SyncMode.INCREMENTAL:
            existing = await self.storage.get_checkpoint(ptype, process_id)
            if existing is not None and existing.status == CheckpointStatus.COMPLETED:
                logger.info("sync_already_completed", process_id=process_id)
                return SyncResult(
                    process_id=process_id,
                    status=CheckpointStatus.COMPLETED,
                    synced=existing.processed_items,
                    errors=existing.failed_items,
                    message="Sync already completed",
                )
            if existing is not None:
                offset = int(existing.checkpoint_data.get("offset", 0))
                synced = existing.processed_items
                errors = existing.failed_items
                batch = existing.current_batch
                last_id = existing.last_processed_tokko_id
                logger.info("sync_resuming", process_id=process_id, offset=offset)

        run_started = datetime.now(UTC)
        total = limit
        exhausted = False
        batch_failures = item_failures = 0

        async def save(*, preserve_pause: bool = True) -> None:
            await self.storage.save_checkpoint(
                ptype,
                process_id,
                status=CheckpointStatus.RUNNING,
                total_items=total,
                processed_items=synced,
                failed_items=errors,
                current_batch=batch,
                last_processed_tokko_id=last_id,
                checkpoint_data={"mode": mode.value, "offset": offset, "limit": limit},
                preserve_pause=preserve_pause,
            )

        await save(preserve_pause=False)
        logger.info("sync_started", process_id=process_id, mode=mode, limit=limit, offset=offset)

        stopped = False
        try:
            while offset < limit:
                current = await self.storage.get_checkpoint(ptype, process_id)
                if current is not None and current.status == CheckpointStatus.PAUSED:
                    stopped = True
                    break

                size = min(self.settings.sync_batch_size, limit - offset)
                try:
                    page = await self.origin.get_properties(
                        OriginQuery(limit=size, offset=offset)
                    )
                except TokkoError as e:
                    errors += size
                    batch_failures += 1
                    offset += size
                    batch += 1
                    logger.error(
                        "sync_batch_failed", process_id=process_id, offset=offset, error=str(e)
                    )
                    await self.storage.append_checkpoint_error(
                        ptype, process_id, f"Batch {batch} failed: {e}"
                    )
                    await save()
                    await self._sleep(self.settings.sync_error_delay_seconds)
                    continue

                if page.meta.total_count:
                    total = min(limit, page.meta.total_count)
                if not page.objects:
                    exhausted = True
                    break

                for raw in page.objects:
                    try:
                        await self.cache.put_property(transform_tokko_property(raw))
                        synced += 1
                        last_id = raw.id
                    except Exception as e:
                        errors += 1
                        item_failures += 1
                        logger.error(
                            "sync_item_failed",
                            process_id=process_id,
                            tokko_id=raw.id,
                            error=str(e),
                            exc_info=True,
                        )
                        await self.storage.append_checkpoint_error(
                            ptype, process_id, f"Property {raw.id}: {e}"
                        )

                offset += len(page.objects)
                batch += 1
                await save()
                logger.info(
                    "sync_batch_done", process_id=process_id, batch=batch, synced=synced
                )

                if len(page.objects) < size:
                    exhausted = True
                    break
                if offset < limit:
                    await self._sleep(self.settings.sync_batch_delay_seconds)
        except Exception as e:
            logger.error("sync_failed", process_id=process_id, exc_info=True)
            await self.storage.complete_checkpoint(
                ptype, process_id, CheckpointStatus.FAILED, error_message=str(e)
            )
            raise

        if stopped:
            logger.info("sync_stopped", process_id=process_id, synced=synced, offset=offset)
            return SyncResult(
                process_id=process_id,
                status=CheckpointStatus.PAUSED,
                synced=synced,
                errors=errors,
                message=f"Sync paused after {synced} properties",
            )

        await self.storage.complete_checkpoint(ptype, process_id)
        message = f"Synced {synced} properties ({errors} errors)"

        # Only a clean, exhaustive full listing proves absent rows are gone.
        clean = batch_failures == 0 and item_failures == 0
        if mode == SyncMode.FULL and exhausted and clean:
            removed = await self.cache.expire_unrefreshed(run_started)
            if removed:
                logger.info("sync_marked_stale", process_id=process_id, count=len(removed))
                message += f", {len(removed)} marked stale"
        elif mode == SyncMode.FULL:
            logger.info(
                "sync_reconciliation_skipped",
                process_id=process_id,
                exhausted=exhausted,
                batch_failures=batch_failures,
                item_failures=item_failures,
            )

        logger.info("sync_completed", process_id=process_id, synced=synced, errors=errors)
        return SyncResult(
            process_id=process_id,
            status=CheckpointStatus.COMPLETED,
            synced=synced,
            errors=errors,
            message=message,
        )

    async def request_stop(self, process_id: str) -> bool:
        """Ask a running sync to pause before its next batch."""
        return await self.storage.pause_checkpoint(ProcessType.PROPERTY_SYNC, process_id)

    async def seed_if_empty(
        self,
        threshold: int = SEED_THRESHOLD,
        limit: int = SEED_LIMIT,
        process_id: str | None = None,
    ) -> SyncResult | None:
        """Run a small initial sync when the warm tier is (nearly) empty.

        Returns:
            The sync result, or None when enough rows were already cached.
        """
        cached = await self.storage.count_properties()
        if cached >= threshold:
            logger.info("seed_skipped", cached=cached, threshold=threshold)
            return None
        return await self.run(
            SyncMode.INCREMENTAL, limit, process_id or new_process_id("initial_sync")
        )
