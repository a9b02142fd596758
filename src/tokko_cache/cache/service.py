"""Hybrid three-tier cache: hot key/value store, warm SQLite table, origin API.

Lookups fall through hot -> warm -> origin. A warm hit is promoted into the
hot tier; an origin hit is written back to both tiers. Tier failures are
logged and recorded in metrics and never stop the fallthrough.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from tokko_cache.cache.hot import HotStore, HotStoreError
from tokko_cache.cache.keys import property_key, search_key, search_prefix
from tokko_cache.cache.metrics import CacheMetrics
from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    CacheTier,
    ClearResult,
    ConnectionStatus,
    InvalidateResult,
    Property,
    PropertyLookup,
    SearchFilters,
    SearchResult,
    WarmResult,
)
from tokko_cache.origin.client import TokkoClient
from tokko_cache.origin.errors import TokkoError, TokkoNotFoundError
from tokko_cache.origin.transformer import transform_tokko_property

logger = get_logger(__name__)

# Exceptions a tier may raise that should fall through rather than propagate.
_TIER_ERRORS = (HotStoreError, OSError, ValueError, ValidationError)


class OriginUnavailableError(Exception):
    """A property missed both cache tiers and the origin could not be reached."""


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class HybridCacheService:
    """Single entry point for every cached read and cache-management action."""

    def __init__(
        self,
        settings: Settings,
        *,
        hot: HotStore,
        storage: CacheStorage,
        origin: TokkoClient | None = None,
    ) -> None:
        self.settings = settings
        self.hot = hot
        self.storage = storage
        self.origin = origin
        self.metrics = CacheMetrics()
        self._prefix = settings.hot_key_prefix

    @property
    def _warm_max_age(self) -> timedelta | None:
        hours = self.settings.warm_max_age_hours
        return timedelta(hours=hours) if hours > 0 else None

    async def connect(self) -> ConnectionStatus:
        """Ping every tier and log the outcome."""
        status = await self.connection_status()
        logger.info(
            "cache_connected",
            hot=status.hot,
            warm=status.warm,
            origin=status.origin,
            hot_backend=status.hot_backend,
            overall=status.overall,
        )
        return status

    async def close(self) -> None:
        await self.hot.close()
        if self.origin is not None:
            await self.origin.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_property(self, tokko_id: int) -> PropertyLookup | None:
        """Look a property up through every tier.

        Returns:
            The property and the tier that answered, or None if the origin
            does not have it (or no origin is configured).

        Raises:
            OriginUnavailableError: Both caches missed and the origin failed.
        """
        hit = await self._get_hot_property(tokko_id)
        if hit is not None:
            return PropertyLookup(property=hit, source=CacheTier.HOT)

        hit = await self._get_warm_property(tokko_id)
        if hit is not None:
            await self._set_hot_property(hit)
            return PropertyLookup(property=hit, source=CacheTier.WARM)

        hit = await self._get_origin_property(tokko_id)
        if hit is None:
            return None
        await asyncio.gather(self._set_warm_property(hit), self._set_hot_property(hit))
        return PropertyLookup(property=hit, source=CacheTier.ORIGIN)

    async def _get_hot_property(self, tokko_id: int) -> Property | None:
        start = time.perf_counter()
        try:
            raw = await self.hot.get(property_key(tokko_id, self._prefix))
            prop = Property.model_validate_json(raw) if raw is not None else None
        except _TIER_ERRORS as e:
            logger.warning("hot_get_failed", tokko_id=tokko_id, error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)
            self.metrics.record_miss(CacheTier.HOT, _elapsed_ms(start))
            return None
        if prop is None:
            self.metrics.record_miss(CacheTier.HOT, _elapsed_ms(start))
            return None
        self.metrics.record_hit(CacheTier.HOT, _elapsed_ms(start))
        logger.debug("hot_cache_hit", tokko_id=tokko_id)
        return prop

    async def _get_warm_property(self, tokko_id: int) -> Property | None:
        start = time.perf_counter()
        try:
            prop = await self.storage.get_property(tokko_id, max_age=self._warm_max_age)
        except Exception as e:
            logger.error("warm_get_failed", tokko_id=tokko_id, error=str(e), exc_info=True)
            self.metrics.record_error(CacheTier.WARM, e)
            self.metrics.record_miss(CacheTier.WARM, _elapsed_ms(start))
            return None
        if prop is None:
            self.metrics.record_miss(CacheTier.WARM, _elapsed_ms(start))
            return None
        self.metrics.record_hit(CacheTier.WARM, _elapsed_ms(start))
        logger.debug("warm_cache_hit", tokko_id=tokko_id)
        return prop

    async def _get_origin_property(self, tokko_id: int) -> Property | None:
        if self.origin is None:
            return None
        start = time.perf_counter()
        try:
            raw = await self.origin.get_property(tokko_id)
        except TokkoNotFoundError:
            self.metrics.record_miss(CacheTier.ORIGIN, _elapsed_ms(start))
            logger.info("origin_property_not_found", tokko_id=tokko_id)
            return None
        except TokkoError as e:
            self.metrics.record_error(CacheTier.ORIGIN, e)
            self.metrics.record_miss(CacheTier.ORIGIN, _elapsed_ms(start))
            logger.error("origin_get_failed", tokko_id=tokko_id, error=str(e))
            raise OriginUnavailableError(str(e)) from e
        self.metrics.record_hit(CacheTier.ORIGIN, _elapsed_ms(start))
        logger.info("origin_hit", tokko_id=tokko_id)
        return transform_tokko_property(raw)

    async def _set_hot_property(self, prop: Property) -> None:
        try:
            await self.hot.set(
                property_key(prop.id, self._prefix),
                prop.model_dump_json(),
                self.settings.hot_ttl_seconds,
            )
        except _TIER_ERRORS as e:
            logger.warning("hot_set_failed", tokko_id=prop.id, error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)

    async def _set_warm_property(self, prop: Property) -> None:
        try:
            await self.storage.upsert_property(prop)
        except Exception as e:
            logger.error("warm_set_failed", tokko_id=prop.id, error=str(e), exc_info=True)
            self.metrics.record_error(CacheTier.WARM, e)

    async def search(self, filters: SearchFilters) -> SearchResult:
        """Search the warm tier, memoising result pages in the hot tier."""
        key = search_key(filters, self._prefix)
        start = time.perf_counter()
        try:
            raw = await self.hot.get(key)
            cached = SearchResult.model_validate_json(raw) if raw is not None else None
        except _TIER_ERRORS as e:
            logger.warning("hot_search_get_failed", error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)
            cached = None
        if cached is not None:
            self.metrics.record_hit(CacheTier.HOT, _elapsed_ms(start))
            return cached.model_copy(update={"source": CacheTier.HOT})
        self.metrics.record_miss(CacheTier.HOT, _elapsed_ms(start))

        start = time.perf_counter()
        properties, total = await self.storage.search_properties(filters)
        self.metrics.record_hit(CacheTier.WARM, _elapsed_ms(start))
        result = SearchResult.build(properties, total, filters, source=CacheTier.WARM)

        try:
            await self.hot.set(key, result.model_dump_json(), self.settings.search_ttl_seconds)
        except _TIER_ERRORS as e:
            logger.warning("hot_search_set_failed", error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)
        return result

    # ------------------------------------------------------------------
    # Writes and management
    # ------------------------------------------------------------------

    async def put_property(self, prop: Property) -> None:
        """Write-through to warm, then hot. Warm failures propagate."""
        await self.storage.upsert_property(prop)
        await self._set_hot_property(prop)

    async def clear_hot(self) -> ClearResult:
        """Drop every hot key under this service's prefix and reset hot metrics."""
        try:
            cleared = await self.hot.delete_prefix(self._prefix)
        except HotStoreError as e:
            logger.error("hot_clear_failed", error=str(e), exc_info=True)
            self.metrics.record_error(CacheTier.HOT, e)
            return ClearResult(success=False, message=f"Failed to clear hot cache: {e}")
        self.metrics.reset(CacheTier.HOT)
        logger.info("hot_cache_cleared", keys=cleared)
        return ClearResult(
            success=True,
            message=f"Cleared {cleared} hot cache keys",
            keys_cleared=cleared,
        )

    async def invalidate_property(self, tokko_id: int) -> InvalidateResult:
        """Forget a property in both tiers.

        The warm row is marked stale even when the hot tier is unreachable;
        a hot failure is reported as a partial success. Search pages may embed
        the property, so every hot search key goes too.
        """
        marked = await self.storage.mark_stale(tokko_id)
        try:
            removed = await self._evict_hot([tokko_id])
        except HotStoreError as e:
            logger.error("hot_invalidate_failed", tokko_id=tokko_id, error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)
            return InvalidateResult(
                success=False,
                message=f"Property {tokko_id} marked stale; hot cache not cleared: {e}",
                warm_row_marked=marked,
                hot_error=str(e),
            )

        logger.info("property_invalidated", tokko_id=tokko_id, hot_keys=removed, warm=marked)
        return InvalidateResult(
            success=True,
            message=f"Property {tokko_id} invalidated",
            hot_keys_removed=removed,
            warm_row_marked=marked,
        )

    async def expire_unrefreshed(self, cutoff: datetime) -> list[int]:
        """Mark warm rows not refreshed since ``cutoff`` stale and evict them from hot.

        Returns:
            Tokko ids that were marked stale.
        """
        ids = await self.storage.mark_stale_before(cutoff)
        if not ids:
            return ids
        try:
            removed = await self._evict_hot(ids)
        except HotStoreError as e:
            logger.error("hot_expire_failed", count=len(ids), error=str(e))
            self.metrics.record_error(CacheTier.HOT, e)
        else:
            logger.info("properties_expired", count=len(ids), hot_keys=removed)
        return ids

    async def _evict_hot(self, tokko_ids: list[int]) -> int:
        removed = 0
        for tokko_id in tokko_ids:
            removed += await self.hot.delete(property_key(tokko_id, self._prefix))
        removed += await self.hot.delete_prefix(search_prefix(self._prefix))
        return removed

    async def warm_cache(self, limit: int = 50) -> WarmResult:
        """Preload the most requested warm rows into the hot tier."""
        try:
            candidates = await self.storage.get_warm_candidates(limit)
        except Exception as e:
            logger.error("warm_candidates_failed", error=str(e), exc_info=True)
            self.metrics.record_error(CacheTier.WARM, e)
            return WarmResult(success=False, message=f"Cache warming failed: {e}")

        warmed = errors = 0
        for prop in candidates:
            try:
                await self.hot.set(
                    property_key(prop.id, self._prefix),
                    prop.model_dump_json(),
                    self.settings.hot_ttl_seconds,
                )
                warmed += 1
            except HotStoreError as e:
                errors += 1
                self.metrics.record_error(CacheTier.HOT, e)
                logger.warning("warm_property_failed", tokko_id=prop.id, error=str(e))

        logger.info("cache_warmed", warmed=warmed, errors=errors)
        return WarmResult(
            success=errors == 0,
            warmed=warmed,
            errors=errors,
            message=f"Warmed {warmed} properties ({errors} errors)",
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_metrics(self) -> dict[str, Any]:
        return self.metrics.snapshot()

    async def connection_status(self) -> ConnectionStatus:
        hot_ok, warm_ok = await asyncio.gather(self.hot.ping(), self.storage.ping())
        origin_ok = self.origin is not None
        if hot_ok and warm_ok:
            overall = "optimal"
        elif warm_ok:
            overall = "degraded"
        else:
            overall = "critical"
        return ConnectionStatus(
            hot=hot_ok,
            warm=warm_ok,
            origin=origin_ok,
            hot_backend=self.hot.backend,
            overall=overall,
        )
