"""Tests for the hybrid cache service fallthrough."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tokko_cache.cache.hot import HotStoreError, MemoryStore
from tokko_cache.cache.keys import property_key, search_key
from tokko_cache.cache.service import HybridCacheService, OriginUnavailableError
from tokko_cache.config import Settings
from tokko_cache.db.storage import CacheStorage
from tokko_cache.models import CacheTier, Property, SearchFilters
from tokko_cache.origin.errors import TokkoAPIError, TokkoNotFoundError
from tokko_cache.origin.models import TokkoProperty

PREFIX = "t:"


@pytest.fixture
def settings() -> Settings:
    return Settings(hot_key_prefix=PREFIX, database_path=":memory:")


@pytest.fixture
def hot() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def origin() -> MagicMock:
    client = MagicMock()
    client.get_property = AsyncMock(side_effect=TokkoNotFoundError("missing"))
    client.close = AsyncMock()
    return client


@pytest.fixture
def service(
    settings: Settings, hot: MemoryStore, storage: CacheStorage, origin: MagicMock
) -> HybridCacheService:
    return HybridCacheService(settings, hot=hot, storage=storage, origin=origin)


class TestGetProperty:
    async def test_hot_hit(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        make_property: Callable[..., Property],
    ) -> None:
        prop = make_property(id=10)
        await hot.set(property_key(10, PREFIX), prop.model_dump_json(), ttl=60)

        lookup = await service.get_property(10)

        assert lookup is not None
        assert lookup.source == CacheTier.HOT
        assert lookup.property == prop

    async def test_warm_hit_promotes_to_hot(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=11))

        lookup = await service.get_property(11)

        assert lookup is not None
        assert lookup.source == CacheTier.WARM
        assert await hot.get(property_key(11, PREFIX)) is not None
        second = await service.get_property(11)
        assert second is not None and second.source == CacheTier.HOT

    async def test_origin_hit_written_to_both_tiers(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        origin: MagicMock,
        make_tokko_payload: Callable[..., dict[str, Any]],
    ) -> None:
        origin.get_property = AsyncMock(
            return_value=TokkoProperty.model_validate(make_tokko_payload(12))
        )

        lookup = await service.get_property(12)

        assert lookup is not None
        assert lookup.source == CacheTier.ORIGIN
        assert lookup.property.main_price.operation == "Venta"
        assert await hot.get(property_key(12, PREFIX)) is not None
        assert await storage.get_property(12) is not None

    async def test_not_found_returns_none(self, service: HybridCacheService) -> None:
        assert await service.get_property(13) is None
        assert service.metrics.tiers[CacheTier.ORIGIN].misses == 1

    async def test_origin_failure_raises(
        self, service: HybridCacheService, origin: MagicMock
    ) -> None:
        origin.get_property = AsyncMock(side_effect=TokkoAPIError("boom", status_code=500))
        with pytest.raises(OriginUnavailableError):
            await service.get_property(14)
        assert service.metrics.tiers[CacheTier.ORIGIN].errors == 1

    async def test_no_origin_returns_none(
        self, settings: Settings, hot: MemoryStore, storage: CacheStorage
    ) -> None:
        service = HybridCacheService(settings, hot=hot, storage=storage, origin=None)
        assert await service.get_property(15) is None

    async def test_hot_failure_falls_through(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=16))
        hot.get = AsyncMock(side_effect=HotStoreError("down"))  # type: ignore[method-assign]
        hot.set = AsyncMock(side_effect=HotStoreError("down"))  # type: ignore[method-assign]

        lookup = await service.get_property(16)

        assert lookup is not None
        assert lookup.source == CacheTier.WARM
        assert service.metrics.tiers[CacheTier.HOT].errors == 2
        assert service.metrics.tiers[CacheTier.HOT].last_error == "down"

    async def test_corrupt_hot_entry_falls_through(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=17))
        await hot.set(property_key(17, PREFIX), "{not json", ttl=60)

        lookup = await service.get_property(17)

        assert lookup is not None
        assert lookup.source == CacheTier.WARM

    async def test_warm_failure_on_write_back_is_swallowed(
        self,
        service: HybridCacheService,
        storage: CacheStorage,
        origin: MagicMock,
        make_tokko_payload: Callable[..., dict[str, Any]],
    ) -> None:
        origin.get_property = AsyncMock(
            return_value=TokkoProperty.model_validate(make_tokko_payload(18))
        )
        storage.upsert_property = AsyncMock(side_effect=RuntimeError("disk full"))  # type: ignore[method-assign]

        lookup = await service.get_property(18)

        assert lookup is not None
        assert service.metrics.tiers[CacheTier.WARM].errors == 1

    async def test_stale_warm_row_not_served(
        self,
        service: HybridCacheService,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=19))
        await storage.mark_stale(19)
        assert await service.get_property(19) is None

    async def test_old_warm_row_is_a_miss(
        self,
        service: HybridCacheService,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=20))
        old = (datetime.now(UTC) - timedelta(hours=48)).isoformat()
        conn = await storage._get_connection()
        await conn.execute(
            "UPDATE properties_cache SET last_synced_at = ? WHERE tokko_id = 20", (old,)
        )
        await conn.commit()

        assert await service.get_property(20) is None


class TestSearch:
    async def test_warm_then_hot(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=30))
        filters = SearchFilters(query="nave")

        first = await service.search(filters)
        second = await service.search(filters)

        assert first.source == CacheTier.WARM
        assert first.total == 1
        assert second.source == CacheTier.HOT
        assert second.properties == first.properties
        assert await hot.get(search_key(filters, PREFIX)) is not None


class TestManagement:
    async def test_put_property_writes_through(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await service.put_property(make_property(id=40))
        assert await hot.get(property_key(40, PREFIX)) is not None
        assert await storage.get_property(40) is not None

    async def test_clear_hot(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        make_property: Callable[..., Property],
    ) -> None:
        await hot.set(f"{PREFIX}property:1", "x", ttl=60)
        await hot.set(f"{PREFIX}search:abc", "x", ttl=60)
        await hot.set("unrelated", "x", ttl=60)
        service.metrics.record_hit(CacheTier.HOT, 1.0)

        result = await service.clear_hot()

        assert result.success
        assert result.keys_cleared == 2
        assert await hot.get("unrelated") == "x"
        assert service.metrics.tiers[CacheTier.HOT].hits == 0

    async def test_invalidate(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await service.put_property(make_property(id=50))
        await service.search(SearchFilters())

        result = await service.invalidate_property(50)

        assert result.success
        assert result.hot_keys_removed == 2
        assert result.warm_row_marked is True
        assert await hot.size() == 0
        assert await storage.get_property(50) is None

    async def test_invalidate_unknown(self, service: HybridCacheService) -> None:
        result = await service.invalidate_property(999)
        assert result.success
        assert result.warm_row_marked is False

    async def test_invalidate_marks_warm_when_hot_down(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        await storage.upsert_property(make_property(id=5))
        hot.delete = AsyncMock(side_effect=HotStoreError("connection refused"))  # type: ignore[method-assign]

        result = await service.invalidate_property(5)

        assert result.success is False
        assert result.warm_row_marked is True
        assert result.hot_error == "connection refused"
        assert await storage.get_property(5) is None
        assert service.metrics.tiers[CacheTier.HOT].errors == 1

    async def test_expire_unrefreshed_evicts_hot(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        make_property: Callable[..., Property],
    ) -> None:
        await service.put_property(make_property(id=7))
        await service.search(SearchFilters())

        expired = await service.expire_unrefreshed(datetime.now(UTC) + timedelta(seconds=1))

        assert expired == [7]
        assert await hot.size() == 0
        assert await service.get_property(7) is None

    async def test_expire_unrefreshed_nothing_to_do(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        make_property: Callable[..., Property],
    ) -> None:
        await service.put_property(make_property(id=8))

        assert await service.expire_unrefreshed(datetime.now(UTC) - timedelta(days=1)) == []
        assert await hot.get(property_key(8, PREFIX)) is not None

    async def test_warm_cache(
        self,
        service: HybridCacheService,
        hot: MemoryStore,
        storage: CacheStorage,
        make_property: Callable[..., Property],
    ) -> None:
        for i in range(3):
            await storage.upsert_property(make_property(id=60 + i))

        result = await service.warm_cache(limit=2)

        assert result.success
        assert result.warmed == 2
        assert await hot.size() == 2

    async def test_connection_status(self, service: HybridCacheService) -> None:
        status = await service.connection_status()
        assert status.hot and status.warm and status.origin
        assert status.hot_backend == "memory"
        assert status.overall == "optimal"

    async def test_connection_status_degraded(
        self, service: HybridCacheService, hot: MemoryStore
    ) -> None:
        hot.ping = AsyncMock(return_value=False)  # type: ignore[method-assign]
        assert (await service.connection_status()).overall == "degraded"

    async def test_metrics_snapshot(
        self, service: HybridCacheService, make_property: Callable[..., Property]
    ) -> None:
        await service.put_property(make_property(id=70))
        await service.get_property(70)
        snap = service.get_metrics()
        assert snap["hot"]["hits"] == 1
        assert snap["overall"]["cache_hit_rate"] == 100.0
