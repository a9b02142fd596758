"""Tier 1 key/value stores: Redis when configured, otherwise process memory."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from tokko_cache.config import Settings
from tokko_cache.logging import get_logger

logger = get_logger(__name__)

# Keys are deleted in chunks so one DEL never blocks Redis for long.
_DELETE_CHUNK = 500


class HotStoreError(Exception):
    """The hot store could not complete an operation."""


class HotStore(Protocol):
    """Minimal async key/value interface used by the cache service."""

    backend: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...

    async def size(self) -> int: ...

    async def close(self) -> None: ...


class MemoryStore:
    """In-process store with per-key TTL and least-recently-used eviction."""

    backend = "memory"

    def __init__(
        self,
        max_keys: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self.max_keys = max_keys
        self._clock = clock
        self._data: OrderedDict[str, tuple[str, float]] = OrderedDict()

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            self._data.pop(key, None)
            return
        self._data[key] = (value, self._clock() + ttl)
        self._data.move_to_end(key)
        self._evict()

    def _evict(self) -> None:
        now = self._clock()
        if len(self._data) > self.max_keys:
            for key in [k for k, (_, exp) in self._data.items() if exp <= now]:
                del self._data[key]
        while len(self._data) > self.max_keys:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("hot_key_evicted", key=evicted)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_prefix(self, prefix: str) -> int:
        matching = [k for k in self._data if k.startswith(prefix)]
        for key in matching:
            del self._data[key]
        return len(matching)

    async def ping(self) -> bool:
        return True

    async def size(self) -> int:
        now = self._clock()
        return sum(1 for _, exp in self._data.values() if exp > now)

    async def close(self) -> None:
        self._data.clear()


class RedisStore:
    """Redis-backed store using ``redis.asyncio``.

    Redis errors are re-raised as HotStoreError so callers can fall through
    to the warm tier without knowing the backend.
    """

    backend = "redis"

    def __init__(self, url: str, *, client: redis.Redis | None = None) -> None:
        self.url = url
        self._redis = client or redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            raise HotStoreError(f"Redis GET failed: {e}") from e
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._redis.setex(key, ttl, value)
        except RedisError as e:
            raise HotStoreError(f"Redis SETEX failed: {e}") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._redis.delete(*keys))
        except RedisError as e:
            raise HotStoreError(f"Redis DEL failed: {e}") from e

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=f"{prefix}*", count=_DELETE_CHUNK):
                batch.append(key)
                if len(batch) >= _DELETE_CHUNK:
                    removed += int(await self._redis.delete(*batch))
                    batch.clear()
            if batch:
                removed += int(await self._redis.delete(*batch))
        except RedisError as e:
            raise HotStoreError(f"Redis SCAN/DEL failed: {e}") from e
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def size(self) -> int:
        try:
            return int(await self._redis.dbsize())
        except RedisError as e:
            raise HotStoreError(f"Redis DBSIZE failed: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()


def create_hot_store(settings: Settings) -> HotStore:
    """Pick the hot-tier backend from settings."""
    if settings.redis_url:
        logger.info("hot_store_selected", backend="redis")
        return RedisStore(settings.redis_url)
    logger.info("hot_store_selected", backend="memory", max_keys=settings.hot_max_keys)
    return MemoryStore(max_keys=settings.hot_max_keys)
