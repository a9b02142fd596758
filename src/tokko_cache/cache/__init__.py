"""Hot tier stores, key helpers, metrics and the hybrid cache service."""

from tokko_cache.cache.hot import HotStore, HotStoreError, MemoryStore, RedisStore, create_hot_store
from tokko_cache.cache.service import HybridCacheService, OriginUnavailableError

__all__ = [
    "HotStore",
    "HotStoreError",
    "HybridCacheService",
    "MemoryStore",
    "OriginUnavailableError",
    "RedisStore",
    "create_hot_store",
]
