"""Warm-tier storage: cached properties, images and job checkpoints."""

from tokko_cache.db.checkpoints import CheckpointRepository
from tokko_cache.db.storage import CacheStorage

__all__ = ["CacheStorage", "CheckpointRepository"]
