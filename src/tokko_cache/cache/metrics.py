"""Per-tier hit/miss/error counters with a rolling response-time window."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final

from tokko_cache.models import CacheTier

RESPONSE_TIME_WINDOW: Final = 100


@dataclass
class TierMetrics:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    last_error: str | None = None
    last_error_time: datetime | None = None
    response_times: deque[float] = field(
        default_factory=lambda: deque(maxlen=RESPONSE_TIME_WINDOW)
    )

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def avg_response_time_ms(self) -> float:
        if not self.response_times:
            return 0.0
        return round(sum(self.response_times) / len(self.response_times), 2)

    def snapshot(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "total_requests": self.total_requests,
            "avg_response_time_ms": self.avg_response_time_ms,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class CacheMetrics:
    """Counters for every tier plus overall hit rate."""

    def __init__(self) -> None:
        self.tiers: dict[CacheTier, TierMetrics] = {tier: TierMetrics() for tier in CacheTier}
        self.started = time.monotonic()

    def record_hit(self, tier: CacheTier, elapsed_ms: float) -> None:
        metrics = self.tiers[tier]
        metrics.hits += 1
        metrics.response_times.append(elapsed_ms)

    def record_miss(self, tier: CacheTier, elapsed_ms: float) -> None:
        metrics = self.tiers[tier]
        metrics.misses += 1
        metrics.response_times.append(elapsed_ms)

    def record_error(self, tier: CacheTier, error: BaseException | str) -> None:
        metrics = self.tiers[tier]
        metrics.errors += 1
        metrics.last_error = str(error)
        metrics.last_error_time = datetime.now(UTC)

    def reset(self, tier: CacheTier) -> None:
        self.tiers[tier] = TierMetrics()

    @property
    def total_requests(self) -> int:
        """Requests that reached the cache (each one starts at the hot tier)."""
        return self.tiers[CacheTier.HOT].total_requests

    @property
    def hit_rate(self) -> float:
        """Share of requests answered without going to the origin, in percent."""
        total = self.total_requests
        if total == 0:
            return 0.0
        cached = self.tiers[CacheTier.HOT].hits + self.tiers[CacheTier.WARM].hits
        return round(cached / total * 100, 2)

    def snapshot(self) -> dict[str, Any]:
        samples = [t for m in self.tiers.values() for t in m.response_times]
        avg = round(sum(samples) / len(samples), 2) if samples else 0.0
        return {
            **{tier.value: metrics.snapshot() for tier, metrics in self.tiers.items()},
            "overall": {
                "total_requests": self.total_requests,
                "cache_hit_rate": self.hit_rate,
                "avg_response_time_ms": avg,
                "uptime_seconds": round(time.monotonic() - self.started, 1),
            },
        }
