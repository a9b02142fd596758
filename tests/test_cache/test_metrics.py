"""Tests for cache metrics."""

from tokko_cache.cache.metrics import RESPONSE_TIME_WINDOW, CacheMetrics
from tokko_cache.models import CacheTier


def test_hit_rate_counts_hot_and_warm_hits() -> None:
    m = CacheMetrics()
    m.record_hit(CacheTier.HOT, 1.0)
    m.record_miss(CacheTier.HOT, 1.0)
    m.record_hit(CacheTier.WARM, 5.0)
    m.record_miss(CacheTier.HOT, 1.0)
    m.record_miss(CacheTier.WARM, 5.0)
    m.record_hit(CacheTier.ORIGIN, 200.0)
    assert m.total_requests == 3
    assert m.hit_rate == 66.67


def test_empty_snapshot() -> None:
    snap = CacheMetrics().snapshot()
    assert snap["overall"]["cache_hit_rate"] == 0.0
    assert snap["hot"]["avg_response_time_ms"] == 0.0
    assert snap["origin"]["last_error"] is None


def test_response_time_window() -> None:
    m = CacheMetrics()
    for _ in range(RESPONSE_TIME_WINDOW):
        m.record_hit(CacheTier.WARM, 100.0)
    for _ in range(RESPONSE_TIME_WINDOW):
        m.record_hit(CacheTier.WARM, 2.0)
    assert m.tiers[CacheTier.WARM].avg_response_time_ms == 2.0
    assert m.tiers[CacheTier.WARM].hits == 2 * RESPONSE_TIME_WINDOW


def test_errors_and_reset() -> None:
    m = CacheMetrics()
    m.record_error(CacheTier.HOT, RuntimeError("boom"))
    snap = m.snapshot()["hot"]
    assert snap["errors"] == 1
    assert snap["last_error"] == "boom"
    assert snap["last_error_time"] is not None
    m.reset(CacheTier.HOT)
    assert m.tiers[CacheTier.HOT].errors == 0
