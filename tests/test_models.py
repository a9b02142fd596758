"""Tests for domain models."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from tokko_cache.models import (
    CacheTier,
    Checkpoint,
    CheckpointStatus,
    ImageStatus,
    ProcessType,
    PropertyImage,
    SearchFilters,
    SearchResult,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _checkpoint(**overrides: object) -> Checkpoint:
    fields: dict[str, object] = {
        "id": 1,
        "process_type": ProcessType.PROPERTY_SYNC,
        "process_id": "sync_1",
        "status": CheckpointStatus.RUNNING,
        "total_items": 100,
        "processed_items": 0,
        "started_at": NOW - timedelta(minutes=10),
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Checkpoint.model_validate(fields)


class TestSearchFilters:
    def test_defaults(self) -> None:
        f = SearchFilters()
        assert f.page == 1
        assert f.limit == 12
        assert f.offset == 0

    def test_offset(self) -> None:
        assert SearchFilters(page=3, limit=10).offset == 20

    def test_limit_capped_at_50(self) -> None:
        with pytest.raises(ValidationError):
            SearchFilters(limit=51)

    def test_blank_strings_become_none(self) -> None:
        f = SearchFilters(query="   ", type="", operation=" Venta ")
        assert f.query is None
        assert f.type is None
        assert f.operation == "Venta"

    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError, match="min_price"):
            SearchFilters(min_price=200, max_price=100)
        with pytest.raises(ValidationError, match="min_surface"):
            SearchFilters(min_surface=500, max_surface=100)

    def test_tags_are_order_independent(self) -> None:
        a = SearchFilters(tags=("b", "a", "a", " "))
        b = SearchFilters(tags=("a", "b"))
        assert a.tags == ("a", "b")
        assert a.cache_params() == b.cache_params()

    def test_cache_params_omit_unset(self) -> None:
        params = SearchFilters(query="nave").cache_params()
        assert params == {"query": "nave", "page": 1, "limit": 12}


class TestSearchResult:
    def test_total_pages(self) -> None:
        result = SearchResult.build([], 25, SearchFilters(limit=12))
        assert result.total_pages == 3
        assert result.source == CacheTier.WARM

    def test_zero_total(self) -> None:
        assert SearchResult.build([], 0, SearchFilters()).total_pages == 0


class TestCheckpointProgress:
    def test_percentage_and_remaining(self) -> None:
        info = _checkpoint(processed_items=40, failed_items=5).progress_info(NOW)
        assert info.percentage == 45
        assert info.remaining == 55

    def test_zero_total(self) -> None:
        info = _checkpoint(total_items=0).progress_info(NOW)
        assert info.percentage == 0
        assert info.remaining == 0

    def test_eta_unknown_without_progress(self) -> None:
        assert _checkpoint().progress_info(NOW).estimated_time_remaining == "Unknown"

    def test_eta_unknown_when_not_running(self) -> None:
        cp = _checkpoint(status=CheckpointStatus.PAUSED, processed_items=50)
        assert cp.progress_info(NOW).estimated_time_remaining == "Unknown"

    def test_eta_minutes(self) -> None:
        # 50 items in 10 minutes, 50 to go
        cp = _checkpoint(processed_items=50)
        assert cp.progress_info(NOW).estimated_time_remaining == "10 minutes"

    def test_eta_less_than_a_minute(self) -> None:
        cp = _checkpoint(processed_items=99)
        assert cp.progress_info(NOW).estimated_time_remaining == "Less than 1 minute"

    def test_eta_hours(self) -> None:
        cp = _checkpoint(total_items=10000, processed_items=50)
        assert cp.progress_info(NOW).estimated_time_remaining == "33 hours"


class TestPropertyImage:
    def test_display_url_prefers_webp(self) -> None:
        img = PropertyImage(id=1, property_id=5, original_url="https://x.test/a.jpg")
        assert img.display_url == "https://x.test/a.jpg"
        done = img.model_copy(
            update={"webp_url": "/images/5/full.webp", "processing_status": ImageStatus.COMPLETED}
        )
        assert done.display_url == "/images/5/full.webp"
