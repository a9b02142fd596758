"""Tests for origin request guards."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tokko_cache.origin.errors import ReadOnlyViolationError
from tokko_cache.origin.security import (
    ALLOWED_ENDPOINTS,
    ensure_allowed_endpoint,
    ensure_read_only,
    is_valid_api_key,
    sanitize_query_params,
)


class TestApiKey:
    def test_valid(self) -> None:
        assert is_valid_api_key("A" * 16 + "0" * 16)

    @pytest.mark.parametrize("key", [None, "", "a" * 31, "a" * 32 + "!", "a" * 20 + " " + "b" * 20])
    def test_invalid(self, key: str | None) -> None:
        assert not is_valid_api_key(key)


class TestGuards:
    @pytest.mark.parametrize("method", ["GET", "get"])
    def test_get_allowed(self, method: str) -> None:
        ensure_read_only(method)

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "HEAD"])
    def test_others_refused(self, method: str) -> None:
        with pytest.raises(ReadOnlyViolationError):
            ensure_read_only(method)

    @pytest.mark.parametrize("endpoint", [*ALLOWED_ENDPOINTS, "/property/123/"])
    def test_whitelisted(self, endpoint: str) -> None:
        ensure_allowed_endpoint(endpoint)

    @pytest.mark.parametrize(
        "endpoint", ["/contact/", "/property", "/../property/", "/webcontact/"]
    )
    def test_not_whitelisted(self, endpoint: str) -> None:
        with pytest.raises(ReadOnlyViolationError):
            ensure_allowed_endpoint(endpoint)


class TestSanitize:
    def test_drops_unsupported_and_empty(self) -> None:
        result = sanitize_query_params(
            {"a": "ok", "b": 5, "c": 1.5, "d": None, "e": True, "f": ["x"], "g": "  ", "h": "<>"}
        )
        assert result == {"a": "ok", "b": "5", "c": "1.5"}

    @given(st.dictionaries(st.text(min_size=1, max_size=10), st.text(max_size=30)))
    def test_output_never_contains_markup(self, params: dict[str, str]) -> None:
        for value in sanitize_query_params(params).values():
            assert value
            assert not set(value) & set("<>'\"&")
