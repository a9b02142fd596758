"""Read-only guards applied to every origin request."""

import re
from collections.abc import Mapping
from typing import Final

from tokko_cache.origin.errors import ReadOnlyViolationError

ALLOWED_METHODS: Final = frozenset({"GET"})

ALLOWED_ENDPOINTS: Final = (
    "/property/",
    "/property_type/",
    "/location/",
    "/currency/",
    "/operation_type/",
)

API_KEY_MIN_LENGTH: Final = 32
_API_KEY_PATTERN: Final = re.compile(r"^[a-zA-Z0-9]+$")
_UNSAFE_CHARS: Final = re.compile(r"[<>'\"&]")


def is_valid_api_key(api_key: str | None) -> bool:
    """Check the key is present, long enough and alphanumeric."""
    if not api_key:
        return False
    return len(api_key) >= API_KEY_MIN_LENGTH and bool(_API_KEY_PATTERN.match(api_key))


def ensure_read_only(method: str) -> None:
    """Raise unless the HTTP method is a read."""
    if method.upper() not in ALLOWED_METHODS:
        raise ReadOnlyViolationError(
            f"{method.upper()} requests are forbidden; origin access is read-only"
        )


def ensure_allowed_endpoint(endpoint: str) -> None:
    """Raise unless the endpoint is on the whitelist."""
    if not endpoint.startswith(ALLOWED_ENDPOINTS):
        raise ReadOnlyViolationError(f"Endpoint {endpoint} is not whitelisted")


def sanitize_query_params(params: Mapping[str, object]) -> dict[str, str]:
    """Keep string/number params, strip markup characters, drop empty values.

    Booleans are dropped: the origin expects explicit string flags.
    """
    sanitized: dict[str, str] = {}
    for key, value in params.items():
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            continue
        cleaned = _UNSAFE_CHARS.sub("", str(value)).strip()
        if cleaned:
            sanitized[key] = cleaned
    return sanitized
