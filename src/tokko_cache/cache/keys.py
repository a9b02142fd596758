"""Hot-tier key derivation."""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from tokko_cache.models import SearchFilters

PROPERTY_NAMESPACE = "property:"
SEARCH_NAMESPACE = "search:"


def property_key(tokko_id: int, prefix: str = "") -> str:
    return f"{prefix}{PROPERTY_NAMESPACE}{tokko_id}"


def search_key(filters: SearchFilters | Mapping[str, Any], prefix: str = "") -> str:
    """Key for a search result page.

    Filters are serialised with sorted keys, so the same filter set always maps
    to the same key regardless of the order it was given in.
    """
    params = filters.cache_params() if isinstance(filters, SearchFilters) else dict(filters)
    payload = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.md5(payload.encode(), usedforsecurity=False).hexdigest()
    return f"{prefix}{SEARCH_NAMESPACE}{digest}"


def search_prefix(prefix: str = "") -> str:
    return f"{prefix}{SEARCH_NAMESPACE}"
