"""TokkoBroker origin API: client, payload models and transformer."""

from tokko_cache.origin.client import TokkoClient
from tokko_cache.origin.errors import (
    ReadOnlyViolationError,
    TokkoAPIError,
    TokkoConfigError,
    TokkoError,
    TokkoNotFoundError,
)
from tokko_cache.origin.models import OriginQuery, TokkoProperty
from tokko_cache.origin.transformer import transform_tokko_property

__all__ = [
    "OriginQuery",
    "ReadOnlyViolationError",
    "TokkoAPIError",
    "TokkoClient",
    "TokkoConfigError",
    "TokkoError",
    "TokkoNotFoundError",
    "TokkoProperty",
    "transform_tokko_property",
]
