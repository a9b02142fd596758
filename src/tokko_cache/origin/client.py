"""Read-only HTTP client for the TokkoBroker REST API (cache tier 3)."""

from __future__ import annotations

from types import TracebackType
from typing import Any, Final, NoReturn, Self

import httpx
from pydantic import ValidationError

from tokko_cache.config import DEFAULT_TOKKO_BASE_URL, Settings
from tokko_cache.logging import get_logger
from tokko_cache.origin.errors import (
    ReadOnlyViolationError,
    TokkoAPIError,
    TokkoConfigError,
    TokkoNotFoundError,
)
from tokko_cache.origin.models import (
    OriginQuery,
    TokkoListResponse,
    TokkoNamedItem,
    TokkoNamedItemList,
    TokkoProperty,
)
from tokko_cache.origin.security import (
    ensure_allowed_endpoint,
    ensure_read_only,
    is_valid_api_key,
    sanitize_query_params,
)

logger = get_logger(__name__)

USER_AGENT: Final = "tokko-cache/0.1 (read-only)"


class TokkoClient:
    """Thin async wrapper around the TokkoBroker property endpoints.

    Only GET requests to whitelisted endpoints are ever sent. The API key is
    passed as the ``key`` query parameter, as the origin requires.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_TOKKO_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: TokkoBroker API key.
            base_url: API root, without trailing slash.
            timeout: Request timeout in seconds (ignored when ``client`` is given).
            client: Optional pre-built HTTP client; the caller keeps ownership.

        Raises:
            TokkoConfigError: If the key is missing or malformed.
        """
        if not is_valid_api_key(api_key):
            raise TokkoConfigError(
                "Invalid API key format. Expected 32+ alphanumeric characters."
            )
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> TokkoClient:
        return cls(
            settings.tokko_api_key.get_secret_value(),
            base_url=settings.tokko_base_url,
            timeout=settings.tokko_timeout_seconds,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        endpoint: str,
        params: dict[str, object] | None = None,
        *,
        method: str = "GET",
    ) -> Any:
        ensure_read_only(method)
        ensure_allowed_endpoint(endpoint)

        query = sanitize_query_params(params or {})
        query["key"] = self._api_key
        query["format"] = "json"

        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._get_client().request(
                method.upper(),
                url,
                params=query,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
        except httpx.HTTPError as e:
            logger.warning("tokko_request_failed", endpoint=endpoint, error=str(e))
            raise TokkoAPIError(f"TokkoBroker request failed: {e}") from e

        if response.status_code == 404:
            raise TokkoNotFoundError(f"TokkoBroker resource not found: {endpoint}")
        if response.is_error:
            logger.warning(
                "tokko_error_status",
                endpoint=endpoint,
                status=response.status_code,
            )
            raise TokkoAPIError(
                f"TokkoBroker API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TokkoAPIError(
                "TokkoBroker returned a non-JSON body",
                status_code=response.status_code,
            ) from e

    async def get_properties(self, query: OriginQuery | None = None) -> TokkoListResponse:
        """List properties, optionally filtered and paginated."""
        params = query.to_params() if query is not None else {}
        data = await self._request("/property/", params)
        try:
            return TokkoListResponse.model_validate(data)
        except ValidationError as e:
            raise TokkoAPIError(f"Unexpected property list payload: {e}") from e

    async def get_property(self, property_id: int) -> TokkoProperty:
        """Fetch a single property.

        Raises:
            TokkoNotFoundError: If the origin has no such property.
        """
        data = await self._request(f"/property/{property_id}/")
        try:
            return TokkoProperty.model_validate(data)
        except ValidationError as e:
            raise TokkoAPIError(f"Unexpected property payload: {e}") from e

    async def get_property_types(self) -> list[TokkoNamedItem]:
        data = await self._request("/property_type/")
        try:
            return TokkoNamedItemList.model_validate(data).objects
        except ValidationError as e:
            raise TokkoAPIError(f"Unexpected property type payload: {e}") from e

    async def get_locations(self) -> list[TokkoNamedItem]:
        data = await self._request("/location/")
        try:
            return TokkoNamedItemList.model_validate(data).objects
        except ValidationError as e:
            raise TokkoAPIError(f"Unexpected location payload: {e}") from e

    # Write operations are refused outright.

    async def create_property(self, *_: object, **__: object) -> NoReturn:
        raise ReadOnlyViolationError("Create operations are disabled in read-only mode")

    async def update_property(self, *_: object, **__: object) -> NoReturn:
        raise ReadOnlyViolationError("Update operations are disabled in read-only mode")

    async def delete_property(self, *_: object, **__: object) -> NoReturn:
        raise ReadOnlyViolationError("Delete operations are disabled in read-only mode")
