"""HTTP observation source.

Polls an ingestion service that collects fee reports from the exchange
integrations:

    GET {base_url}/observations?symbol=BTC/USDT&max_age=600  -> [observation, ...]
    GET {base_url}/symbols                                   -> ["BTC/USDT", ...]

Payloads are validated with :meth:`Observation.from_dict`; invalid entries are
logged and skipped. A shared ``httpx.AsyncClient`` is reused across instances
to avoid connection overhead.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

import httpx

from ..errors import ObservationError, StorageFailureError
from ..FeeSymbol import FeeSymbol
from ..Observation import Observation
from .base import BaseObservationSource, register_source

logger = logging.getLogger(__name__)


@register_source
class HttpObservationSource(BaseObservationSource):
    """Observation source backed by an ingestion service's REST API.

    :cvar DEFAULT_TIMEOUT: Default request timeout in seconds.
    :ivar base_url: Ingestion service base URL.
    :ivar api_key: Optional bearer token.
    :ivar timeout: Request timeout in seconds.
    :ivar symbols: Symbols reported as active; None means every symbol the
        ingestion service lists.
    """

    name = "http"

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        symbols: list[str] | None = None,
    ) -> None:
        """Initialize the source.

        :param base_url: Ingestion service base URL.
        :param api_key: Optional bearer token.
        :param timeout: Request timeout in seconds (default: 10).
        :param client: Optional client to use instead of the shared one.
        :param symbols: Fixed list of active symbols (default: as listed by
            the ingestion service).
        :raises ValueError: If base_url is empty or a symbol is malformed.
        """
        if not base_url:
            raise ValueError("base_url is required for the http observation source")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._client = client
        self.symbols = (
            [str(FeeSymbol.from_string(s)) for s in symbols] if symbols is not None else None
        )

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if cls._shared_client is None or cls._shared_client.is_closed:
            cls._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return cls._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if cls._shared_client is not None and not cls._shared_client.is_closed:
            await cls._shared_client.aclose()
            cls._shared_client = None

    async def close(self) -> None:
        if self._client is None:
            await self.close_shared_client()

    async def _get(self, path: str, *, params: dict | None = None) -> Any:
        """GET a JSON document from the ingestion service.

        :raises StorageFailureError: On network errors, non-2xx responses or
            invalid JSON.
        """
        client = self._client or self.get_shared_client()
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        url = f"{self.base_url}{path}"
        try:
            response = await client.get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise StorageFailureError(f"GET {path}", f"request timeout: {e}") from e
        except httpx.RequestError as e:
            raise StorageFailureError(f"GET {path}", f"request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise StorageFailureError(
                f"GET {path}", f"HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise StorageFailureError(f"GET {path}", f"invalid JSON: {e}") from e

    async def get_fresh_observations(
        self, symbol: str, max_age: float
    ) -> list[Observation]:
        data = await self._get(
            "/observations", params={"symbol": symbol, "max_age": max_age}
        )
        items = data.get("observations", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise StorageFailureError("GET /observations", "expected a list of observations")

        observations: list[Observation] = []
        for item in items:
            try:
                observation = Observation.from_dict(item)
            except ObservationError as e:
                logger.warning(f"{symbol}: Skipping invalid observation: {e}")
                continue
            if observation.symbol != symbol:
                logger.warning(
                    f"{symbol}: Skipping [{observation.source}] observation "
                    f"for {observation.symbol}"
                )
                continue
            observations.append(observation)
        return observations

    async def get_active_symbols(self) -> list[str]:
        if self.symbols is not None:
            return list(self.symbols)

        data = await self._get("/symbols")
        items = data.get("symbols", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise StorageFailureError("GET /symbols", "expected a list of symbols")

        symbols: list[str] = []
        for item in items:
            try:
                symbols.append(str(FeeSymbol.from_string(str(item))))
            except ValueError as e:
                logger.warning(f"Skipping invalid symbol from ingestion service: {e}")
        return symbols
