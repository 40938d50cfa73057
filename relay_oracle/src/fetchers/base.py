"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement ``fetch()``. A shared
httpx.AsyncClient is used across all fetchers to avoid connection overhead.

Prices are returned as ``Decimal`` parsed straight from the API's string or
JSON number, so no binary float rounding happens before the fixed-point
conversion.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch(self, base: str, quote: str) -> Decimal | None:
            response = await self._get(f"https://api.example.com/{base}/{quote}")
            return parse_price(response.json()["price"])
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


def parse_price(raw: Any) -> Decimal:
    """Parse an API price field into a positive finite Decimal.

    JSON numbers are routed through ``str`` so ``0.1`` stays ``Decimal('0.1')``.

    :param raw: String or number from a response body.
    :returns: Parsed price.
    :raises ValueError: If the value is not a positive finite number.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValueError(f"Not a price: {raw!r}")
    try:
        price = Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"Not a price: {raw!r}") from e
    if not price.is_finite() or price <= 0:
        raise ValueError(f"Not a positive finite price: {raw!r}")
    return price


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return bool(self.api_key)

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the HTTP client shared by every fetcher."""
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, base: str, quote: str) -> Decimal | None:
        """Fetch the current price for an asset.

        :param base: Asset symbol (e.g., "btc").
        :param quote: Quote currency symbol (e.g., "usd").
        :returns: Price, or None if the source has none.
        """
        pass

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if this fetcher can price ``base`` in ``quote``.

        Override in subclasses to restrict supported pairs.
        """
        return True

    @property
    def supports_batch(self) -> bool:
        """True if :meth:`fetch_batch` issues a single request."""
        return False

    async def fetch_batch(
        self, pairs: list[tuple[str, str]]
    ) -> dict[tuple[str, str], Decimal | None]:
        """Fetch prices for multiple pairs.

        Default implementation runs individual fetches concurrently.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to price or None.
        """
        supported = [p for p in pairs if self.supports_pair(*p)]
        prices = await asyncio.gather(*(self.fetch(b, q) for b, q in supported))
        results: dict[tuple[str, str], Decimal | None] = {p: None for p in pairs}
        results.update(zip(supported, prices, strict=True))
        return results

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :raises FetcherHTTPError: On non-2xx response.
        :raises FetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise FetcherHTTPError(response.status_code, response.text[:200])
        return response


FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :raises ValueError: If fetcher has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get sorted list of registered fetcher names."""
    return sorted(FETCHER_REGISTRY.keys())
