"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={ids}&vs_currencies={quotes}
Rate Limit: 30 calls/min (free), higher with API key
"""

import logging
from decimal import Decimal

from .base import BaseFetcher, FetcherError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for the CoinGecko simple price API.

    API tiers:
        - Free: api.coingecko.com (no key)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    Demo keys are configured with a "demo:" prefix: API_KEY_COINGECKO=demo:CG-xxxxx
    """

    name = "coingecko"
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    COIN_IDS = {
        "btc": "bitcoin",
        "eth": "ethereum",
        "usdt": "tether",
        "usdc": "usd-coin",
        "dai": "dai",
        "sol": "solana",
        "avax": "avalanche-2",
        "dot": "polkadot",
        "atom": "cosmos",
        "link": "chainlink",
        "uni": "uniswap",
        "aave": "aave",
        "rose": "oasis-network",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[len("demo:"):]
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Pro keys use the pro host; free and demo use the public one."""
        if self.has_api_key and not self._is_demo:
            return self.BASE_URL_PRO
        return self.BASE_URL_FREE

    def _headers(self) -> dict[str, str] | None:
        if not self.has_api_key:
            return None
        header = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return {header: self.api_key}

    def supports_pair(self, base: str, quote: str) -> bool:
        """Only coins with a known CoinGecko id are supported."""
        return base.lower() in self.COIN_IDS

    async def fetch(self, base: str, quote: str) -> Decimal | None:
        """Fetch a price from CoinGecko.

        :param base: Asset symbol (e.g., "btc").
        :param quote: Quote currency (e.g., "usd").
        :returns: Current price or None on failure.
        """
        results = await self.fetch_batch([(base, quote)])
        return results[(base, quote)]

    @property
    def supports_batch(self) -> bool:
        """CoinGecko accepts many ids and quotes per request."""
        return True

    async def fetch_batch(
        self, pairs: list[tuple[str, str]]
    ) -> dict[tuple[str, str], Decimal | None]:
        """Fetch prices for multiple pairs in a single API call.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to price or None.
        """
        results: dict[tuple[str, str], Decimal | None] = {p: None for p in pairs}
        supported = [p for p in pairs if self.supports_pair(*p)]
        if not supported:
            return results

        ids = sorted({self.COIN_IDS[b.lower()] for b, _ in supported})
        quotes = sorted({q.lower() for _, q in supported})

        try:
            response = await self._get(
                f"{self.base_url}/simple/price",
                params={"ids": ",".join(ids), "vs_currencies": ",".join(quotes)},
                headers=self._headers(),
            )
            data = response.json()
        except FetcherError as e:
            logger.warning(f"[coingecko] Batch fetch failed: {e}")
            return results
        except ValueError as e:
            logger.warning(f"[coingecko] Failed to parse batch response: {e}")
            return results

        for base, quote in supported:
            coin_id = self.COIN_IDS[base.lower()]
            try:
                results[(base, quote)] = parse_price(data[coin_id][quote.lower()])
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"[coingecko] No {quote} price for {coin_id}: {e}")

        return results
