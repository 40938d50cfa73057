"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={BASE}{QUOTE}[,...]
Rate Limit: High (no key required)
"""

import logging
from decimal import Decimal

from .base import BaseFetcher, FetcherError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for the Kraken public ticker.

    The ticker endpoint accepts a comma-separated list of pairs, so all
    assets are fetched in one request.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    # Kraken's own asset codes
    SYMBOL_MAP = {
        "btc": "XBT",
        "doge": "XDG",
    }

    def _market(self, base: str, quote: str) -> str:
        kraken_base = self.SYMBOL_MAP.get(base.lower(), base.upper())
        kraken_quote = self.SYMBOL_MAP.get(quote.lower(), quote.upper())
        return f"{kraken_base}{kraken_quote}"

    @staticmethod
    def _find_result(result: dict, market: str) -> dict | None:
        """Locate a market in the response.

        Legacy markets come back under their extended key (XXBTZUSD for
        XBTUSD), so fall back to stripping the X/Z asset-class prefixes.
        """
        if market in result:
            return result[market]
        for key, value in result.items():
            if len(key) == 8 and key[0] in "XZ" and key[4] in "XZ":
                if key[1:4] + key[5:] == market:
                    return value
        return None

    async def fetch(self, base: str, quote: str) -> Decimal | None:
        """Fetch the last trade price from Kraken.

        :param base: Asset symbol (e.g., "btc").
        :param quote: Quote currency (e.g., "usd").
        :returns: Current price or None on failure.
        """
        results = await self.fetch_batch([(base, quote)])
        return results[(base, quote)]

    @property
    def supports_batch(self) -> bool:
        """Kraken supports batch fetching multiple pairs."""
        return True

    async def fetch_batch(
        self, pairs: list[tuple[str, str]]
    ) -> dict[tuple[str, str], Decimal | None]:
        """Fetch prices for multiple pairs in a single API call.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to price or None.
        """
        results: dict[tuple[str, str], Decimal | None] = {p: None for p in pairs}
        markets = {pair: self._market(*pair) for pair in pairs}
        if not markets:
            return results

        try:
            response = await self._get(
                f"{self.BASE_URL}/Ticker",
                params={"pair": ",".join(markets.values())},
            )
            data = response.json()
        except FetcherError as e:
            logger.warning(f"[kraken] Batch fetch failed: {e}")
            return results
        except ValueError as e:
            logger.warning(f"[kraken] Failed to parse batch response: {e}")
            return results

        if data.get("error"):
            logger.warning(f"[kraken] API error: {data['error']}")
            return results

        result = data.get("result") or {}
        for pair, market in markets.items():
            ticker = self._find_result(result, market)
            if ticker is None:
                logger.debug(f"[kraken] {market} missing from response")
                continue
            try:
                # 'c' is the last trade closed array: [price, lot volume]
                results[pair] = parse_price(ticker["c"][0])
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning(f"[kraken] Failed to parse {market}: {e}")

        return results
