"""Bitstamp fetcher.

Endpoint: https://www.bitstamp.net/api/v2/ticker/{base}{quote}/
Rate Limit: High (no key required)
"""

import logging
from decimal import Decimal

from .base import BaseFetcher, FetcherError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BitstampFetcher(BaseFetcher):
    """Fetcher for the Bitstamp public ticker.

    Only lists major assets against fiat and a few stablecoins.
    """

    name = "bitstamp"
    BASE_URL = "https://www.bitstamp.net/api/v2"

    QUOTES = frozenset({"usd", "eur", "gbp", "usdt", "usdc"})

    async def fetch(self, base: str, quote: str) -> Decimal | None:
        """Fetch the last trade price from Bitstamp.

        :param base: Asset symbol (e.g., "btc").
        :param quote: Quote currency (e.g., "usd").
        :returns: Current price or None on failure.
        """
        market = f"{base.lower()}{quote.lower()}"

        try:
            response = await self._get(f"{self.BASE_URL}/ticker/{market}/")
            data = response.json()
            if "last" not in data:
                logger.warning(f"[bitstamp] No 'last' price for {market}: {data}")
                return None
            return parse_price(data["last"])
        except FetcherError as e:
            logger.warning(f"[bitstamp] Failed to fetch {market}: {e}")
            return None
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[bitstamp] Failed to parse response for {market}: {e}")
            return None

    def supports_pair(self, base: str, quote: str) -> bool:
        """Bitstamp only quotes in a handful of currencies."""
        return quote.lower() in self.QUOTES and base.lower() != quote.lower()
