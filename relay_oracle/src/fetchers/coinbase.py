"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
Rate Limit: High (no key required)
"""

import logging
from decimal import Decimal

from .base import BaseFetcher, FetcherError, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for the Coinbase Exchange public ticker."""

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    async def fetch(self, base: str, quote: str) -> Decimal | None:
        """Fetch the last trade price from Coinbase Exchange.

        :param base: Asset symbol (e.g., "btc").
        :param quote: Quote currency (e.g., "usd").
        :returns: Current price or None on failure.
        """
        product = f"{base.upper()}-{quote.upper()}"

        try:
            response = await self._get(f"{self.BASE_URL}/products/{product}/ticker")
            data = response.json()
            if "price" not in data:
                logger.warning(f"[coinbase] No price for {product}: {data}")
                return None
            return parse_price(data["price"])
        except FetcherError as e:
            logger.warning(f"[coinbase] Failed to fetch {product}: {e}")
            return None
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[coinbase] Failed to parse response for {product}: {e}")
            return None
