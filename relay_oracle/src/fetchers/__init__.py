"""
Price fetchers for multiple API sources.

Usage:
    from relay_oracle.src.fetchers import get_fetcher, get_available_fetchers

    available = get_available_fetchers()
    # ['bitstamp', 'coinbase', 'coingecko', 'kraken']

    fetcher = get_fetcher("coinbase")
    price = await fetcher.fetch("btc", "usd")  # Decimal('67012.35')
"""

from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherError,
    FetcherHTTPError,
    get_available_fetchers,
    get_fetcher,
    parse_price,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .bitstamp import BitstampFetcher
from .coinbase import CoinbaseFetcher
from .coingecko import CoinGeckoFetcher
from .kraken import KrakenFetcher

__all__ = [
    "BaseFetcher",
    "FetcherError",
    "FetcherHTTPError",
    "parse_price",
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    "BitstampFetcher",
    "CoinbaseFetcher",
    "CoinGeckoFetcher",
    "KrakenFetcher",
]
