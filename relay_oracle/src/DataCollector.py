"""DataCollector: concurrent price collection within a bounded window.

Every active source is queried concurrently for all the assets it supports,
using one batch request where the source allows it. Collection ends when
every source has answered or ``collection_window`` elapses, whichever comes
first. Sources still running at that point are cancelled and excluded from
the cycle; they are not retried until the next one.

Each price that arrives is tagged with its source, asset and the time it was
received, and outcomes are fed back to the SourceManager for backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal

from .Asset import Asset
from .fetchers import BaseFetcher
from .SourceManager import SourceManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """One price reported by one source.

    :ivar source: Source name (e.g. "kraken").
    :ivar symbol: Asset symbol.
    :ivar value: Human-scale price.
    :ivar observed_at: Unix time the price was received.
    """

    source: str
    symbol: str
    value: Decimal
    observed_at: float


@dataclass
class CollectionResult:
    """Everything gathered in one collection window.

    :ivar observations: Observations grouped by asset symbol.
    :ivar failed_sources: Sources that errored or returned nothing.
    :ivar timed_out_sources: Sources cancelled at the end of the window.
    :ivar skipped_sources: Sources in backoff that were not queried.
    """

    observations: dict[str, list[Observation]] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)
    timed_out_sources: list[str] = field(default_factory=list)
    skipped_sources: list[str] = field(default_factory=list)

    def count(self) -> int:
        """Total number of observations."""
        return sum(len(obs) for obs in self.observations.values())


class DataCollector:
    """Fetches prices from all sources in parallel.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar source_manager: Backoff tracker consulted and updated each cycle.
    :ivar collection_window: Seconds to wait for all sources.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        source_manager: SourceManager,
        collection_window: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the collector.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param source_manager: Per-source backoff tracker.
        :param collection_window: Hard bound on one collection in seconds.
        :param clock: Wall-clock used to stamp observations.
        """
        if collection_window <= 0:
            raise ValueError("collection_window must be positive")
        self.fetchers = fetchers
        self.source_manager = source_manager
        self.collection_window = collection_window
        self._clock = clock

    async def _fetch_source(
        self, fetcher: BaseFetcher, pairs: list[tuple[str, str]]
    ) -> tuple[dict[tuple[str, str], Decimal | None], float]:
        if fetcher.supports_batch:
            logger.debug(f"[{fetcher.name}] Batch fetching {len(pairs)} assets")
            prices = await fetcher.fetch_batch(pairs)
        else:
            logger.debug(f"[{fetcher.name}] Individual fetching {len(pairs)} assets")
            values = await asyncio.gather(*(fetcher.fetch(b, q) for b, q in pairs))
            prices = dict(zip(pairs, values, strict=True))
        return prices, self._clock()

    async def collect(self, assets: list[Asset]) -> CollectionResult:
        """Collect one round of observations for ``assets``.

        :param assets: Assets to price.
        :returns: Observations and per-source outcome lists.
        """
        result = CollectionResult(observations={a.symbol: [] for a in assets})
        active = set(self.source_manager.get_active_sources())

        tasks: dict[asyncio.Task, str] = {}
        for source, fetcher in self.fetchers.items():
            pairs = [
                (a.symbol, a.quote) for a in assets if fetcher.supports_pair(a.symbol, a.quote)
            ]
            if not pairs:
                continue
            if source not in active:
                result.skipped_sources.append(source)
                logger.debug(
                    f"[{source}] In backoff for another "
                    f"{self.source_manager.get_backoff_remaining(source):.1f}s, skipped"
                )
                continue
            task = asyncio.create_task(self._fetch_source(fetcher, pairs), name=source)
            tasks[task] = source

        if not tasks:
            logger.warning("No active sources to collect from")
            return result

        done, pending = await asyncio.wait(list(tasks), timeout=self.collection_window)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            source = tasks[task]
            result.timed_out_sources.append(source)
            backoff = self.source_manager.record_failure(source)
            logger.warning(
                f"[{source}] No answer within {self.collection_window}s, "
                f"excluded this cycle (backoff {backoff:.1f}s)"
            )

        for task, source in tasks.items():
            if task not in done:
                continue
            exc = task.exception()
            if exc is not None:
                result.failed_sources.append(source)
                backoff = self.source_manager.record_failure(source)
                logger.warning(f"[{source}] Fetch error: {exc} (backoff {backoff:.1f}s)")
                continue

            prices, observed_at = task.result()
            received = 0
            for (symbol, _), value in prices.items():
                if value is None or symbol not in result.observations:
                    continue
                result.observations[symbol].append(
                    Observation(source=source, symbol=symbol, value=value, observed_at=observed_at)
                )
                received += 1

            if received:
                self.source_manager.record_success(source)
            else:
                result.failed_sources.append(source)
                backoff = self.source_manager.record_failure(source)
                logger.warning(f"[{source}] Returned no prices (backoff {backoff:.1f}s)")

        logger.debug(
            f"Collected {result.count()} observations from "
            f"{len(done) - len(result.failed_sources)}/{len(tasks)} sources"
        )
        return result
