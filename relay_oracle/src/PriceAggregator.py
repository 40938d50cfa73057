"""PriceAggregator: outlier filtering and median aggregation per asset.

Algorithm:
    1. Drop missing and non-positive prices.
    2. Repeatedly take the price furthest from the current median and
       compare it with the median of the *remaining* sources; drop it if the
       deviation exceeds ``max_deviation_percent``, stop otherwise.
    3. Take the median of the survivors.
    4. Optionally reject the result if it moved more than
       ``drift_limit_percent`` from the previous accepted price.
    5. Fail with no price if fewer than ``min_sources`` survive; the asset is
       then withheld from the cycle rather than submitted on thin evidence.

.. code-block:: python

    >>> aggregator = PriceAggregator(min_sources=2, max_deviation_percent=5.0)
    >>> result = aggregator.aggregate(
    ...     {"coinbase": Decimal("100"), "kraken": Decimal("100.5"), "rogue": Decimal("200")}
    ... )
    >>> result.price
    Decimal('100.25')
    >>> result.metadata["dropped"]
    {'rogue': Decimal('200')}
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from statistics import median as _median
from typing import TypedDict


class AggregationError(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of valid sources available.
    :ivar dropped: Sources dropped as outliers.
    :ivar drift_percent: Actual drift percentage vs previous price.
    :ivar previous_price: Previous accepted price.
    :ivar candidate_price: Price that was rejected due to drift.
    """

    error: str
    available: int
    dropped: dict[str, Decimal]
    drift_percent: Decimal
    previous_price: Decimal
    candidate_price: Decimal


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar sources: Sources used in the final median.
    :ivar dropped: Sources dropped as outliers.
    :ivar count: Number of sources used.
    :ivar initial_median: Median of all valid prices before filtering.
    """

    sources: list[str]
    dropped: dict[str, Decimal]
    count: int
    initial_median: Decimal


@dataclass
class AggregationResult:
    """Result of price aggregation.

    :ivar price: Aggregated price, or None if aggregation failed.
    :ivar metadata: Additional information about the aggregation.
    """

    price: Decimal | None
    metadata: AggregationMetadata | AggregationError

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.price is not None

    @property
    def error(self) -> str | None:
        """Get error type if aggregation failed."""
        if self.price is None:
            return self.metadata.get("error")
        return None


def _deviation_percent(price: Decimal, reference: Decimal) -> Decimal:
    return abs(price - reference) / reference * 100


class PriceAggregator:
    """Aggregates one asset's prices from multiple sources.

    :ivar min_sources: Minimum surviving sources for a confident price.
    :ivar max_deviation_percent: Max deviation from the remainder's median.
    :ivar drift_limit_percent: Max change vs previous price, or None.
    """

    def __init__(
        self,
        min_sources: int = 2,
        max_deviation_percent: float = 5.0,
        drift_limit_percent: float | None = None,
    ) -> None:
        """Initialize the aggregator.

        :param min_sources: Minimum number of surviving sources.
        :param max_deviation_percent: Outlier threshold in percent (default 5%).
        :param drift_limit_percent: Optional max change vs previous price.
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive")
        if drift_limit_percent is not None and drift_limit_percent <= 0:
            raise ValueError("drift_limit_percent must be positive if specified")

        self.min_sources = min_sources
        self.max_deviation_percent = max_deviation_percent
        self.drift_limit_percent = drift_limit_percent
        self._max_deviation = Decimal(str(max_deviation_percent))
        self._drift_limit = (
            Decimal(str(drift_limit_percent)) if drift_limit_percent is not None else None
        )

    def filter_outliers(
        self, valid: dict[str, Decimal]
    ) -> tuple[dict[str, Decimal], dict[str, Decimal]]:
        """Split prices into survivors and outliers.

        :param valid: Positive prices keyed by source.
        :returns: ``(kept, dropped)``.
        """
        kept = dict(valid)
        dropped: dict[str, Decimal] = {}
        while len(kept) > 1:
            center = _median(kept.values())
            # Ties resolve to the earliest source.
            suspect = max(kept, key=lambda s: abs(kept[s] - center))
            reference = _median([p for s, p in kept.items() if s != suspect])
            if _deviation_percent(kept[suspect], reference) <= self._max_deviation:
                break
            dropped[suspect] = kept.pop(suspect)
        return kept, dropped

    def aggregate(
        self,
        prices: dict[str, Decimal | None],
        *,
        previous_price: Decimal | None = None,
    ) -> AggregationResult:
        """Aggregate one asset's prices into a single median.

        :param prices: Source name to price (None if the source had none).
        :param previous_price: Last accepted price for the drift check; None
            skips the check.
        :returns: AggregationResult with price and metadata, or None price
            with error info.
        """
        valid: dict[str, Decimal] = {
            k: v for k, v in prices.items() if v is not None and v > 0
        }

        if len(valid) < self.min_sources:
            return AggregationResult(
                price=None,
                metadata={"error": "insufficient_sources", "available": len(valid)},
            )

        initial_median = _median(valid.values())
        kept, dropped = self.filter_outliers(valid)

        if len(kept) < self.min_sources:
            return AggregationResult(
                price=None,
                metadata={
                    "error": "too_many_outliers",
                    "available": len(kept),
                    "dropped": dropped,
                },
            )

        final_median = _median(kept.values())

        if previous_price is not None and previous_price > 0 and self._drift_limit is not None:
            drift = _deviation_percent(final_median, previous_price)
            if drift > self._drift_limit:
                return AggregationResult(
                    price=None,
                    metadata={
                        "error": "drift_too_large",
                        "drift_percent": drift,
                        "previous_price": previous_price,
                        "candidate_price": final_median,
                    },
                )

        return AggregationResult(
            price=final_median,
            metadata={
                "sources": list(kept.keys()),
                "dropped": dropped,
                "count": len(kept),
                "initial_median": initial_median,
            },
        )
