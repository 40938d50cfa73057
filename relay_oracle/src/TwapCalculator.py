"""TwapCalculator: time-weighted smoothing of accepted prices.

Each accepted price is treated as valid from the moment it was observed until
the next one. The TWAP over a window of ``W`` seconds ending at ``now`` is

    sum(price_i * seconds_i_was_active_within_window) / active_seconds

The sample that was active when the window opened is kept so the start of
the window is always covered.

.. code-block:: python

    >>> twap = TwapCalculator(window_seconds=300)
    >>> twap.update("eth", Decimal("3000"), now=1000)
    Decimal('3000')
    >>> twap.update("eth", Decimal("3100"), now=1100)
    Decimal('3000')
    >>> twap.value("eth", now=1200)
    Decimal('3050')
"""

from __future__ import annotations

import logging
from collections import deque
from decimal import Decimal

logger = logging.getLogger(__name__)


class TwapCalculator:
    """Rolling per-asset time-weighted average.

    :ivar window_seconds: Length of the averaging window.
    """

    def __init__(self, window_seconds: float) -> None:
        """Initialize the calculator.

        :param window_seconds: Averaging window in seconds.
        :raises ValueError: If the window is not positive.
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self._samples: dict[str, deque[tuple[float, Decimal]]] = {}

    def _prune(self, samples: deque[tuple[float, Decimal]], now: float) -> None:
        cutoff = now - self.window_seconds
        # Drop a sample only once its successor also started before the cutoff.
        while len(samples) >= 2 and samples[1][0] <= cutoff:
            samples.popleft()

    def update(self, symbol: str, price: Decimal, now: float) -> Decimal:
        """Record a new accepted price and return the smoothed value.

        :param symbol: Asset symbol.
        :param price: Newly accepted price.
        :param now: Time the price was accepted.
        :returns: TWAP over the window ending at ``now``.
        """
        samples = self._samples.setdefault(symbol, deque())
        if samples and now < samples[-1][0]:
            logger.warning(f"{symbol}: out-of-order TWAP sample at {now}, ignoring")
        else:
            samples.append((now, price))
        twap = self.value(symbol, now)
        assert twap is not None
        return twap

    def value(self, symbol: str, now: float) -> Decimal | None:
        """TWAP over the window ending at ``now``.

        :param symbol: Asset symbol.
        :param now: End of the window.
        :returns: Smoothed price, or None if no samples exist.
        """
        samples = self._samples.get(symbol)
        if not samples:
            return None
        self._prune(samples, now)

        cutoff = now - self.window_seconds
        weighted = Decimal(0)
        total = Decimal(0)
        points = list(samples)
        for index, (started, price) in enumerate(points):
            ends = points[index + 1][0] if index + 1 < len(points) else now
            begins = max(started, cutoff)
            if ends <= begins:
                continue
            duration = Decimal(str(ends - begins))
            weighted += price * duration
            total += duration

        if total == 0:
            # Every sample was taken at ``now``.
            return points[-1][1]
        return weighted / total

    def reset(self, symbol: str) -> None:
        """Forget an asset's history."""
        self._samples.pop(symbol, None)
