"""SourceManager: per-source failure tracking with exponential backoff.

When a source fails to produce a price (returns None, raises, or misses the
collection window) it enters a backoff period that doubles with each
consecutive failure, up to a cap. A success resets the streak. Sources in
backoff are skipped by the collector so a dead API is not hammered every
cycle.

The manager also keeps a rolling window of recent outcomes per source, which
the health monitor reads as the source's failure rate.

.. code-block:: python

    >>> manager = SourceManager(["coinbase", "kraken"])
    >>> manager.record_failure("kraken")
    5.0
    >>> manager.get_active_sources()
    ['coinbase']
    >>> manager.failure_rate("kraken")
    1.0
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class SourceStatus:
    """Tracks the status of a single source.

    :ivar consecutive_failures: Failures since the last success.
    :ivar backoff_until: Clock time when the backoff period ends.
    :ivar total_failures: Failures since tracking began.
    :ivar total_successes: Successes since tracking began.
    :ivar last_success_at: Clock time of the last success, or None.
    :ivar recent: Most recent outcomes, True for success.
    """

    consecutive_failures: int = 0
    backoff_until: float = 0.0
    total_failures: int = 0
    total_successes: int = 0
    last_success_at: float | None = None
    recent: deque[bool] = field(default_factory=deque)


class SourceManager:
    """Manages source health tracking with exponential backoff.

    Backoff after the n-th consecutive failure is
    ``min(base_backoff_seconds * 2**(n-1), max_backoff_seconds)``.

    :ivar sources: Tracked source names, in configuration order.
    :ivar base_backoff_seconds: Backoff after the first failure.
    :ivar max_backoff_seconds: Backoff cap.
    :ivar window: Number of recent outcomes used for the failure rate.
    """

    DEFAULT_BASE_BACKOFF_SECONDS = 5.0
    DEFAULT_MAX_BACKOFF_SECONDS = 300.0
    DEFAULT_WINDOW = 20

    def __init__(
        self,
        sources: list[str],
        base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
        window: int = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the source manager.

        :param sources: Source names to track.
        :param base_backoff_seconds: Initial backoff duration.
        :param max_backoff_seconds: Maximum backoff duration.
        :param window: Outcomes kept per source for :meth:`failure_rate`.
        :param clock: Time source (monotonic seconds).
        """
        if window < 1:
            raise ValueError("window must be at least 1")
        self.sources = list(sources)
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.window = window
        self._clock = clock
        self._status: dict[str, SourceStatus] = {}
        for source in self.sources:
            self._ensure(source)

    def _ensure(self, source: str) -> SourceStatus:
        status = self._status.get(source)
        if status is None:
            status = SourceStatus(recent=deque(maxlen=self.window))
            self._status[source] = status
            if source not in self.sources:
                self.sources.append(source)
        return status

    def record_failure(self, source: str) -> float:
        """Record a failure and start (or extend) the source's backoff.

        :param source: Source name that failed.
        :returns: The backoff duration in seconds.
        """
        status = self._ensure(source)
        status.consecutive_failures += 1
        status.total_failures += 1
        status.recent.append(False)

        backoff_seconds = min(
            self.base_backoff_seconds * (2 ** (status.consecutive_failures - 1)),
            self.max_backoff_seconds,
        )
        status.backoff_until = self._clock() + backoff_seconds
        return float(backoff_seconds)

    def record_success(self, source: str) -> None:
        """Record a success, clearing any backoff.

        :param source: Source name that succeeded.
        """
        status = self._ensure(source)
        status.consecutive_failures = 0
        status.backoff_until = 0.0
        status.total_successes += 1
        status.last_success_at = self._clock()
        status.recent.append(True)

    def get_active_sources(self) -> list[str]:
        """Sources not currently in backoff, in configuration order."""
        now = self._clock()
        return [s for s in self.sources if now >= self._status[s].backoff_until]

    def get_backoff_remaining(self, source: str) -> float:
        """Seconds left in the source's backoff, 0 if none."""
        status = self._status.get(source)
        if status is None:
            return 0.0
        return max(0.0, status.backoff_until - self._clock())

    def failure_rate(self, source: str) -> float:
        """Share of failures among the source's recent outcomes.

        :returns: Value in [0, 1]; 0.0 for a source with no outcomes yet.
        """
        status = self._status.get(source)
        if status is None or not status.recent:
            return 0.0
        return status.recent.count(False) / len(status.recent)

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Status of one source, or None if not tracked."""
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Status of every tracked source."""
        return dict(self._status)
