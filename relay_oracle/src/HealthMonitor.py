"""HealthMonitor: pipeline health, alerting and active/standby failover.

Tracks when each asset was last submitted successfully and reads per-source
failure rates from the SourceManager. Crossing a threshold raises one alert;
the alert is not repeated every cycle, and a recovery notice is sent once the
condition clears.

Failover is lease based: every cycle the instance heartbeats the shared
lease. The instance holding it is active and submits; the others stand by
and take over only after the active one stops heartbeating for longer than
the lease TTL. Before each batch the active instance confirms it still
holds the lease under the same fencing token.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from .alerts import AlertChannel, Severity
from .Lease import Lease
from .metrics import MetricsSink, NullMetrics
from .SourceManager import SourceManager

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Observes submissions and sources, alerts, and arbitrates failover.

    :ivar instance_id: This relayer instance's lease holder id.
    :ivar stale_after: Seconds without a successful submission before an
        asset is reported stale.
    :ivar max_failure_rate: Source failure rate that triggers an alert.
    :ivar min_outcomes: Outcomes needed before a failure rate is judged.
    :ivar is_active: Whether this instance currently holds the lease.
    :ivar fencing_token: Token of the lease currently held, or None.
    """

    def __init__(
        self,
        alerts: AlertChannel,
        source_manager: SourceManager,
        lease: Lease | None = None,
        instance_id: str = "primary",
        metrics: MetricsSink | None = None,
        stale_after: float = 900.0,
        max_failure_rate: float = 0.5,
        min_outcomes: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the monitor.

        :param alerts: Alert channel.
        :param source_manager: Source outcome tracker.
        :param lease: Shared lease; None means this instance is always active.
        :param instance_id: Lease holder id for this instance.
        :param metrics: Metrics sink.
        :param stale_after: Staleness threshold in seconds.
        :param max_failure_rate: Failure rate alert threshold in [0, 1].
        :param min_outcomes: Minimum outcomes before rating a source.
        :param clock: Wall clock.
        """
        if not 0 < max_failure_rate <= 1:
            raise ValueError("max_failure_rate must be in (0, 1]")
        if stale_after <= 0:
            raise ValueError("stale_after must be positive")
        self.alerts = alerts
        self.source_manager = source_manager
        self.lease = lease
        self.instance_id = instance_id
        self.metrics = metrics or NullMetrics()
        self.stale_after = stale_after
        self.max_failure_rate = max_failure_rate
        self.min_outcomes = min_outcomes
        self._clock = clock

        self.started_at = clock()
        self.last_submission: dict[str, float] = {}
        self.is_active = lease is None
        self.fencing_token: int | None = None
        self._raised: set[str] = set()

    def record_submission(self, symbols: Iterable[str]) -> None:
        """Note a successful submission for ``symbols``."""
        now = self._clock()
        for symbol in symbols:
            self.last_submission[symbol] = now
            self.metrics.gauge("last_submission_timestamp", now, {"asset": symbol})

    def asset_age(self, symbol: str) -> float:
        """Seconds since ``symbol`` was last submitted (or since start)."""
        return self._clock() - self.last_submission.get(symbol, self.started_at)

    def _raise_once(self, key: str, message: str, severity: Severity) -> None:
        if key in self._raised:
            return
        self._raised.add(key)
        self.alerts.alert(message, severity)

    def _clear(self, key: str, message: str) -> None:
        if key in self._raised:
            self._raised.discard(key)
            self.alerts.alert(message, Severity.INFO)

    def check(self, symbols: Iterable[str]) -> list[str]:
        """Evaluate staleness and source failure rates.

        :param symbols: Assets that should be kept fresh.
        :returns: Keys of conditions currently alerting.
        """
        for symbol in symbols:
            key = f"stale:{symbol}"
            age = self.asset_age(symbol)
            self.metrics.gauge("asset_age_seconds", age, {"asset": symbol})
            if age > self.stale_after:
                self._raise_once(
                    key,
                    f"{symbol}: no successful submission for {age:.0f}s "
                    f"(threshold {self.stale_after:.0f}s)",
                    Severity.WARNING,
                )
            else:
                self._clear(key, f"{symbol}: submissions resumed")

        for source, status in self.source_manager.get_all_status().items():
            key = f"source:{source}"
            rate = self.source_manager.failure_rate(source)
            self.metrics.gauge("source_failure_rate", rate, {"source": source})
            if len(status.recent) >= self.min_outcomes and rate >= self.max_failure_rate:
                self._raise_once(
                    key,
                    f"[{source}] failure rate {rate:.0%} over last "
                    f"{len(status.recent)} attempts",
                    Severity.WARNING,
                )
            elif rate < self.max_failure_rate:
                self._clear(key, f"[{source}] recovered (failure rate {rate:.0%})")

        return sorted(self._raised)

    def heartbeat(self) -> bool:
        """Renew or contest the lease and update :attr:`is_active`.

        :returns: True if this instance may submit this cycle.
        """
        if self.lease is None:
            return True

        token = self.lease.try_acquire(self.instance_id)
        was_active = self.is_active
        self.is_active = token is not None

        if self.is_active and not was_active:
            severity = Severity.WARNING if (token or 0) > 1 else Severity.INFO
            self.alerts.alert(
                f"Instance {self.instance_id} is now active (lease token {token})", severity
            )
        elif was_active and not self.is_active:
            self.alerts.alert(
                f"Instance {self.instance_id} lost the lease, standing by", Severity.CRITICAL
            )

        self.fencing_token = token
        self.metrics.gauge("active", 1.0 if self.is_active else 0.0)
        return self.is_active

    def confirm_lease(self) -> bool:
        """Check, without renewing, that this instance still holds the lease.

        The pipeline calls this before every batch, so a primary that stalled
        past the TTL stops submitting as soon as a standby has taken over.

        :returns: True if this instance may keep submitting.
        """
        if self.lease is None:
            return True
        if self.is_active and self.lease.holds(self.instance_id, self.fencing_token):
            return True

        if self.is_active:
            self.is_active = False
            self.metrics.gauge("active", 0.0)
            self.alerts.alert(
                f"Instance {self.instance_id} lost the lease mid-cycle "
                f"(token {self.fencing_token}), submissions stopped",
                Severity.CRITICAL,
            )
        self.fencing_token = None
        return False

    def stand_down(self) -> None:
        """Release the lease, e.g. on clean shutdown."""
        if self.lease is not None and self.is_active:
            self.lease.release(self.instance_id)
            self.is_active = False
            self.fencing_token = None
