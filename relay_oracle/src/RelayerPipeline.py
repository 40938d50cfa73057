"""RelayerPipeline: one periodic collect → aggregate → convert → submit cycle.

Architecture:
    - A periodic tick (``cycle_period``) drives one cycle at a time
    - Each cycle first heartbeats the failover lease; standby instances skip
    - DataCollector fetches every source concurrently within a window
    - Per asset, PriceAggregator filters outliers and takes the median;
      assets without enough agreeing sources are withheld this cycle
    - Optional per-asset TWAP smoothing
    - PrecisionConverter turns prices into fixed-point PriceRecords
    - SubmissionManager submits in batches with bounded retries; the lease is
      confirmed before each batch and a lost lease withholds the rest
    - The whole cycle is bounded by ``cycle_deadline``

No exception escapes a cycle: failures are logged, alerted and the next tick
starts a fresh cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from .alerts import AlertChannel, Severity
from .config import AssetConfig, RelayerConfig
from .DataCollector import DataCollector
from .errors import InvalidInput
from .fetchers import BaseFetcher, get_fetcher
from .GateClient import GateClient
from .HealthMonitor import HealthMonitor
from .Lease import Lease
from .metrics import MetricsSink, NullMetrics
from .PrecisionConverter import PrecisionConverter
from .PriceAggregator import PriceAggregator
from .SourceManager import SourceManager
from .SubmissionManager import BatchOutcome, BatchStatus, PendingUpdate, SubmissionManager
from .TwapCalculator import TwapCalculator

logger = logging.getLogger(__name__)


class CycleState(Enum):
    """Stages of one relayer cycle."""

    COLLECTING = "collecting"
    AGGREGATING = "aggregating"
    CONVERTING = "converting"
    SUBMITTING = "submitting"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = (CycleState.SUCCESS, CycleState.FAILED, CycleState.SKIPPED)


@dataclass
class CycleReport:
    """What happened in one cycle.

    :ivar started_at: Wall-clock start of the cycle.
    :ivar states: Every state the cycle passed through, in order.
    :ivar prices: Price sent for each asset that reached conversion.
    :ivar withheld: Reason each withheld asset was not submitted.
    :ivar submitted: Assets whose batch was accepted.
    :ivar outcomes: One outcome per submitted batch.
    :ivar error: Why the cycle failed or was skipped.
    """

    started_at: float
    states: list[CycleState] = field(default_factory=list)
    prices: dict[str, Decimal] = field(default_factory=dict)
    withheld: dict[str, str] = field(default_factory=dict)
    submitted: list[str] = field(default_factory=list)
    outcomes: list[BatchOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def state(self) -> CycleState | None:
        return self.states[-1] if self.states else None


class RelayerPipeline:
    """Drives relayer cycles.

    :ivar assets: Maintained assets with their settings.
    :ivar collector: Concurrent source collector.
    :ivar submission: Batch submitter.
    :ivar health: Health monitor and failover arbiter.
    :ivar cycle_period: Seconds between cycle starts.
    :ivar cycle_deadline: Hard bound on one cycle in seconds.
    :ivar last_prices: Aggregated price per asset from its last accepted
        batch; the drift check compares against it.
    """

    def __init__(
        self,
        assets: list[AssetConfig],
        collector: DataCollector,
        submission: SubmissionManager,
        health: HealthMonitor,
        alerts: AlertChannel,
        metrics: MetricsSink | None = None,
        min_sources: int = 2,
        max_deviation_percent: float = 5.0,
        drift_limit_percent: float | None = None,
        twap_window: float | None = None,
        cycle_period: float = 60.0,
        cycle_deadline: float = 50.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the pipeline.

        Per-asset overrides in ``assets`` take precedence over the
        relayer-wide aggregation settings given here.

        :raises ValueError: If no assets are given or the deadline is not positive.
        """
        if not assets:
            raise ValueError("At least one asset must be configured")
        if cycle_deadline <= 0:
            raise ValueError("cycle_deadline must be positive")

        self.assets = assets
        self.collector = collector
        self.submission = submission
        self.health = health
        self.alerts = alerts
        self.metrics = metrics or NullMetrics()
        self.cycle_period = cycle_period
        self.cycle_deadline = cycle_deadline
        self.converter = PrecisionConverter()
        self._clock = clock

        self.aggregators: dict[str, PriceAggregator] = {}
        self.twaps: dict[str, TwapCalculator] = {}
        for config in assets:
            self.aggregators[config.symbol] = PriceAggregator(
                min_sources=config.min_sources or min_sources,
                max_deviation_percent=config.max_deviation_percent or max_deviation_percent,
                drift_limit_percent=config.drift_limit_percent or drift_limit_percent,
            )
            window = config.twap_window or twap_window
            if window:
                self.twaps[config.symbol] = TwapCalculator(window)

        self.last_prices: dict[str, Decimal] = {}
        self.state: CycleState | None = None
        self._report: CycleReport | None = None
        self._sequences_loaded = False

        self.submission.on_attempt = lambda attempt: self._transition(CycleState.SUBMITTING)
        self.submission.on_retry = lambda attempt, delay: self._transition(CycleState.RETRYING)

    @classmethod
    def from_config(
        cls,
        config: RelayerConfig,
        client: GateClient,
        alerts: AlertChannel,
        metrics: MetricsSink | None = None,
        lease: Lease | None = None,
        fetchers: dict[str, BaseFetcher] | None = None,
    ) -> RelayerPipeline:
        """Wire a pipeline from configuration.

        :param config: Validated relayer configuration.
        :param client: Where to submit.
        :param alerts: Alert channel.
        :param metrics: Metrics sink.
        :param lease: Failover lease, or None for a single instance.
        :param fetchers: Fetchers by source name; built from the registry if omitted.
        """
        if fetchers is None:
            fetchers = {
                name: get_fetcher(
                    name, api_key=config.api_keys.get(name), timeout=config.fetch_timeout
                )
                for name in config.sources
            }
        source_manager = SourceManager(list(fetchers))
        collector = DataCollector(fetchers, source_manager, config.collection_window)
        submission = SubmissionManager(
            client,
            alerts,
            metrics,
            max_batch_size=config.max_batch_size,
            max_retries=config.max_retries,
            base_backoff=config.base_backoff,
            backoff_factor=config.backoff_factor,
            max_backoff=config.max_backoff,
            max_total_backoff=config.max_total_backoff,
        )
        health = HealthMonitor(
            alerts,
            source_manager,
            lease=lease,
            instance_id=config.instance_id,
            metrics=metrics,
            stale_after=config.stale_after,
            max_failure_rate=config.max_failure_rate,
        )
        return cls(
            config.assets,
            collector,
            submission,
            health,
            alerts,
            metrics,
            min_sources=config.min_sources,
            max_deviation_percent=config.max_deviation_percent,
            drift_limit_percent=config.drift_limit_percent,
            twap_window=config.twap_window,
            cycle_period=config.cycle_period,
            cycle_deadline=config.cycle_deadline,
        )

    def _transition(self, state: CycleState) -> None:
        if self.state is state:
            return
        logger.debug(f"Cycle state: {self.state.value if self.state else '-'} -> {state.value}")
        self.state = state
        if self._report is not None:
            self._report.states.append(state)

    def _withhold(self, report: CycleReport, symbol: str, reason: str) -> None:
        report.withheld[symbol] = reason
        self.metrics.counter("withheld", labels={"asset": symbol, "reason": reason})

    async def run_cycle(self) -> CycleReport:
        """Run one cycle under the cycle deadline.

        :returns: Report of the cycle; never raises.
        """
        report = CycleReport(started_at=self._clock())
        self._report = report
        self.state = None
        started = time.monotonic()
        try:
            await asyncio.wait_for(self._cycle(report), timeout=self.cycle_deadline)
        except asyncio.TimeoutError:
            report.error = f"cycle exceeded deadline of {self.cycle_deadline}s"
            self._sequences_loaded = False
            self._transition(CycleState.FAILED)
            logger.error(f"Cycle failed: {report.error}")
            self.alerts.alert(f"Relayer {report.error}", Severity.CRITICAL)
        except Exception as e:
            report.error = f"{type(e).__name__}: {e}"
            self._sequences_loaded = False
            self._transition(CycleState.FAILED)
            logger.exception(f"Cycle failed: {report.error}")
            self.alerts.alert(f"Relayer cycle failed: {report.error}", Severity.CRITICAL)

        self.metrics.gauge("cycle_duration_seconds", time.monotonic() - started)
        self.metrics.counter("cycles", labels={"state": report.state.value})
        if self.health.is_active:
            self.health.check([c.symbol for c in self.assets])
        self._report = None
        return report

    async def _cycle(self, report: CycleReport) -> None:
        if not self.health.heartbeat():
            report.error = "standby"
            self._transition(CycleState.SKIPPED)
            logger.info(f"Instance {self.health.instance_id} is standby, skipping cycle")
            return

        if not self._sequences_loaded:
            await self.submission.load_sequences([c.asset for c in self.assets])
            self._sequences_loaded = True

        self._transition(CycleState.COLLECTING)
        collection = await self.collector.collect([c.asset for c in self.assets])
        self.metrics.counter("observations", collection.count())
        now = self._clock()

        self._transition(CycleState.AGGREGATING)
        ready: list[tuple[AssetConfig, Decimal]] = []
        aggregated: dict[str, Decimal] = {}
        for config in self.assets:
            symbol = config.symbol
            prices = {o.source: o.value for o in collection.observations.get(symbol, [])}
            result = self.aggregators[symbol].aggregate(
                prices, previous_price=self.last_prices.get(symbol)
            )
            if not result.success:
                logger.warning(f"{symbol}: withheld ({result.error}) {dict(result.metadata)}")
                self._withhold(report, symbol, result.error)
                continue

            price = result.price
            aggregated[symbol] = price
            dropped = result.metadata.get("dropped") or {}
            if dropped:
                logger.info(f"{symbol}: dropped outliers {dropped}")

            twap = self.twaps.get(symbol)
            if twap is not None:
                price = twap.update(symbol, price, now)
            logger.info(
                f"{symbol}: {price} from {result.metadata['count']} sources "
                f"{result.metadata['sources']}"
            )
            report.prices[symbol] = price
            self.metrics.gauge("price", float(price), {"asset": symbol})
            ready.append((config, price))

        self._transition(CycleState.CONVERTING)
        updates: list[PendingUpdate] = []
        for config, price in ready:
            try:
                record = self.converter.to_record(
                    config.asset, price, int(now), self.submission.next_sequence(config.asset)
                )
            except InvalidInput as e:
                logger.warning(f"{config.symbol}: withheld, cannot convert {price}: {e}")
                self._withhold(report, config.symbol, "conversion")
                continue
            updates.append(PendingUpdate(config.asset, record))

        if not updates:
            report.error = "nothing ready to submit"
            self._transition(CycleState.SKIPPED)
            logger.warning("No asset ready this cycle, nothing submitted")
            return

        not_sent = 0
        for batch in self.submission.make_batches(updates):
            if not_sent or not self.health.confirm_lease():
                not_sent += 1
                for update in batch:
                    self._withhold(report, update.asset.symbol, "lease_lost")
                continue
            outcome = await self.submission.submit_batch(batch)
            report.outcomes.append(outcome)
            if outcome.success:
                report.submitted.extend(outcome.symbols)
                self.health.record_submission(outcome.symbols)
                for symbol in outcome.symbols:
                    self.last_prices[symbol] = aggregated[symbol]
                continue
            if outcome.status is BatchStatus.REJECTED:
                self._sequences_loaded = False
            for symbol in outcome.symbols:
                self._withhold(report, symbol, outcome.status.value)

        errors = [o.error or o.status.value for o in report.outcomes if not o.success]
        if not_sent:
            self._sequences_loaded = False
            errors.append(f"lease lost, {not_sent} batch(es) not sent")
            logger.error(
                f"Instance {self.health.instance_id} lost the lease, "
                f"{not_sent} batch(es) not sent"
            )
        if errors:
            report.error = "; ".join(errors)
            self._transition(CycleState.FAILED)
        else:
            self._transition(CycleState.SUCCESS)
        logger.info(
            f"Cycle done: submitted {report.submitted or 'nothing'}, "
            f"withheld {report.withheld or 'nothing'}"
        )

    async def run(self, max_cycles: int | None = None) -> None:
        """Run cycles every ``cycle_period`` seconds.

        :param max_cycles: Stop after this many cycles; None runs forever.
        """
        logger.info(
            f"Starting relayer for {', '.join(c.symbol for c in self.assets)} "
            f"every {self.cycle_period}s"
        )
        cycles = 0
        try:
            while True:
                started = time.monotonic()
                await self.run_cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                elapsed = time.monotonic() - started
                await asyncio.sleep(max(0.0, self.cycle_period - elapsed))
        finally:
            self.health.stand_down()
            await BaseFetcher.close_shared_client()
