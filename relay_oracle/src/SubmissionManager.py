"""SubmissionManager: batching, retry and escalation of price submissions.

Ready updates are split into batches of at most ``max_batch_size`` and sent
through a GateClient one batch at a time, in order. For each batch:

    - TransientSubmissionFailure is retried with exponential backoff,
      bounded both by ``max_retries`` and by ``max_total_backoff`` seconds
      of cumulative sleep.
    - PermissionDenied and InvalidInput are terminal; the batch payload is
      logged so the next cycle can submit corrected data.
    - Exhausted retries and HardFailure raise a critical alert. The batch is
      skipped and the remaining batches still go out.

Sequence numbers are per asset. They start from the record already stored
and only advance when a batch containing the asset is accepted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .alerts import AlertChannel, Severity
from .Asset import Asset
from .errors import HardFailure, InvalidInput, PermissionDenied, TransientSubmissionFailure
from .GateClient import GateClient
from .metrics import MetricsSink, NullMetrics
from .PriceRecord import PriceRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingUpdate:
    """A converted price waiting to be submitted.

    :ivar asset: Asset being updated.
    :ivar record: Record to store.
    """

    asset: Asset
    record: PriceRecord


class BatchStatus(Enum):
    """How a batch ended."""

    SUCCESS = "success"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class BatchOutcome:
    """Result of submitting one batch.

    :ivar symbols: Assets in the batch, in order.
    :ivar status: SUCCESS, REJECTED (terminal error) or FAILED (hard failure).
    :ivar attempts: Submission attempts made.
    :ivar error: Last error message, if any.
    """

    symbols: list[str]
    status: BatchStatus
    attempts: int
    error: str | None = None
    waited: float = field(default=0.0)

    @property
    def success(self) -> bool:
        return self.status is BatchStatus.SUCCESS


class SubmissionManager:
    """Submits converted prices through a gate client.

    :ivar client: Submission endpoint.
    :ivar max_batch_size: Max records per batch.
    :ivar max_retries: Retries after the first attempt.
    :ivar base_backoff: Delay before the first retry, in seconds.
    :ivar backoff_factor: Multiplier applied per retry.
    :ivar max_backoff: Cap on a single delay.
    :ivar max_total_backoff: Cap on cumulative delay per batch.
    """

    def __init__(
        self,
        client: GateClient,
        alerts: AlertChannel,
        metrics: MetricsSink | None = None,
        max_batch_size: int = 20,
        max_retries: int = 3,
        base_backoff: float = 1.0,
        backoff_factor: float = 2.0,
        max_backoff: float = 30.0,
        max_total_backoff: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_attempt: Callable[[int], None] | None = None,
        on_retry: Callable[[int, float], None] | None = None,
    ) -> None:
        """Initialize the manager.

        :param client: Gate client to submit through.
        :param alerts: Alert channel for hard failures.
        :param metrics: Metrics sink.
        :param max_batch_size: Max records per batch (cost control).
        :param max_retries: Retries per batch on transient failures.
        :param base_backoff: First retry delay in seconds.
        :param backoff_factor: Growth factor per retry.
        :param max_backoff: Max single delay in seconds.
        :param max_total_backoff: Max cumulative delay per batch.
        :param sleep: Awaitable sleep, injectable for tests.
        :param on_attempt: Called with the attempt number before each attempt.
        :param on_retry: Called with (attempt, delay) before each retry sleep.
        :raises ValueError: If parameters are invalid.
        """
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if base_backoff < 0 or max_backoff < 0 or max_total_backoff < 0:
            raise ValueError("backoff durations must not be negative")
        if backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1")

        self.client = client
        self.alerts = alerts
        self.metrics = metrics or NullMetrics()
        self.max_batch_size = max_batch_size
        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.backoff_factor = backoff_factor
        self.max_backoff = max_backoff
        self.max_total_backoff = max_total_backoff
        self._sleep = sleep
        self.on_attempt = on_attempt
        self.on_retry = on_retry
        self._sequences: dict[bytes, int] = {}

    async def load_sequences(self, assets: Sequence[Asset]) -> None:
        """Seed sequence numbers from the records currently stored.

        :param assets: Assets this relayer maintains.
        """
        for asset in assets:
            record, exists = await self.client.get_asset_info(asset.asset_id)
            self._sequences[asset.asset_id] = record.sequence if exists else 0
            logger.info(
                f"{asset}: stored sequence {record.sequence}"
                if exists
                else f"{asset}: no stored price yet"
            )

    def next_sequence(self, asset: Asset) -> int:
        """Sequence number for the next record of ``asset``."""
        return self._sequences.get(asset.asset_id, 0) + 1

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_backoff * self.backoff_factor ** (attempt - 1), self.max_backoff)

    def make_batches(self, updates: Sequence[PendingUpdate]) -> list[list[PendingUpdate]]:
        """Split updates into batches of at most ``max_batch_size``."""
        return [
            list(updates[i:i + self.max_batch_size])
            for i in range(0, len(updates), self.max_batch_size)
        ]

    def _describe(self, batch: Sequence[PendingUpdate]) -> str:
        return ", ".join(
            f"{u.asset}={u.record.value}e{u.record.scale_exponent}#{u.record.sequence}"
            for u in batch
        )

    async def submit_batch(self, batch: Sequence[PendingUpdate]) -> BatchOutcome:
        """Submit one batch with bounded retries.

        :param batch: Non-empty list of updates.
        :returns: Outcome of the batch.
        """
        symbols = [u.asset.symbol for u in batch]
        asset_ids = [u.asset.asset_id for u in batch]
        records = [u.record for u in batch]
        attempt = 0
        waited = 0.0

        while True:
            attempt += 1
            if self.on_attempt is not None:
                self.on_attempt(attempt)
            try:
                await self.client.submit(asset_ids, records)
            except (PermissionDenied, InvalidInput) as e:
                logger.error(f"Batch rejected ({type(e).__name__}): {e}; payload [{self._describe(batch)}]")
                self.metrics.counter("batches", labels={"status": BatchStatus.REJECTED.value})
                self.alerts.alert(
                    f"Submission rejected for {', '.join(symbols)}: {e}", Severity.CRITICAL
                )
                return BatchOutcome(symbols, BatchStatus.REJECTED, attempt, str(e), waited)
            except HardFailure as e:
                return self._hard_failure(symbols, attempt, str(e), waited)
            except TransientSubmissionFailure as e:
                self.metrics.counter("submission_errors")
                if attempt > self.max_retries:
                    return self._hard_failure(
                        symbols, attempt, f"retries exhausted: {e}", waited
                    )
                delay = self.backoff_delay(attempt)
                if waited + delay > self.max_total_backoff:
                    return self._hard_failure(
                        symbols, attempt, f"backoff budget exhausted: {e}", waited
                    )
                logger.warning(
                    f"Submission attempt {attempt} failed: {e}; retrying in {delay:.1f}s"
                )
                if self.on_retry is not None:
                    self.on_retry(attempt, delay)
                await self._sleep(delay)
                waited += delay
                continue

            for update in batch:
                self._sequences[update.asset.asset_id] = max(
                    self._sequences.get(update.asset.asset_id, 0), update.record.sequence
                )
            self.metrics.counter("batches", labels={"status": BatchStatus.SUCCESS.value})
            self.metrics.counter("records_submitted", len(batch))
            logger.info(f"Submitted batch of {len(batch)} (attempt {attempt}): [{self._describe(batch)}]")
            return BatchOutcome(symbols, BatchStatus.SUCCESS, attempt, None, waited)

    def _hard_failure(
        self, symbols: list[str], attempts: int, error: str, waited: float
    ) -> BatchOutcome:
        logger.error(f"Batch for {', '.join(symbols)} failed after {attempts} attempts: {error}")
        self.metrics.counter("batches", labels={"status": BatchStatus.FAILED.value})
        self.alerts.alert(
            f"Submission failed for {', '.join(symbols)} after {attempts} attempts: {error}",
            Severity.CRITICAL,
        )
        return BatchOutcome(symbols, BatchStatus.FAILED, attempts, error, waited)
