"""ValidationGate: the only write path into the PriceStore.

Two roles meet here. The owner binds the relayer identity and the store; the
relayer submits batches. A batch is applied all-or-nothing in two phases:

    1. Validate every element (lengths, ids, record types, optional
       sequence policy) without touching the store.
    2. Stage: remember each slot's prior record and log the batch to the
       write-ahead log. Apply the writes in order while holding the store's
       lock, then log ``commit``. If a write or the commit marker fails,
       every slot already overwritten is restored, ``abort`` is logged and
       the error re-raised.

Every ``compact_every`` committed batches the log is compacted to a
checkpoint of the store, so it stays bounded on a long-running oracle.

The gate performs no price-plausibility checks; that trust belongs to the
relayer pipeline.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

from .access import Ownable, normalize_identity
from .Asset import check_asset_id
from .errors import HardFailure, InvalidInput, PermissionDenied
from .PriceRecord import PriceRecord
from .PriceStore import PriceStore
from .WriteAheadLog import WriteAheadLog

logger = logging.getLogger(__name__)


class GateState(Enum):
    """Lifecycle of a gate."""

    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    ACTIVE = "active"


class ValidationGate(Ownable):
    """Access-control and atomicity boundary in front of a PriceStore.

    :ivar address: Identity this gate uses when writing to the store.
    :ivar owner: Identity allowed to rotate the relayer and store.
    :ivar relayer: Identity allowed to submit batches, or None.
    :ivar store: Bound store, or None.
    :ivar enforce_monotonic_sequence: Reject records whose sequence does not
        increase over the stored one.
    :ivar compact_every: Committed batches between log compactions.
    """

    DEFAULT_COMPACT_EVERY = 32

    def __init__(
        self,
        address: str,
        owner: str,
        relayer: str | None = None,
        store: PriceStore | None = None,
        wal: WriteAheadLog | None = None,
        enforce_monotonic_sequence: bool = False,
        compact_every: int = DEFAULT_COMPACT_EVERY,
    ) -> None:
        """Initialize the gate.

        :param address: Gate identity, as bound in the store.
        :param owner: Owner identity.
        :param relayer: Optional initial relayer identity.
        :param store: Optional initial store.
        :param wal: Write-ahead log; defaults to an in-memory log.
        :param enforce_monotonic_sequence: Enable strict per-asset sequence
            ordering (default: off).
        :param compact_every: Committed batches between log compactions.
        :raises ValueError: If compact_every is below 1.
        """
        if compact_every < 1:
            raise ValueError("compact_every must be at least 1")
        super().__init__(owner)
        self.address = normalize_identity(address)
        self.relayer: str | None = normalize_identity(relayer) if relayer else None
        self.store = store
        self.wal = wal if wal is not None else WriteAheadLog()
        self.enforce_monotonic_sequence = enforce_monotonic_sequence
        self.compact_every = compact_every
        self._commits_since_compact = 0

    @property
    def state(self) -> GateState:
        """Current lifecycle state."""
        if self.relayer is None or self.store is None:
            return GateState.UNINITIALIZED
        if self.store.validation_gate != self.address:
            return GateState.CONFIGURED
        return GateState.ACTIVE

    def rotate_relayer(self, caller: str, new_relayer: str) -> None:
        """Replace the relayer identity, effective immediately.

        :param caller: Must be the owner.
        :param new_relayer: New relayer identity.
        :raises PermissionDenied: If caller is not the owner.
        """
        self._require_owner(caller, "rotate the relayer")
        previous = self.relayer
        self.relayer = normalize_identity(new_relayer)
        logger.info(f"Relayer rotated {previous} -> {self.relayer}")

    def set_store(self, caller: str, store: PriceStore) -> None:
        """Bind a different store.

        :param caller: Must be the owner.
        :param store: Store to write into.
        :raises PermissionDenied: If caller is not the owner.
        """
        self._require_owner(caller, "set the store")
        self.store = store
        logger.info(f"Gate {self.address} bound to new store (state={self.state.value})")

    def _validate(
        self,
        store: PriceStore,
        asset_ids: Sequence[bytes],
        records: Sequence[PriceRecord],
    ) -> list[tuple[bytes, PriceRecord]]:
        if len(asset_ids) != len(records):
            raise InvalidInput(
                f"Batch length mismatch: {len(asset_ids)} ids, {len(records)} records"
            )
        if len(asset_ids) == 0:
            raise InvalidInput("Batch must not be empty")

        entries: list[tuple[bytes, PriceRecord]] = []
        for index, (asset_id, record) in enumerate(zip(asset_ids, records, strict=True)):
            asset_id = check_asset_id(asset_id)
            if not isinstance(record, PriceRecord):
                raise InvalidInput(f"Element {index} is not a PriceRecord: {record!r}")
            entries.append((asset_id, record))

        if self.enforce_monotonic_sequence:
            latest: dict[bytes, int] = {}
            for index, (asset_id, record) in enumerate(entries):
                if asset_id in latest:
                    previous = latest[asset_id]
                else:
                    stored = store.peek(asset_id)
                    previous = stored.sequence if stored is not None else -1
                if record.sequence <= previous:
                    raise InvalidInput(
                        f"Element {index} ({asset_id.hex()[:10]}): sequence "
                        f"{record.sequence} does not exceed {previous}"
                    )
                latest[asset_id] = record.sequence

        return entries

    def submit(
        self,
        caller: str,
        asset_ids: Sequence[bytes],
        records: Sequence[PriceRecord],
    ) -> int:
        """Atomically apply a batch of price updates.

        :param caller: Must be the relayer.
        :param asset_ids: Ordered asset ids.
        :param records: Records, parallel to ``asset_ids``.
        :returns: Number of records written.
        :raises PermissionDenied: If caller is not the relayer.
        :raises InvalidInput: If the batch is malformed.
        :raises HardFailure: If no store is bound, or the bound store does
            not accept writes from this gate.
        """
        if not self._is_caller(caller, self.relayer):
            logger.warning(f"Rejected submission from non-relayer {caller}")
            raise PermissionDenied(caller, "Only the relayer may submit prices")

        store = self.store
        if store is None:
            raise HardFailure("Gate misconfigured: no store bound")
        if self.state is not GateState.ACTIVE:
            raise HardFailure(
                f"Gate misconfigured: store accepts writes from "
                f"{store.validation_gate}, not {self.address}"
            )

        entries = self._validate(store, asset_ids, records)

        with store.transaction():
            prior = [store.peek(asset_id) for asset_id, _ in entries]
            batch_id = self.wal.begin(entries)
            applied = 0
            try:
                for asset_id, record in entries:
                    store.put(self.address, asset_id, record)
                    applied += 1
                self.wal.commit(batch_id)
            except Exception:
                # Undo in reverse so repeated ids end at their original record.
                for (asset_id, _), previous in reversed(
                    list(zip(entries[:applied], prior[:applied], strict=True))
                ):
                    store.restore(self.address, asset_id, previous)
                self._abort(batch_id)
                logger.error(
                    f"Batch {batch_id} rolled back after {applied}/{len(entries)} writes"
                )
                raise

            self._commits_since_compact += 1
            if self._commits_since_compact >= self.compact_every:
                self._compact(store)

        logger.debug(f"Batch {batch_id} committed ({len(entries)} records)")
        return len(entries)

    def _abort(self, batch_id: int) -> None:
        try:
            self.wal.abort(batch_id)
        except OSError as e:
            # Without a commit marker the batch is discarded on replay anyway.
            logger.error(f"Could not log abort of batch {batch_id}: {e}")

    def _compact(self, store: PriceStore) -> None:
        self._commits_since_compact = 0
        try:
            self.wal.compact(store.snapshot())
        except OSError as e:
            logger.error(f"WAL compaction failed, retrying after {self.compact_every} batches: {e}")

    def recover(self) -> int:
        """Rebuild the store from committed batches in the write-ahead log.

        :returns: Number of batches replayed.
        :raises HardFailure: If no store is bound.
        """
        store = self.store
        if store is None:
            raise HardFailure("Gate misconfigured: no store bound")

        replayed = 0
        with store.transaction():
            for _, entries in self.wal.committed_batches():
                for asset_id, record in entries:
                    store.put(self.address, asset_id, record)
                replayed += 1
        if replayed:
            logger.info(f"Recovered {replayed} committed batches ({len(store)} assets)")
        return replayed
