"""PriceStore: the per-asset price table.

The store is a thin primitive. Reads are open to everyone; the single write
entrypoint ``put`` only accepts calls from the configured validation gate and
performs no plausibility checks of its own.

.. code-block:: python

    >>> store = PriceStore(owner=OWNER)
    >>> store.set_validation_gate(OWNER, GATE)
    >>> store.put(GATE, asset_id, record)
    >>> store.get(asset_id)
    (PriceRecord(...), True)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from .access import Ownable, normalize_identity
from .errors import PermissionDenied
from .PriceRecord import PriceRecord

logger = logging.getLogger(__name__)


class PriceStore(Ownable):
    """Per-asset price table with a single restricted write.

    :ivar owner: Identity allowed to bind the validation gate.
    :ivar validation_gate: Identity allowed to call :meth:`put`, or None.
    """

    def __init__(self, owner: str, validation_gate: str | None = None) -> None:
        """Initialize an empty store.

        :param owner: Owner identity.
        :param validation_gate: Optional gate identity to bind immediately.
        """
        super().__init__(owner)
        self.validation_gate: str | None = (
            normalize_identity(validation_gate) if validation_gate else None
        )
        self._records: dict[bytes, PriceRecord] = {}
        self._lock = threading.RLock()

    def get(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        """Look up the latest record for an asset.

        :param asset_id: 32-byte asset id.
        :returns: ``(record, True)`` or ``(PriceRecord.empty(), False)``.
        """
        with self._lock:
            record = self._records.get(asset_id)
        if record is None:
            return PriceRecord.empty(), False
        return record, True

    def get_batch(
        self, asset_ids: Sequence[bytes]
    ) -> tuple[list[PriceRecord], list[bool]]:
        """Look up several assets at once.

        Order is preserved and duplicate ids are answered independently.

        :param asset_ids: Asset ids to look up.
        :returns: Parallel lists of records and existence flags.
        """
        records: list[PriceRecord] = []
        exists: list[bool] = []
        with self._lock:
            for asset_id in asset_ids:
                record, found = self.get(asset_id)
                records.append(record)
                exists.append(found)
        return records, exists

    def put(self, caller: str, asset_id: bytes, record: PriceRecord) -> None:
        """Overwrite the record for an asset.

        :param caller: Must be the bound validation gate.
        :param asset_id: 32-byte asset id.
        :param record: New record.
        :raises PermissionDenied: If caller is not the validation gate.
        """
        if not self._is_caller(caller, self.validation_gate):
            raise PermissionDenied(caller, "Only the validation gate may write prices")
        with self._lock:
            self._records[asset_id] = record

    def restore(self, caller: str, asset_id: bytes, record: PriceRecord | None) -> None:
        """Put back a prior record, or remove the slot if there was none.

        Used by the gate to undo a partially applied batch.

        :raises PermissionDenied: If caller is not the validation gate.
        """
        if not self._is_caller(caller, self.validation_gate):
            raise PermissionDenied(caller, "Only the validation gate may write prices")
        with self._lock:
            if record is None:
                self._records.pop(asset_id, None)
            else:
                self._records[asset_id] = record

    def peek(self, asset_id: bytes) -> PriceRecord | None:
        """Return the stored record or None, without the exists flag."""
        with self._lock:
            return self._records.get(asset_id)

    def set_validation_gate(self, caller: str, gate: str) -> None:
        """Bind the identity allowed to write.

        :param caller: Must be the owner.
        :param gate: Gate identity.
        :raises PermissionDenied: If caller is not the owner.
        """
        self._require_owner(caller, "set the validation gate")
        self.validation_gate = normalize_identity(gate)
        logger.info(f"Validation gate set to {self.validation_gate}")

    @contextmanager
    def transaction(self) -> Iterator[PriceStore]:
        """Hold the store lock so a batch is applied invisibly to readers."""
        with self._lock:
            yield self

    def snapshot(self) -> dict[bytes, PriceRecord]:
        """Return a copy of the whole table."""
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._records
