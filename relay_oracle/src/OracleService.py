"""OracleService: the public surface of the oracle.

Bundles a PriceStore, its ExchangeRateEngine and the ValidationGate behind
the read, write and admin calls consumers and the relayer use. Reads need no
authorization; ``submit_price_feed`` is relayer-only; the admin calls are
owner-only.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .ExchangeRateEngine import ExchangeRateEngine
from .PriceRecord import DerivedPair, Direction, PriceRecord
from .PriceStore import PriceStore
from .ValidationGate import ValidationGate
from .WriteAheadLog import WriteAheadLog

logger = logging.getLogger(__name__)


class OracleService:
    """Read, write and admin entrypoints over one store and gate.

    :ivar store: The price table.
    :ivar engine: Derived-rate engine over ``store``.
    :ivar gate: The write gate bound to ``store``.
    """

    def __init__(self, store: PriceStore, gate: ValidationGate) -> None:
        self.store = store
        self.gate = gate
        self.engine = ExchangeRateEngine(store)

    @classmethod
    def create(
        cls,
        owner: str,
        gate_address: str,
        relayer: str,
        wal_path: str | None = None,
        enforce_monotonic_sequence: bool = False,
        compact_every: int = ValidationGate.DEFAULT_COMPACT_EVERY,
    ) -> OracleService:
        """Build a wired store and gate, then replay and compact any existing log.

        :param owner: Owner of both store and gate.
        :param gate_address: Identity the gate writes with.
        :param relayer: Initial relayer identity.
        :param wal_path: Optional write-ahead log file.
        :param enforce_monotonic_sequence: Gate sequence policy.
        :param compact_every: Committed batches between log compactions.
        :returns: Ready-to-use service in the ACTIVE state.
        """
        store = PriceStore(owner=owner)
        gate = ValidationGate(
            address=gate_address,
            owner=owner,
            relayer=relayer,
            store=store,
            wal=WriteAheadLog(wal_path),
            enforce_monotonic_sequence=enforce_monotonic_sequence,
            compact_every=compact_every,
        )
        store.set_validation_gate(owner, gate.address)
        if gate.recover():
            gate.wal.compact(store.snapshot())
        logger.info(
            f"Oracle ready: gate={gate.address}, relayer={gate.relayer}, "
            f"assets={len(store)}, state={gate.state.value}"
        )
        return cls(store, gate)

    def get_asset_info(self, asset_id: bytes) -> tuple[PriceRecord, bool]:
        """Latest record for one asset with its existence flag."""
        return self.store.get(asset_id)

    def get_assets_info(
        self, asset_ids: Sequence[bytes]
    ) -> tuple[list[PriceRecord], list[bool]]:
        """Latest records for several assets, order preserved."""
        return self.store.get_batch(asset_ids)

    def get_pair(
        self, asset_id0: bytes, asset_id1: bytes, direction: Direction
    ) -> DerivedPair:
        """Derived rate between two assets."""
        return self.engine.get_pair(asset_id0, asset_id1, direction)

    def get_pairs(
        self,
        asset_ids0: Sequence[bytes],
        asset_ids1: Sequence[bytes],
        directions: Sequence[Direction],
    ) -> list[DerivedPair]:
        """Derived rates with a direction per pair."""
        return self.engine.get_pairs(asset_ids0, asset_ids1, directions)

    def get_pairs_uniform(
        self,
        asset_ids0: Sequence[bytes],
        asset_ids1: Sequence[bytes],
        direction: Direction,
    ) -> list[DerivedPair]:
        """Derived rates sharing one direction."""
        return self.engine.get_pairs_uniform(asset_ids0, asset_ids1, direction)

    def submit_price_feed(
        self,
        caller: str,
        asset_ids: Sequence[bytes],
        records: Sequence[PriceRecord],
    ) -> int:
        """Relayer-only atomic batch write. See :meth:`ValidationGate.submit`."""
        return self.gate.submit(caller, asset_ids, records)

    def set_validation_gate(self, caller: str, gate_address: str) -> None:
        """Owner-only: bind the identity allowed to write the store."""
        self.store.set_validation_gate(caller, gate_address)

    def rotate_relayer(self, caller: str, new_relayer: str) -> None:
        """Owner-only: replace the relayer identity."""
        self.gate.rotate_relayer(caller, new_relayer)
