"""Unit tests for PriceStore."""

import pytest
from web3 import Web3

from relay_oracle.src.Asset import compute_asset_id
from relay_oracle.src.errors import InvalidInput, PermissionDenied
from relay_oracle.src.PriceRecord import PriceRecord
from relay_oracle.src.PriceStore import PriceStore

OWNER = "0x" + "11" * 20
GATE = "0x" + "ab" * 20
STRANGER = "0x" + "33" * 20

BTC = compute_asset_id("btc")
ETH = compute_asset_id("eth")


def make_record(value: int, sequence: int = 1) -> PriceRecord:
    return PriceRecord(scale_exponent=-8, updated_at=1700000000, value=value, sequence=sequence)


@pytest.fixture
def store() -> PriceStore:
    store = PriceStore(owner=OWNER)
    store.set_validation_gate(OWNER, GATE)
    return store


class TestPriceStoreReads:
    """Test read operations."""

    def test_unknown_asset(self, store: PriceStore) -> None:
        """Unset assets report exists=False with the empty record."""
        record, exists = store.get(BTC)
        assert exists is False
        assert record == PriceRecord.empty()

    def test_get_after_put(self, store: PriceStore) -> None:
        """A written record is returned with exists=True."""
        store.put(GATE, BTC, make_record(100))
        assert store.get(BTC) == (make_record(100), True)

    def test_get_batch_preserves_order(self, store: PriceStore) -> None:
        """Batch reads keep request order and zero-fill missing slots."""
        store.put(GATE, ETH, make_record(7))
        records, exists = store.get_batch([BTC, ETH, BTC])
        assert records == [PriceRecord.empty(), make_record(7), PriceRecord.empty()]
        assert exists == [False, True, False]

    def test_get_batch_empty(self, store: PriceStore) -> None:
        """An empty batch read returns empty lists."""
        assert store.get_batch([]) == ([], [])

    def test_contains_and_len(self, store: PriceStore) -> None:
        """Membership reflects written slots."""
        store.put(GATE, BTC, make_record(1))
        assert BTC in store
        assert ETH not in store
        assert len(store) == 1


class TestPriceStoreWrites:
    """Test write access control."""

    def test_put_overwrites(self, store: PriceStore) -> None:
        """put replaces the previous record."""
        store.put(GATE, BTC, make_record(1))
        store.put(GATE, BTC, make_record(2, sequence=2))
        assert store.get(BTC)[0].value == 2

    def test_put_from_stranger(self, store: PriceStore) -> None:
        """Only the gate may write."""
        with pytest.raises(PermissionDenied, match="validation gate") as excinfo:
            store.put(STRANGER, BTC, make_record(1))
        assert excinfo.value.caller == STRANGER
        assert BTC not in store

    def test_put_from_owner_denied(self, store: PriceStore) -> None:
        """The owner is not the writer."""
        with pytest.raises(PermissionDenied):
            store.put(OWNER, BTC, make_record(1))

    def test_put_without_gate(self) -> None:
        """A store without a gate rejects every write."""
        store = PriceStore(owner=OWNER)
        with pytest.raises(PermissionDenied):
            store.put(GATE, BTC, make_record(1))

    def test_gate_identity_case_insensitive(self, store: PriceStore) -> None:
        """Identities are compared in checksum form."""
        store.put(GATE.upper().replace("0X", "0x"), BTC, make_record(1))
        assert BTC in store

    def test_restore_removes_slot(self, store: PriceStore) -> None:
        """restore(None) removes a slot."""
        store.put(GATE, BTC, make_record(1))
        store.restore(GATE, BTC, None)
        assert BTC not in store

    def test_restore_requires_gate(self, store: PriceStore) -> None:
        """restore is gate-only."""
        with pytest.raises(PermissionDenied):
            store.restore(STRANGER, BTC, None)


class TestPriceStoreAdmin:
    """Test owner operations."""

    def test_set_gate_requires_owner(self, store: PriceStore) -> None:
        """Only the owner may bind the gate."""
        with pytest.raises(PermissionDenied, match="Only the owner"):
            store.set_validation_gate(STRANGER, STRANGER)
        assert store.validation_gate == Web3.to_checksum_address(GATE)

    def test_rebinding_gate(self, store: PriceStore) -> None:
        """A rebound gate replaces the previous writer."""
        store.set_validation_gate(OWNER, STRANGER)
        with pytest.raises(PermissionDenied):
            store.put(GATE, BTC, make_record(1))
        store.put(STRANGER, BTC, make_record(1))

    def test_invalid_gate_identity(self, store: PriceStore) -> None:
        """Malformed identities are rejected."""
        with pytest.raises(InvalidInput):
            store.set_validation_gate(OWNER, "not-an-address")

    def test_transfer_ownership(self, store: PriceStore) -> None:
        """The new owner takes over admin rights."""
        store.transfer_ownership(OWNER, STRANGER)
        with pytest.raises(PermissionDenied):
            store.set_validation_gate(OWNER, GATE)
        store.set_validation_gate(STRANGER, GATE)

    def test_snapshot_is_copy(self, store: PriceStore) -> None:
        """Snapshots do not alias the table."""
        store.put(GATE, BTC, make_record(1))
        snapshot = store.snapshot()
        store.put(GATE, ETH, make_record(2))
        assert list(snapshot) == [BTC]
