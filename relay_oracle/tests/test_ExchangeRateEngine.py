"""Unit tests for ExchangeRateEngine."""

from decimal import Decimal

import pytest

from relay_oracle.src.Asset import compute_asset_id
from relay_oracle.src.errors import InvalidInput
from relay_oracle.src.ExchangeRateEngine import ExchangeRateEngine, backward, derive, forward
from relay_oracle.src.PriceRecord import DerivedPair, Direction, PriceRecord
from relay_oracle.src.PriceStore import PriceStore

OWNER = "0x" + "11" * 20
GATE = "0x" + "22" * 20

BTC = compute_asset_id("btc")
USDC = compute_asset_id("usdc")
ETH = compute_asset_id("eth")
XYZ = compute_asset_id("xyz")

BTC_RECORD = PriceRecord(scale_exponent=-8, updated_at=1700000100, value=4500000000000, sequence=1)
USDC_RECORD = PriceRecord(scale_exponent=-8, updated_at=1700000000, value=100000000, sequence=1)


@pytest.fixture
def engine() -> ExchangeRateEngine:
    store = PriceStore(owner=OWNER, validation_gate=GATE)
    store.put(GATE, BTC, BTC_RECORD)
    store.put(GATE, USDC, USDC_RECORD)
    return ExchangeRateEngine(store)


class TestForward:
    """Test the pure rate functions."""

    def test_usdc_in_btc(self) -> None:
        """USDC priced in BTC at 30 decimals, truncated."""
        pair = forward(USDC_RECORD, BTC_RECORD)
        assert pair.derived_value == 100000000 * 10**30 // 4500000000000
        assert pair.derived_value == 22222222222222222222222222
        assert pair.scale_exponent == -30

    def test_btc_in_usdc(self) -> None:
        """BTC priced in USDC."""
        pair = forward(BTC_RECORD, USDC_RECORD)
        assert pair.to_decimal() == Decimal(45000)

    def test_metadata(self) -> None:
        """updated_at is the older input, sequence_delta the absolute difference."""
        a = PriceRecord(scale_exponent=0, updated_at=50, value=1, sequence=9)
        b = PriceRecord(scale_exponent=0, updated_at=40, value=1, sequence=3)
        pair = forward(a, b)
        assert pair.updated_at == 40
        assert pair.sequence_delta == 6
        assert forward(b, a).sequence_delta == 6

    def test_zero_numerator(self) -> None:
        """A zero value on either side yields zero."""
        zero = PriceRecord(scale_exponent=-8, updated_at=10, value=0, sequence=0)
        assert forward(zero, BTC_RECORD).derived_value == 0
        assert forward(BTC_RECORD, zero).derived_value == 0

    def test_mixed_scales(self) -> None:
        """Different exponents are folded into the scale."""
        usdc_6 = PriceRecord(scale_exponent=-6, updated_at=0, value=1000000, sequence=0)
        eth_18 = PriceRecord(scale_exponent=-18, updated_at=0, value=3000 * 10**18, sequence=0)
        pair = forward(eth_18, usdc_6)
        assert pair.to_decimal() == Decimal(3000)

    def test_negative_combined_exponent(self) -> None:
        """When 30 + a.exp - b.exp < 0 the divisor is scaled instead."""
        a = PriceRecord(scale_exponent=-30, updated_at=0, value=5 * 10**30, sequence=0)
        b = PriceRecord(scale_exponent=30, updated_at=0, value=1, sequence=0)
        # 5 / 10**30 at 30 decimals is exactly 5 units.
        assert forward(a, b).derived_value == 5

    def test_truncates_toward_zero(self) -> None:
        """Division truncates rather than rounds."""
        a = PriceRecord(scale_exponent=-30, updated_at=0, value=2, sequence=0)
        b = PriceRecord(scale_exponent=0, updated_at=0, value=3, sequence=0)
        assert forward(a, b).derived_value == 0

    def test_backward_is_swapped_forward(self) -> None:
        """backward(a, b) == forward(b, a)."""
        assert backward(USDC_RECORD, BTC_RECORD) == forward(BTC_RECORD, USDC_RECORD)

    def test_derive_dispatch(self) -> None:
        """derive dispatches on direction."""
        assert derive(USDC_RECORD, BTC_RECORD, Direction.FORWARD) == forward(USDC_RECORD, BTC_RECORD)
        assert derive(USDC_RECORD, BTC_RECORD, Direction.BACKWARD) == forward(BTC_RECORD, USDC_RECORD)


class TestExchangeRateEngine:
    """Test store-backed queries."""

    def test_get_pair_forward(self, engine: ExchangeRateEngine) -> None:
        """Stored USDC priced in BTC."""
        pair = engine.get_pair(USDC, BTC, Direction.FORWARD)
        assert pair.derived_value == 100000000 * 10**30 // 4500000000000
        assert pair.updated_at == min(BTC_RECORD.updated_at, USDC_RECORD.updated_at)
        assert pair.sequence_delta == 0

    def test_get_pair_backward(self, engine: ExchangeRateEngine) -> None:
        """BACKWARD prices the second asset in the first."""
        pair = engine.get_pair(USDC, BTC, Direction.BACKWARD)
        assert pair.to_decimal() == Decimal(45000)

    def test_missing_asset_yields_zero(self, engine: ExchangeRateEngine) -> None:
        """An unset asset behaves as the empty record."""
        pair = engine.get_pair(XYZ, BTC, Direction.FORWARD)
        assert pair == DerivedPair(derived_value=0, updated_at=0, sequence_delta=1)

    def test_get_pairs(self, engine: ExchangeRateEngine) -> None:
        """Each pair is derived independently."""
        pairs = engine.get_pairs(
            [USDC, XYZ, BTC], [BTC, BTC, USDC], [Direction.FORWARD, Direction.FORWARD, Direction.FORWARD]
        )
        assert pairs[0] == engine.get_pair(USDC, BTC, Direction.FORWARD)
        assert pairs[1].derived_value == 0
        assert pairs[2].to_decimal() == Decimal(45000)

    def test_get_pairs_length_mismatch(self, engine: ExchangeRateEngine) -> None:
        """Mismatched arrays should raise InvalidInput."""
        with pytest.raises(InvalidInput, match="differ in length"):
            engine.get_pairs([USDC], [BTC, ETH], [Direction.FORWARD])

    def test_get_pairs_uniform(self, engine: ExchangeRateEngine) -> None:
        """One direction applies to all pairs."""
        pairs = engine.get_pairs_uniform([USDC, BTC], [BTC, USDC], Direction.BACKWARD)
        assert pairs == [
            engine.get_pair(USDC, BTC, Direction.BACKWARD),
            engine.get_pair(BTC, USDC, Direction.BACKWARD),
        ]

    def test_get_pairs_uniform_length_mismatch(self, engine: ExchangeRateEngine) -> None:
        """Mismatched arrays should raise InvalidInput."""
        with pytest.raises(InvalidInput):
            engine.get_pairs_uniform([USDC, BTC], [BTC], Direction.FORWARD)

    def test_empty_batch(self, engine: ExchangeRateEngine) -> None:
        """Empty queries return an empty list."""
        assert engine.get_pairs_uniform([], [], Direction.FORWARD) == []
