"""Unit tests for PriceAggregator."""

from decimal import Decimal

import pytest

from relay_oracle.src.PriceAggregator import AggregationResult, PriceAggregator


def prices(**values: float | str | None) -> dict[str, Decimal | None]:
    return {k: (Decimal(str(v)) if v is not None else None) for k, v in values.items()}


class TestPriceAggregatorInit:
    """Test PriceAggregator initialization."""

    def test_default_values(self) -> None:
        """Default values should be reasonable."""
        agg = PriceAggregator()
        assert agg.min_sources == 2
        assert agg.max_deviation_percent == 5.0
        assert agg.drift_limit_percent is None

    def test_custom_values(self) -> None:
        """Custom values should be stored."""
        agg = PriceAggregator(
            min_sources=3,
            max_deviation_percent=10.0,
            drift_limit_percent=5.0,
        )
        assert agg.min_sources == 3
        assert agg.max_deviation_percent == 10.0
        assert agg.drift_limit_percent == 5.0

    def test_invalid_min_sources(self) -> None:
        """min_sources < 1 should raise ValueError."""
        with pytest.raises(ValueError, match="min_sources must be at least 1"):
            PriceAggregator(min_sources=0)

    def test_invalid_max_deviation(self) -> None:
        """max_deviation_percent <= 0 should raise ValueError."""
        with pytest.raises(ValueError, match="max_deviation_percent must be positive"):
            PriceAggregator(max_deviation_percent=0)

        with pytest.raises(ValueError, match="max_deviation_percent must be positive"):
            PriceAggregator(max_deviation_percent=-1)

    def test_invalid_drift_limit(self) -> None:
        """drift_limit_percent <= 0 should raise ValueError."""
        with pytest.raises(ValueError, match="drift_limit_percent must be positive"):
            PriceAggregator(drift_limit_percent=0)

        with pytest.raises(ValueError, match="drift_limit_percent must be positive"):
            PriceAggregator(drift_limit_percent=-5)


class TestPriceAggregatorBasicAggregation:
    """Test basic aggregation scenarios."""

    def test_simple_median_odd(self) -> None:
        """Median of odd number of values."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a=100, b=101, c=102))

        assert result.success
        assert result.price == Decimal("101")
        assert result.metadata["count"] == 3

    def test_simple_median_even(self) -> None:
        """Median of even number of values."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a=100, b=101))

        assert result.success
        assert result.price == Decimal("100.5")
        assert result.metadata["count"] == 2

    def test_decimal_exactness(self) -> None:
        """Decimal prices avoid binary float error."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a="0.1", b="0.2"))
        assert result.price == Decimal("0.15")

    def test_single_source_with_min_1(self) -> None:
        """Single source should work with min_sources=1."""
        agg = PriceAggregator(min_sources=1)
        result = agg.aggregate(prices(a=100))

        assert result.success
        assert result.price == Decimal("100")

    def test_sources_list_in_metadata(self) -> None:
        """Metadata should contain list of sources used."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(coinbase=100, kraken=101))

        assert result.success
        assert set(result.metadata["sources"]) == {"coinbase", "kraken"}


class TestPriceAggregatorInsufficientSources:
    """Test insufficient source handling."""

    def test_empty_prices(self) -> None:
        """Empty prices dict should fail."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate({})

        assert not result.success
        assert result.error == "insufficient_sources"
        assert result.metadata["available"] == 0

    def test_all_none_prices(self) -> None:
        """All None prices should fail."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a=None, b=None, c=None))

        assert not result.success
        assert result.error == "insufficient_sources"
        assert result.metadata["available"] == 0

    def test_all_zero_prices(self) -> None:
        """All zero prices should fail."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a=0, b=0))

        assert not result.success
        assert result.error == "insufficient_sources"

    def test_negative_prices_filtered(self) -> None:
        """Negative prices should be filtered out."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(a=-100, b=100, c=101))

        assert result.success
        assert result.price == Decimal("100.5")
        assert result.metadata["count"] == 2

    def test_mixed_valid_invalid(self) -> None:
        """Mix of valid and invalid should work if enough valid."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(valid1=100, valid2=101, none=None, zero=0, negative=-50))

        assert result.success
        assert result.price == Decimal("100.5")

    def test_insufficient_after_filtering_invalid(self) -> None:
        """Should fail if not enough valid sources after filtering."""
        agg = PriceAggregator(min_sources=2)
        result = agg.aggregate(prices(valid=100, none=None, zero=0))

        assert not result.success
        assert result.error == "insufficient_sources"
        assert result.metadata["available"] == 1


class TestPriceAggregatorOutlierDetection:
    """Test outlier detection functionality."""

    def test_outlier_excluded(self) -> None:
        """Outlier beyond deviation threshold should be excluded."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)

        # 200 vs median of the others (100.5) deviates ~99%
        result = agg.aggregate(prices(a=100, b=101, rogue=200))

        assert result.success
        assert result.metadata["dropped"] == {"rogue": Decimal("200")}
        assert "rogue" not in result.metadata["sources"]
        assert result.price == Decimal("100.5")

    def test_multiple_outliers(self) -> None:
        """Multiple outliers should all be excluded."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)

        result = agg.aggregate(prices(a=100, b=101, c=102, rogue1=50, rogue2=200))

        assert result.success
        assert set(result.metadata["dropped"].keys()) == {"rogue1", "rogue2"}
        assert result.price == Decimal("101")

    def test_too_many_outliers_fails(self) -> None:
        """Should fail if too many outliers leave insufficient sources."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=1.0)

        # Each price is judged against the other; they disagree by far more than 1%
        result = agg.aggregate(prices(a=100, b=150))

        assert not result.success
        assert result.error == "too_many_outliers"
        assert result.metadata["available"] == 1

    def test_borderline_deviation(self) -> None:
        """Price exactly at deviation threshold should be included."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)

        # 105 deviates exactly 5% from the others' median of 100
        result = agg.aggregate(prices(a=100, b=100, c=105))

        assert result.success
        assert result.metadata["count"] == 3
        assert len(result.metadata["dropped"]) == 0

    def test_initial_median_in_metadata(self) -> None:
        """Initial median should be in metadata."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)
        result = agg.aggregate(prices(a=100, b=102, rogue=200))

        assert result.success
        # Initial median includes rogue: median([100, 102, 200]) = 102
        assert result.metadata["initial_median"] == Decimal("102")

    def test_five_eth_observations_one_outlier(self) -> None:
        """Five ETH quotes with one outlier keep the other four."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)
        result = agg.aggregate(
            prices(coinbase=3000, kraken=3001, bitstamp=2999, coingecko=3002, rogue=3500)
        )

        assert result.success
        assert result.metadata["count"] == 4
        assert result.metadata["dropped"] == {"rogue": Decimal("3500")}
        assert result.price == Decimal("3000.5")

    def test_single_survivor_withheld(self) -> None:
        """If only one quote survives below the minimum, no price is produced."""
        agg = PriceAggregator(min_sources=2, max_deviation_percent=5.0)
        result = agg.aggregate(prices(a=3000, b=3300, c=2700))

        assert not result.success
        assert result.price is None
        assert result.error == "too_many_outliers"
        assert result.metadata["available"] == 1

    def test_filter_outliers_direct(self) -> None:
        """filter_outliers splits survivors and outliers."""
        agg = PriceAggregator(max_deviation_percent=5.0)
        kept, dropped = agg.filter_outliers(
            {"a": Decimal(100), "b": Decimal(101), "c": Decimal(99), "x": Decimal(1)}
        )
        assert set(kept) == {"a", "b", "c"}
        assert dropped == {"x": Decimal(1)}


class TestPriceAggregatorDriftLimiting:
    """Test drift limiting functionality."""

    def test_drift_within_limit(self) -> None:
        """Price within drift limit should succeed."""
        agg = PriceAggregator(min_sources=2, drift_limit_percent=10.0)
        result = agg.aggregate(prices(a=105, b=106), previous_price=Decimal("100"))

        assert result.success
        # 5.5% drift is within 10% limit
        assert result.price == Decimal("105.5")

    def test_drift_exceeds_limit(self) -> None:
        """Price exceeding drift limit should fail."""
        agg = PriceAggregator(min_sources=2, drift_limit_percent=10.0)
        result = agg.aggregate(prices(a=120, b=121), previous_price=Decimal("100"))

        assert not result.success
        assert result.error == "drift_too_large"
        assert result.metadata["drift_percent"] == Decimal("20.5")
        assert result.metadata["previous_price"] == Decimal("100")
        assert result.metadata["candidate_price"] == Decimal("120.5")

    def test_no_drift_check_without_previous(self) -> None:
        """No drift check if previous_price is None."""
        agg = PriceAggregator(min_sources=2, drift_limit_percent=10.0)
        result = agg.aggregate(prices(a=200, b=201), previous_price=None)

        assert result.success
        assert result.price == Decimal("200.5")

    def test_no_drift_check_if_disabled(self) -> None:
        """No drift check if drift_limit_percent is None."""
        agg = PriceAggregator(min_sources=2, drift_limit_percent=None)
        result = agg.aggregate(prices(a=200, b=201), previous_price=Decimal("100"))

        assert result.success
        assert result.price == Decimal("200.5")

    def test_drift_check_downward(self) -> None:
        """Drift check should work for price decreases."""
        agg = PriceAggregator(min_sources=2, drift_limit_percent=10.0)
        result = agg.aggregate(prices(a=80, b=81), previous_price=Decimal("100"))

        assert not result.success
        assert result.error == "drift_too_large"


class TestAggregationResult:
    """Test AggregationResult properties."""

    def test_success_property(self) -> None:
        """success should be True when price is not None."""
        result = AggregationResult(price=Decimal(100), metadata={"sources": ["a"]})
        assert result.success is True

        result = AggregationResult(price=None, metadata={"error": "test"})
        assert result.success is False

    def test_error_property(self) -> None:
        """error should return error string or None."""
        success_result = AggregationResult(price=Decimal(100), metadata={"sources": ["a"]})
        assert success_result.error is None

        error_result = AggregationResult(
            price=None, metadata={"error": "insufficient_sources"}
        )
        assert error_result.error == "insufficient_sources"
