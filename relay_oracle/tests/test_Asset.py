"""Unit tests for Asset and asset ids."""

import pytest
from web3 import Web3

from relay_oracle.src.Asset import Asset, check_asset_id, compute_asset_id
from relay_oracle.src.errors import InvalidInput


class TestAssetId:
    """Test asset id derivation."""

    def test_keccak_of_lowercase_symbol(self) -> None:
        """Ids are keccak256 of the lower-cased symbol."""
        assert compute_asset_id("BTC") == bytes(Web3.keccak(text="btc"))

    def test_case_and_whitespace_insensitive(self) -> None:
        """Symbol spelling variants map to one id."""
        assert compute_asset_id(" Eth ") == compute_asset_id("eth")

    def test_distinct_symbols(self) -> None:
        """Different symbols yield different ids."""
        assert compute_asset_id("btc") != compute_asset_id("eth")

    def test_id_length(self) -> None:
        """Ids are 32 bytes."""
        assert len(compute_asset_id("usdc")) == 32

    def test_check_asset_id(self) -> None:
        """Only 32-byte values pass."""
        assert check_asset_id(bytearray(32)) == bytes(32)
        with pytest.raises(InvalidInput):
            check_asset_id(b"\x00" * 31)
        with pytest.raises(InvalidInput):
            check_asset_id("btc")


class TestAsset:
    """Test Asset construction and parsing."""

    def test_defaults(self) -> None:
        """Default exponent is -8, quote usd."""
        asset = Asset("BTC")
        assert asset.symbol == "btc"
        assert asset.scale_exponent == -8
        assert asset.quote == "usd"
        assert asset.asset_id == compute_asset_id("btc")

    def test_equality_by_id(self) -> None:
        """Assets compare by id."""
        assert Asset("btc") == Asset("BTC", scale_exponent=-6)
        assert len({Asset("btc"), Asset("btc")}) == 1

    def test_empty_symbol(self) -> None:
        """Empty symbols should be rejected."""
        with pytest.raises(InvalidInput, match="must not be empty"):
            Asset("  ")

    def test_exponent_range(self) -> None:
        """Exponents outside [-30, 30] should be rejected."""
        with pytest.raises(InvalidInput, match="outside"):
            Asset("btc", scale_exponent=-31)

    def test_from_string_symbol_only(self) -> None:
        """A bare symbol uses the default exponent."""
        asset = Asset.from_string("eth")
        assert asset.symbol == "eth"
        assert asset.scale_exponent == -8

    def test_from_string_with_exponent(self) -> None:
        """symbol:exponent sets the exponent."""
        asset = Asset.from_string("usdc:-6", quote="eur")
        assert asset.scale_exponent == -6
        assert asset.quote == "eur"

    def test_from_string_invalid(self) -> None:
        """Malformed strings should be rejected."""
        with pytest.raises(InvalidInput, match="Invalid asset format"):
            Asset.from_string("btc:-8:x")
        with pytest.raises(InvalidInput, match="Invalid scale exponent"):
            Asset.from_string("btc:abc")
