"""Unit tests for relayer configuration parsing."""

import pytest

from relay_oracle.src.Asset import Asset
from relay_oracle.src.config import (
    AssetConfig,
    RelayerConfig,
    parse_api_keys,
    parse_asset,
    parse_assets,
    parse_env_api_keys,
)
from relay_oracle.src.errors import InvalidInput


class TestParseAssets:
    """Test asset list parsing."""

    def test_plain_and_exponent(self) -> None:
        """Symbols with and without exponents."""
        configs = parse_assets("BTC, usdc:-6")
        assert [c.symbol for c in configs] == ["btc", "usdc"]
        assert configs[0].asset.scale_exponent == -8
        assert configs[1].asset.scale_exponent == -6

    def test_overrides(self) -> None:
        """Overrides follow the symbol and exponent."""
        config = parse_asset("eth:-8:twap=300:min_sources=3:max_deviation=1.5:drift_limit=10")
        assert config.asset.scale_exponent == -8
        assert config.twap_window == 300.0
        assert config.min_sources == 3
        assert config.max_deviation_percent == 1.5
        assert config.drift_limit_percent == 10.0

    def test_override_without_exponent(self) -> None:
        """Overrides may follow the bare symbol."""
        config = parse_asset("eth:twap=60")
        assert config.asset.scale_exponent == -8
        assert config.twap_window == 60.0

    def test_unknown_override(self) -> None:
        """Unknown keys are rejected."""
        with pytest.raises(InvalidInput, match="Unknown override 'speed'"):
            parse_asset("eth:speed=9")

    def test_bad_value(self) -> None:
        """Non-numeric override values are rejected."""
        with pytest.raises(InvalidInput, match="Invalid value for min_sources"):
            parse_asset("eth:min_sources=many")

    def test_override_before_exponent(self) -> None:
        """The exponent may not follow an override."""
        with pytest.raises(InvalidInput, match="must follow"):
            parse_asset("eth:twap=60:-8")

    def test_duplicate(self) -> None:
        """A symbol may only be listed once."""
        with pytest.raises(InvalidInput, match="listed twice"):
            parse_assets("btc,eth,BTC:-6")


class TestApiKeys:
    """Test API key parsing."""

    def test_parse_api_keys(self) -> None:
        """Comma-separated source=key pairs."""
        assert parse_api_keys("CoinGecko=demo:abc, kraken=k") == {
            "coingecko": "demo:abc",
            "kraken": "k",
        }
        assert parse_api_keys(None) == {}

    def test_env_api_keys(self) -> None:
        """API_KEY_<SOURCE> variables are collected."""
        environ = {"API_KEY_COINGECKO": "abc", "API_KEY_EMPTY": "", "HOME": "/root"}
        assert parse_env_api_keys(environ) == {"coingecko": "abc"}


class TestRelayerConfigValidate:
    """Test configuration consistency checks."""

    def make(self, **kwargs) -> RelayerConfig:
        kwargs.setdefault("assets", [AssetConfig(Asset("btc"))])
        kwargs.setdefault("sources", ["coinbase", "kraken"])
        return RelayerConfig(**kwargs)

    def test_defaults_valid(self) -> None:
        """The defaults pass validation."""
        config = self.make()
        config.validate()
        assert not config.uses_contract
        assert config.effective_lease_ttl == 180.0

    def test_requires_assets_and_sources(self) -> None:
        """Assets and sources are mandatory."""
        with pytest.raises(ValueError, match="asset"):
            self.make(assets=[]).validate()
        with pytest.raises(ValueError, match="source"):
            self.make(sources=[]).validate()

    def test_timing_order(self) -> None:
        """collection_window < cycle_deadline <= cycle_period."""
        with pytest.raises(ValueError, match="collection_window < cycle_deadline"):
            self.make(collection_window=50, cycle_deadline=50).validate()
        with pytest.raises(ValueError, match="collection_window < cycle_deadline"):
            self.make(cycle_deadline=70, cycle_period=60).validate()

    def test_lease_ttl(self) -> None:
        """The lease must outlive a cycle."""
        with pytest.raises(ValueError, match="lease_ttl"):
            self.make(lease_ttl=30).validate()

    def test_contract_settings_together(self) -> None:
        """RPC, gate address and key are set together."""
        with pytest.raises(ValueError, match="must be set together"):
            self.make(rpc_url="http://localhost:8545").validate()
        config = self.make(
            rpc_url="http://localhost:8545",
            gate_address="0x" + "22" * 20,
            relayer_private_key="0x" + "01" * 32,
        )
        config.validate()
        assert config.uses_contract
        assert "0101" not in repr(config)

    def test_asset_overrides_checked(self) -> None:
        """Per-asset overrides are validated."""
        with pytest.raises(ValueError, match="btc: min_sources"):
            self.make(assets=[AssetConfig(Asset("btc"), min_sources=0)]).validate()
