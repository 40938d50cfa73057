"""Relayer configuration.

Configuration is loaded once at start-up (see ``relay_oracle.main``) into a
RelayerConfig holding one AssetConfig per maintained asset. Assets are given
as a comma-separated list; each entry is a symbol, optionally followed by a
scale exponent and ``key=value`` overrides of the global aggregation
settings:

.. code-block:: text

    btc:-8,eth:-8:twap=300,usdc:-6:min_sources=3:max_deviation=1
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .Asset import Asset
from .errors import InvalidInput

# Override keys accepted in an asset entry, mapped to AssetConfig fields.
ASSET_OVERRIDES = {
    "min_sources": "min_sources",
    "max_deviation": "max_deviation_percent",
    "drift_limit": "drift_limit_percent",
    "twap": "twap_window",
}


@dataclass
class AssetConfig:
    """Per-asset settings; None falls back to the relayer-wide value.

    :ivar asset: The asset (symbol, exponent, quote).
    :ivar min_sources: Minimum surviving sources.
    :ivar max_deviation_percent: Outlier threshold.
    :ivar drift_limit_percent: Max change vs last accepted price.
    :ivar twap_window: TWAP window in seconds, enables smoothing.
    """

    asset: Asset
    min_sources: int | None = None
    max_deviation_percent: float | None = None
    drift_limit_percent: float | None = None
    twap_window: float | None = None

    @property
    def symbol(self) -> str:
        return self.asset.symbol


def parse_asset(entry: str, quote: str = "usd") -> AssetConfig:
    """Parse one asset entry such as ``eth:-8:twap=300``.

    :param entry: Asset entry.
    :param quote: Quote currency.
    :returns: Parsed AssetConfig.
    :raises InvalidInput: On unknown override keys or bad values.
    """
    parts = [p.strip() for p in entry.strip().split(":")]
    head = [p for p in parts if "=" not in p]
    overrides = [p for p in parts if "=" in p]
    if parts[: len(head)] != head:
        raise InvalidInput(f"Overrides must follow symbol and exponent in '{entry}'")

    config = AssetConfig(asset=Asset.from_string(":".join(head), quote=quote))
    for item in overrides:
        key, raw = (s.strip() for s in item.split("=", 1))
        attr = ASSET_OVERRIDES.get(key.lower())
        if attr is None:
            raise InvalidInput(
                f"Unknown override '{key}' in '{entry}'. "
                f"Available: {', '.join(ASSET_OVERRIDES)}"
            )
        try:
            value = int(raw) if attr == "min_sources" else float(raw)
        except ValueError as e:
            raise InvalidInput(f"Invalid value for {key} in '{entry}'") from e
        setattr(config, attr, value)
    return config


def parse_assets(spec: str, quote: str = "usd") -> list[AssetConfig]:
    """Parse a comma-separated asset list.

    :param spec: String like "btc:-8,eth:-8".
    :param quote: Quote currency for every asset.
    :raises InvalidInput: On a malformed entry or a duplicate symbol.
    """
    configs = [parse_asset(e, quote) for e in spec.split(",") if e.strip()]
    seen: set[str] = set()
    for config in configs:
        if config.symbol in seen:
            raise InvalidInput(f"Asset {config.symbol} listed twice")
        seen.add(config.symbol)
    return configs


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse ``source1=key1,source2=key2`` into a dict."""
    if not api_key_str:
        return {}
    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys(environ: dict[str, str]) -> dict[str, str]:
    """Collect ``API_KEY_<SOURCE>`` variables."""
    prefix = "API_KEY_"
    return {
        key[len(prefix):].lower(): value
        for key, value in environ.items()
        if key.startswith(prefix) and value
    }


@dataclass
class RelayerConfig:
    """Relayer-wide settings.

    Submission goes to a deployed contract when ``rpc_url``, ``gate_address``
    and ``relayer_private_key`` are all set, otherwise to an in-process
    oracle.
    """

    assets: list[AssetConfig]
    sources: list[str]
    api_keys: dict[str, str] = field(default_factory=dict)
    min_sources: int = 2
    max_deviation_percent: float = 5.0
    drift_limit_percent: float | None = None
    twap_window: float | None = None
    cycle_period: float = 60.0
    collection_window: float = 10.0
    cycle_deadline: float = 50.0
    fetch_timeout: float = 10.0
    max_batch_size: int = 20
    max_retries: int = 3
    base_backoff: float = 1.0
    backoff_factor: float = 2.0
    max_backoff: float = 10.0
    max_total_backoff: float = 30.0
    stale_after: float = 900.0
    max_failure_rate: float = 0.5
    wal_path: str | None = None
    lease_path: str | None = None
    lease_ttl: float | None = None
    instance_id: str = "primary"
    alert_webhook_url: str | None = None
    metrics_port: int | None = None
    rpc_url: str | None = None
    gate_address: str | None = None
    relayer_private_key: str | None = field(default=None, repr=False)
    enforce_monotonic_sequence: bool = False

    @property
    def uses_contract(self) -> bool:
        return bool(self.rpc_url and self.gate_address and self.relayer_private_key)

    @property
    def effective_lease_ttl(self) -> float:
        """Lease TTL; defaults to three cycle periods."""
        return self.lease_ttl if self.lease_ttl is not None else 3 * self.cycle_period

    def validate(self) -> None:
        """Check settings for consistency.

        :raises ValueError: Describing the first problem found.
        """
        if not self.assets:
            raise ValueError("At least one asset must be specified")
        if not self.sources:
            raise ValueError("At least one source must be specified")
        if self.min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if self.max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive")
        if self.drift_limit_percent is not None and self.drift_limit_percent <= 0:
            raise ValueError("drift_limit_percent must be positive if specified")
        if self.cycle_period < 1:
            raise ValueError("cycle_period must be at least 1 second")
        if self.collection_window <= 0:
            raise ValueError("collection_window must be positive")
        if not self.collection_window < self.cycle_deadline <= self.cycle_period:
            raise ValueError(
                "Expected collection_window < cycle_deadline <= cycle_period, got "
                f"{self.collection_window} / {self.cycle_deadline} / {self.cycle_period}"
            )
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.twap_window is not None and self.twap_window <= 0:
            raise ValueError("twap_window must be positive if specified")
        if self.effective_lease_ttl <= self.cycle_period:
            raise ValueError("lease_ttl must be longer than cycle_period")

        contract_settings = [self.rpc_url, self.gate_address, self.relayer_private_key]
        if any(contract_settings) and not all(contract_settings):
            raise ValueError(
                "rpc_url, gate_address and relayer_private_key must be set together"
            )

        for config in self.assets:
            if config.min_sources is not None and config.min_sources < 1:
                raise ValueError(f"{config.symbol}: min_sources must be at least 1")
            if config.max_deviation_percent is not None and config.max_deviation_percent <= 0:
                raise ValueError(f"{config.symbol}: max_deviation must be positive")
            if config.drift_limit_percent is not None and config.drift_limit_percent <= 0:
                raise ValueError(f"{config.symbol}: drift_limit must be positive")
            if config.twap_window is not None and config.twap_window <= 0:
                raise ValueError(f"{config.symbol}: twap window must be positive")
