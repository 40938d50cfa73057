#!/usr/bin/env python3
"""Relay Oracle.

Fetches asset prices from multiple off-chain sources, aggregates them with
outlier filtering, converts them to fixed-point records and submits them in
batches to a price store through its validation gate.

With RPC_URL, GATE_ADDRESS and RELAYER_PRIVATE_KEY set, batches go to the
deployed contract. Otherwise an in-process oracle is used, persisted to
WAL_PATH if given.
"""

import argparse
import asyncio
import logging
import os
import sys

from eth_account import Account

from .src.alerts import AlertChannel, LoggingAlertChannel, WebhookAlertChannel
from .src.config import RelayerConfig, parse_api_keys, parse_assets, parse_env_api_keys
from .src.ContractGateClient import ContractGateClient, load_abi
from .src.fetchers import get_available_fetchers
from .src.GateClient import GateClient, LocalGateClient
from .src.Lease import FileLease
from .src.metrics import MetricsSink, NullMetrics, PrometheusMetrics
from .src.OracleService import OracleService
from .src.RelayerPipeline import RelayerPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _optional_float(value: str | None) -> float | None:
    return float(value) if value else None


def build_parser(environ: dict[str, str]) -> argparse.ArgumentParser:
    """Build the CLI parser; defaults come from ``environ``."""
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Relay Oracle: multi-source fixed-point price relayer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Two assets from all free sources, in-process oracle with a log file
  python -m relay_oracle.main --assets btc:-8,eth:-8 --wal-path ./oracle.wal

  # Per-asset overrides: TWAP for eth, stricter filter for usdc
  python -m relay_oracle.main --assets btc,eth:-8:twap=300,usdc:-6:max_deviation=1

  # Submit to a deployed contract
  RPC_URL=http://localhost:8545 GATE_ADDRESS=0x... RELAYER_PRIVATE_KEY=0x... \\
      python -m relay_oracle.main --assets btc:-8

Environment variables (CLI args take precedence):
  ASSETS, QUOTE, SOURCES, MIN_SOURCES, MAX_DEVIATION_PERCENT,
  DRIFT_LIMIT_PERCENT, TWAP_WINDOW, CYCLE_PERIOD, COLLECTION_WINDOW,
  CYCLE_DEADLINE, FETCH_TIMEOUT, MAX_BATCH_SIZE, MAX_RETRIES, STALE_AFTER,
  WAL_PATH, LEASE_PATH, LEASE_TTL, INSTANCE_ID, ALERT_WEBHOOK_URL,
  METRICS_PORT, RPC_URL, GATE_ADDRESS, GATE_ABI_PATH, RELAYER_PRIVATE_KEY,
  OWNER_ADDRESS, API_KEY_COINGECKO, etc.
""",
    )

    parser.add_argument(
        "--assets",
        type=str,
        help="Comma-separated assets as symbol[:exponent][:key=value...] (e.g. btc:-8,eth:-8)",
        default=environ.get("ASSETS") or "btc:-8,eth:-8",
    )
    parser.add_argument(
        "--quote",
        type=str,
        help="Quote currency to price assets in (default: usd)",
        default=environ.get("QUOTE") or "usd",
    )
    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=environ.get("SOURCES") or "coinbase,kraken,bitstamp,coingecko",
    )
    parser.add_argument(
        "--min-sources",
        dest="min_sources",
        type=int,
        help="Minimum agreeing sources per asset (default: 2)",
        default=int(environ.get("MIN_SOURCES") or "2"),
    )
    parser.add_argument(
        "--max-deviation",
        dest="max_deviation",
        type=float,
        help="Max deviation percent from the other sources' median (default: 5.0)",
        default=float(environ.get("MAX_DEVIATION_PERCENT") or "5.0"),
    )
    parser.add_argument(
        "--drift-limit",
        dest="drift_limit",
        type=float,
        help="Max change vs previous accepted price percent (default: 0, disabled)",
        default=float(environ.get("DRIFT_LIMIT_PERCENT") or "0"),
    )
    parser.add_argument(
        "--twap-window",
        dest="twap_window",
        type=float,
        help="TWAP window in seconds for every asset (default: disabled)",
        default=_optional_float(environ.get("TWAP_WINDOW")),
    )
    parser.add_argument(
        "--cycle-period",
        dest="cycle_period",
        type=float,
        help="Seconds between cycles (default: 60)",
        default=float(environ.get("CYCLE_PERIOD") or "60"),
    )
    parser.add_argument(
        "--collection-window",
        dest="collection_window",
        type=float,
        help="Seconds to wait for all sources each cycle (default: 10)",
        default=float(environ.get("COLLECTION_WINDOW") or "10"),
    )
    parser.add_argument(
        "--cycle-deadline",
        dest="cycle_deadline",
        type=float,
        help="Hard bound on one cycle in seconds (default: 50)",
        default=float(environ.get("CYCLE_DEADLINE") or "50"),
    )
    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(environ.get("FETCH_TIMEOUT") or "10.0"),
    )
    parser.add_argument(
        "--max-batch-size",
        dest="max_batch_size",
        type=int,
        help="Max records per submission (default: 20)",
        default=int(environ.get("MAX_BATCH_SIZE") or "20"),
    )
    parser.add_argument(
        "--max-retries",
        dest="max_retries",
        type=int,
        help="Retries per batch on transient failures (default: 3)",
        default=int(environ.get("MAX_RETRIES") or "3"),
    )
    parser.add_argument(
        "--stale-after",
        dest="stale_after",
        type=float,
        help="Alert when an asset was not submitted for this many seconds (default: 900)",
        default=float(environ.get("STALE_AFTER") or "900"),
    )
    parser.add_argument(
        "--wal-path",
        dest="wal_path",
        type=str,
        help="Write-ahead log for the in-process oracle (default: in memory)",
        default=environ.get("WAL_PATH"),
    )
    parser.add_argument(
        "--lease-path",
        dest="lease_path",
        type=str,
        help="Shared lease file for active/standby failover (default: single instance)",
        default=environ.get("LEASE_PATH"),
    )
    parser.add_argument(
        "--lease-ttl",
        dest="lease_ttl",
        type=float,
        help="Seconds without heartbeat before a standby takes over (default: 3 cycles)",
        default=_optional_float(environ.get("LEASE_TTL")),
    )
    parser.add_argument(
        "--instance-id",
        dest="instance_id",
        type=str,
        help="Name of this instance in the lease (default: primary)",
        default=environ.get("INSTANCE_ID") or "primary",
    )
    parser.add_argument(
        "--alert-webhook-url",
        dest="alert_webhook_url",
        type=str,
        help="Webhook receiving JSON alerts (default: log only)",
        default=environ.get("ALERT_WEBHOOK_URL"),
    )
    parser.add_argument(
        "--metrics-port",
        dest="metrics_port",
        type=int,
        help="Expose Prometheus metrics on this port (default: disabled)",
        default=int(environ["METRICS_PORT"]) if environ.get("METRICS_PORT") else None,
    )
    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="JSON-RPC endpoint of the chain hosting the gate contract",
        default=environ.get("RPC_URL"),
    )
    parser.add_argument(
        "--gate-address",
        dest="gate_address",
        type=str,
        help="Address of the gate contract",
        default=environ.get("GATE_ADDRESS"),
    )
    parser.add_argument(
        "--gate-abi",
        dest="gate_abi",
        type=str,
        help="Path to the gate contract ABI JSON (default: built-in)",
        default=environ.get("GATE_ABI_PATH"),
    )
    parser.add_argument(
        "--owner",
        type=str,
        help="Owner address of the in-process oracle (default: random)",
        default=environ.get("OWNER_ADDRESS"),
    )
    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=abc)",
        default=environ.get("API_KEYS"),
    )
    parser.add_argument(
        "--monotonic-sequence",
        dest="monotonic_sequence",
        action="store_true",
        help="Reject records whose sequence does not increase (in-process oracle)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def config_from_args(args: argparse.Namespace, environ: dict[str, str]) -> RelayerConfig:
    """Build and validate a RelayerConfig from parsed arguments.

    :raises ValueError: If the configuration is invalid.
    """
    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    available_sources = get_available_fetchers()
    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        raise ValueError(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    api_keys = parse_env_api_keys(environ)
    api_keys.update(parse_api_keys(args.api_keys))

    config = RelayerConfig(
        assets=parse_assets(args.assets, quote=args.quote),
        sources=sources,
        api_keys=api_keys,
        min_sources=args.min_sources,
        max_deviation_percent=args.max_deviation,
        drift_limit_percent=args.drift_limit if args.drift_limit > 0 else None,
        twap_window=args.twap_window,
        cycle_period=args.cycle_period,
        collection_window=args.collection_window,
        cycle_deadline=args.cycle_deadline,
        fetch_timeout=args.fetch_timeout,
        max_batch_size=args.max_batch_size,
        max_retries=args.max_retries,
        stale_after=args.stale_after,
        wal_path=args.wal_path,
        lease_path=args.lease_path,
        lease_ttl=args.lease_ttl,
        instance_id=args.instance_id,
        alert_webhook_url=args.alert_webhook_url,
        metrics_port=args.metrics_port,
        rpc_url=args.rpc_url,
        gate_address=args.gate_address,
        relayer_private_key=environ.get("RELAYER_PRIVATE_KEY"),
        enforce_monotonic_sequence=args.monotonic_sequence,
    )
    config.validate()
    return config


def build_gate_client(config: RelayerConfig, abi_path: str | None, owner: str | None) -> GateClient:
    """Create the contract client, or an in-process oracle and its client."""
    if config.uses_contract:
        abi = load_abi(abi_path) if abi_path else None
        return ContractGateClient(
            config.rpc_url, config.gate_address, config.relayer_private_key, abi=abi
        )

    relayer = (
        Account.from_key(config.relayer_private_key).address
        if config.relayer_private_key
        else Account.create().address
    )
    service = OracleService.create(
        owner=owner or Account.create().address,
        gate_address=Account.create().address,
        relayer=relayer,
        wal_path=config.wal_path,
        enforce_monotonic_sequence=config.enforce_monotonic_sequence,
    )
    return LocalGateClient(service, relayer)


def log_config(config: RelayerConfig) -> None:
    """Log the effective configuration (without secrets)."""
    logger.info("=" * 60)
    logger.info("Relay Oracle")
    logger.info("=" * 60)
    logger.info(f"Assets:            {', '.join(repr(c.asset) for c in config.assets)}")
    logger.info(f"Sources:           {', '.join(config.sources)}")
    logger.info(f"Min Sources:       {config.min_sources}")
    logger.info(f"Max Deviation:     {config.max_deviation_percent}%")
    logger.info(
        f"Drift Limit:       {config.drift_limit_percent}%"
        if config.drift_limit_percent
        else "Drift Limit:       disabled"
    )
    logger.info(f"TWAP Window:       {config.twap_window or 'disabled'}")
    logger.info(f"Cycle:             every {config.cycle_period}s, deadline {config.cycle_deadline}s")
    logger.info(f"Collection Window: {config.collection_window}s")
    logger.info(f"Batching:          {config.max_batch_size} per batch, {config.max_retries} retries")
    logger.info(f"Target:            {'contract ' + config.gate_address if config.uses_contract else 'in-process'}")
    if config.lease_path:
        logger.info(f"Lease:             {config.lease_path} as {config.instance_id}")
    if config.api_keys:
        logger.info(f"API Keys:          {', '.join(config.api_keys.keys())}")
    logger.info("=" * 60)


async def run(config: RelayerConfig, client: GateClient, once: bool = False) -> None:
    """Run the relayer until interrupted (or for one cycle)."""
    alerts: AlertChannel = (
        WebhookAlertChannel(config.alert_webhook_url)
        if config.alert_webhook_url
        else LoggingAlertChannel()
    )
    metrics: MetricsSink = NullMetrics()
    if config.metrics_port is not None:
        prometheus = PrometheusMetrics()
        prometheus.serve(config.metrics_port)
        metrics = prometheus
    lease = (
        FileLease(config.lease_path, ttl=config.effective_lease_ttl)
        if config.lease_path
        else None
    )

    pipeline = RelayerPipeline.from_config(config, client, alerts, metrics, lease)
    try:
        await pipeline.run(max_cycles=1 if once else None)
    finally:
        await client.close()
        if isinstance(alerts, WebhookAlertChannel):
            await alerts.close()


def main() -> None:
    """Main entry point for the Relay Oracle CLI."""
    environ = dict(os.environ)
    parser = build_parser(environ)
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = config_from_args(args, environ)
    except ValueError as e:
        parser.error(str(e))

    log_config(config)

    try:
        client = build_gate_client(config, args.gate_abi, args.owner)
        asyncio.run(run(config, client, once=args.once))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
