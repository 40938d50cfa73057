"""
Relay Oracle - fixed-point price store with an off-chain relayer

On-chain side (price storage and access control):
- PriceStore: Asset id to PriceRecord mapping, written only by its gate
- ExchangeRateEngine: Cross-rate derivation between two stored assets
- ValidationGate: Relayer-only, all-or-nothing batch writes
- OracleService: Read and admin surface over store, gate and engine

Off-chain side (relayer):
- DataCollector: Concurrent multi-source collection within a window
- PriceAggregator: Median calculation with outlier detection
- SubmissionManager: Batching with bounded retries
- RelayerPipeline: Periodic cycle orchestration
- fetchers: Modular price fetcher implementations
"""

from .Asset import Asset, compute_asset_id
from .errors import (
    HardFailure,
    InvalidInput,
    OracleError,
    PermissionDenied,
    TransientSubmissionFailure,
)
from .ExchangeRateEngine import ExchangeRateEngine
from .OracleService import OracleService
from .PriceAggregator import AggregationResult, PriceAggregator
from .PriceRecord import DerivedPair, Direction, PriceRecord
from .PriceStore import PriceStore
from .RelayerPipeline import CycleReport, CycleState, RelayerPipeline
from .SourceManager import SourceManager, SourceStatus
from .ValidationGate import GateState, ValidationGate

__all__ = [
    "AggregationResult",
    "Asset",
    "CycleReport",
    "CycleState",
    "DerivedPair",
    "Direction",
    "ExchangeRateEngine",
    "GateState",
    "HardFailure",
    "InvalidInput",
    "OracleError",
    "OracleService",
    "PermissionDenied",
    "PriceAggregator",
    "PriceRecord",
    "PriceStore",
    "RelayerPipeline",
    "SourceManager",
    "SourceStatus",
    "TransientSubmissionFailure",
    "ValidationGate",
    "compute_asset_id",
]
