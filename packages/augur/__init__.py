"""Augur fork risk calculator package."""

from .aggregator import DisputeDetails, DisputeState, aggregate_dispute_states, select_active_disputes
from .cache import EventCache, EventCacheStore, prune_cache, validate_cache_document
from .config import ForkRiskConfig, RunMode, RunSettings, load_contracts, load_settings
from .endpoints import RpcConnection, select_endpoint
from .errors import (
    AllEndpointsUnavailableError,
    ConfigLoadError,
    EventDecodeError,
    ForkRiskError,
    LedgerUnavailableError,
    ResultWriteError,
    RpcError,
)
from .events import DisputeCompleted, DisputeContribution, DisputeCreated, EventKind, LedgerEvent
from .fetcher import ChunkedEventFetcher, FetchResult, plan_scan
from .health import CacheHealth, validate_cache_health
from .ledger import AugurLedger, Ledger
from .risk import ForkRiskResult, RiskLevel, determine_risk_level
from .rpc import JsonRpcClient, is_rate_limit_error
from .runner import ForkRiskRunner, run_fork_risk

__all__ = [
    "AllEndpointsUnavailableError",
    "AugurLedger",
    "CacheHealth",
    "ChunkedEventFetcher",
    "ConfigLoadError",
    "DisputeCompleted",
    "DisputeContribution",
    "DisputeCreated",
    "DisputeDetails",
    "DisputeState",
    "EventCache",
    "EventCacheStore",
    "EventDecodeError",
    "EventKind",
    "FetchResult",
    "ForkRiskConfig",
    "ForkRiskError",
    "ForkRiskResult",
    "ForkRiskRunner",
    "JsonRpcClient",
    "Ledger",
    "LedgerEvent",
    "LedgerUnavailableError",
    "ResultWriteError",
    "RiskLevel",
    "RpcConnection",
    "RpcError",
    "RunMode",
    "RunSettings",
    "aggregate_dispute_states",
    "determine_risk_level",
    "is_rate_limit_error",
    "load_contracts",
    "load_settings",
    "plan_scan",
    "prune_cache",
    "run_fork_risk",
    "select_active_disputes",
    "select_endpoint",
    "validate_cache_document",
    "validate_cache_health",
]
