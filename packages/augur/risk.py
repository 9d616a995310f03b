"""Risk level math and the published result document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .aggregator import DisputeDetails, largest_dispute_bond
from .config import ForkRiskConfig
from .endpoints import RpcConnection
from .errors import ResultWriteError
from .health import CacheHealth

logger = logging.getLogger(__name__)

METHOD_NORMAL = "Scheduled job + Public RPC"
METHOD_FORKING = "Fork Detected"
METHOD_ERROR = "Error"

FORKING_MARKET_ID = "FORKING"
FORKING_DISPUTE_ROUND = 99


class RiskLevel(str, Enum):
    """Published risk bands."""

    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def determine_risk_level(percent: float, config: Optional[ForkRiskConfig] = None) -> RiskLevel:
    """Map a fork-threshold percentage to a risk band.

    Exactly zero is its own band; every other band includes its lower bound.
    """
    cfg = config or ForkRiskConfig()
    if percent <= 0:
        return RiskLevel.NONE
    if percent < cfg.low_band_percent:
        return RiskLevel.LOW
    if percent < cfg.moderate_band_percent:
        return RiskLevel.MODERATE
    if percent < cfg.high_band_percent:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def fork_threshold_percent(stake_rep: float, config: Optional[ForkRiskConfig] = None) -> float:
    cfg = config or ForkRiskConfig()
    return (stake_rep / cfg.fork_threshold_rep) * 100


def clamp_percent(value: float) -> float:
    return min(100.0, max(0.0, value))


@dataclass
class ConnectionInfo:
    endpoint: Optional[str] = None
    latency_ms: Optional[int] = None
    fallbacks_attempted: int = 0

    @classmethod
    def from_connection(cls, connection: RpcConnection) -> "ConnectionInfo":
        return cls(
            endpoint=connection.endpoint,
            latency_ms=connection.latency_ms,
            fallbacks_attempted=connection.fallbacks_attempted,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "latency": self.latency_ms,
            "fallbacksAttempted": self.fallbacks_attempted,
        }


@dataclass
class ForkRiskResult:
    """One run's published output."""

    timestamp: str
    risk_level: RiskLevel
    risk_percentage: float
    largest_dispute_bond: float
    fork_threshold_percent: float
    active_disputes: int
    dispute_details: List[DisputeDetails]
    next_update: str
    connection: ConnectionInfo
    method: str
    fork_threshold: float
    block_number: Optional[int] = None
    cache_validation: Optional[CacheHealth] = None
    last_risk_change: Optional[str] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"timestamp": self.timestamp}
        if self.block_number is not None:
            payload["blockNumber"] = self.block_number
        payload.update(
            {
                "riskLevel": self.risk_level.value,
                "riskPercentage": self.risk_percentage,
                "metrics": {
                    "largestDisputeBond": self.largest_dispute_bond,
                    "forkThresholdPercent": self.fork_threshold_percent,
                    "activeDisputes": self.active_disputes,
                    "disputeDetails": [d.to_dict() for d in self.dispute_details],
                },
                "nextUpdate": self.next_update,
                "rpcInfo": self.connection.to_dict(),
                "calculation": {
                    "method": self.method,
                    "forkThreshold": self.fork_threshold,
                },
            }
        )
        if self.cache_validation is not None:
            payload["cacheValidation"] = self.cache_validation.to_dict()
        if self.last_risk_change is not None:
            payload["lastRiskChange"] = self.last_risk_change
        if self.error is not None:
            payload["error"] = self.error
        payload.update(self.extra)
        return payload


def _next_update(now: datetime, config: ForkRiskConfig) -> str:
    return (now + timedelta(minutes=config.next_update_minutes)).isoformat()


def build_risk_result(
    active_disputes: List[DisputeDetails],
    *,
    block_number: int,
    connection: ConnectionInfo,
    cache_validation: Optional[CacheHealth] = None,
    config: Optional[ForkRiskConfig] = None,
    now: Optional[datetime] = None,
) -> ForkRiskResult:
    """Normal branch: risk from the largest active dispute bond."""
    cfg = config or ForkRiskConfig()
    moment = now or _now()
    largest = largest_dispute_bond(active_disputes)
    percent = fork_threshold_percent(largest, cfg)
    level = determine_risk_level(percent, cfg)

    logger.info(f"Risk Level: {level.value}")
    logger.info(f"Largest Dispute Bond: {largest} REP")
    logger.info(f"Fork Threshold: {percent:.2f}%")

    return ForkRiskResult(
        timestamp=moment.isoformat(),
        block_number=block_number,
        risk_level=level,
        risk_percentage=clamp_percent(percent),
        largest_dispute_bond=largest,
        fork_threshold_percent=round(percent, 2),
        active_disputes=len(active_disputes),
        dispute_details=active_disputes[: cfg.published_disputes],
        next_update=_next_update(moment, cfg),
        connection=connection,
        method=METHOD_NORMAL,
        fork_threshold=cfg.fork_threshold_rep,
        cache_validation=cache_validation,
    )


def build_forking_result(
    *,
    block_number: int,
    connection: ConnectionInfo,
    config: Optional[ForkRiskConfig] = None,
    now: Optional[datetime] = None,
) -> ForkRiskResult:
    """Forking branch: maximal risk with a single synthetic dispute entry."""
    cfg = config or ForkRiskConfig()
    moment = now or _now()
    return ForkRiskResult(
        timestamp=moment.isoformat(),
        block_number=block_number,
        risk_level=RiskLevel.CRITICAL,
        risk_percentage=100.0,
        largest_dispute_bond=cfg.fork_threshold_rep,
        fork_threshold_percent=100.0,
        active_disputes=0,
        dispute_details=[
            DisputeDetails(
                market_id=FORKING_MARKET_ID,
                title="Universe is currently forking",
                dispute_bond_size=cfg.fork_threshold_rep,
                dispute_round=FORKING_DISPUTE_ROUND,
                days_remaining=0,
            )
        ],
        next_update=_next_update(moment, cfg),
        connection=connection,
        method=METHOD_FORKING,
        fork_threshold=cfg.fork_threshold_rep,
        cache_validation=CacheHealth(is_healthy=True, skipped=True),
    )


def build_error_result(
    message: str,
    *,
    config: Optional[ForkRiskConfig] = None,
    now: Optional[datetime] = None,
) -> ForkRiskResult:
    """Minimal ``unknown`` document written when a run cannot complete."""
    cfg = config or ForkRiskConfig()
    moment = now or _now()
    return ForkRiskResult(
        timestamp=moment.isoformat(),
        risk_level=RiskLevel.UNKNOWN,
        risk_percentage=0.0,
        largest_dispute_bond=0.0,
        fork_threshold_percent=0.0,
        active_disputes=0,
        dispute_details=[],
        next_update=_next_update(moment, cfg),
        connection=ConnectionInfo(),
        method=METHOD_ERROR,
        fork_threshold=cfg.fork_threshold_rep,
        error=message,
    )


def read_previous_result(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Return the currently published document, or None if absent or unreadable."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning(f"Could not read previous result: {exc}")
        return None
    return payload if isinstance(payload, dict) else None


def apply_last_risk_change(
    result: ForkRiskResult,
    previous: Optional[Dict[str, Any]],
) -> ForkRiskResult:
    """Carry ``lastRiskChange`` forward while the risk level is unchanged."""
    if previous and previous.get("riskLevel") == result.risk_level.value:
        carried = previous.get("lastRiskChange") or previous.get("timestamp")
        result.last_risk_change = carried or result.timestamp
    else:
        result.last_risk_change = result.timestamp
    return result


def write_result(path: Union[str, Path], result: ForkRiskResult) -> Path:
    """Write the result document atomically (temp file + replace).

    Raises:
        ResultWriteError: If the document cannot be written.
    """
    output_path = Path(path)
    tmp_path = output_path.with_suffix(output_path.suffix + ".tmp")
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(
            json.dumps(result.to_dict(), indent=2) + "\n",
            encoding="utf-8",
        )
        tmp_path.replace(output_path)
    except OSError as exc:
        raise ResultWriteError(f"failed to write result to {output_path}: {exc}") from exc
    logger.info(f"Results saved to {output_path}")
    return output_path
