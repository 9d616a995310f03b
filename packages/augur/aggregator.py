"""Fold dispute events into per-crowdsourcer state and rank active disputes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .config import ForkRiskConfig
from .events import (
    DisputeCompleted,
    DisputeContribution,
    DisputeCreated,
    LedgerEvent,
    wei_to_rep,
)

logger = logging.getLogger(__name__)

# Dispute windows run up to seven days; the remaining time is not tracked on-chain here.
DEFAULT_DAYS_REMAINING = 7


@dataclass
class DisputeState:
    """Current state of one dispute crowdsourcer."""

    market_id: str
    current_stake: float
    dispute_round: int
    is_completed: bool = False
    last_contribution_timestamp: int = 0


@dataclass
class DisputeDetails:
    """Published view of an active dispute."""

    market_id: str
    title: str
    dispute_bond_size: float
    dispute_round: int
    days_remaining: int = DEFAULT_DAYS_REMAINING

    def to_dict(self) -> dict:
        return {
            "marketId": self.market_id,
            "title": self.title,
            "disputeBondSize": self.dispute_bond_size,
            "disputeRound": self.dispute_round,
            "daysRemaining": self.days_remaining,
        }


def market_title(market_id: str) -> str:
    return f"Market {market_id[:10]}..."


def aggregate_dispute_states(events: Iterable[LedgerEvent]) -> Dict[str, DisputeState]:
    """Build dispute state in three passes: created, contributions, completed.

    Contributions are applied in input order, so the last one seen for a
    crowdsourcer sets its stake and round.
    """
    ordered = list(events)
    states: Dict[str, DisputeState] = {}

    for event in ordered:
        if isinstance(event, DisputeCreated):
            states[event.dispute_crowdsourcer] = DisputeState(
                market_id=event.market,
                current_stake=wei_to_rep(event.size_wei),
                dispute_round=1,
            )

    for event in ordered:
        if not isinstance(event, DisputeContribution):
            continue
        stake = wei_to_rep(event.current_stake_wei)
        existing = states.get(event.dispute_crowdsourcer)
        if existing is None:
            # Created event fell outside the scanned range.
            states[event.dispute_crowdsourcer] = DisputeState(
                market_id=event.market,
                current_stake=stake,
                dispute_round=event.dispute_round,
                last_contribution_timestamp=event.timestamp,
            )
            continue
        existing.current_stake = stake
        existing.dispute_round = event.dispute_round
        existing.last_contribution_timestamp = max(
            existing.last_contribution_timestamp, event.timestamp
        )

    for event in ordered:
        if isinstance(event, DisputeCompleted):
            existing = states.get(event.dispute_crowdsourcer)
            if existing is not None:
                existing.is_completed = True

    return states


def select_active_disputes(
    states: Dict[str, DisputeState],
    is_market_finalized: Optional[Callable[[str], bool]] = None,
    config: Optional[ForkRiskConfig] = None,
) -> List[DisputeDetails]:
    """Return the largest active disputes, biggest stake first.

    A dispute is active when it is not completed and its market is not
    finalized. A failing finalization probe counts the dispute as active.
    """
    cfg = config or ForkRiskConfig()
    finalized_cache: Dict[str, bool] = {}
    disputes: List[DisputeDetails] = []

    for crowdsourcer, state in states.items():
        if state.is_completed:
            continue

        if is_market_finalized is not None:
            if state.market_id not in finalized_cache:
                try:
                    finalized_cache[state.market_id] = bool(is_market_finalized(state.market_id))
                except Exception as exc:
                    logger.debug(
                        f"Finalization check failed for market {state.market_id}, "
                        f"treating as active: {exc}"
                    )
                    finalized_cache[state.market_id] = False
            if finalized_cache[state.market_id]:
                continue

        disputes.append(
            DisputeDetails(
                market_id=state.market_id,
                title=market_title(state.market_id),
                dispute_bond_size=state.current_stake,
                dispute_round=state.dispute_round,
            )
        )

    disputes.sort(key=lambda d: d.dispute_bond_size, reverse=True)
    logger.info(
        f"Processed {len(disputes)} active disputes from {len(states)} dispute crowdsourcers"
    )
    if disputes:
        logger.info(f"Largest dispute bond: {disputes[0].dispute_bond_size:,.2f} REP")
    return disputes[: cfg.max_tracked_disputes]


def largest_dispute_bond(disputes: List[DisputeDetails]) -> float:
    if not disputes:
        return 0.0
    return max(d.dispute_bond_size for d in disputes)
