"""Cache health check: re-scan the newest cached blocks and diff against the cache.

A chain reorganization can leave the cache holding events that no longer exist
(or missing ones that do). The check is advisory; it never blocks a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from .cache import EventCache
from .config import ForkRiskConfig
from .events import EventKind
from .ledger import Ledger

logger = logging.getLogger(__name__)


@dataclass
class CacheHealth:
    """Verdict of one health check."""

    is_healthy: bool
    discrepancy: Optional[str] = None
    skipped: bool = False
    from_block: Optional[int] = None
    to_block: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"isHealthy": self.is_healthy}
        if self.discrepancy:
            payload["discrepancy"] = self.discrepancy
        if self.from_block is not None and self.to_block is not None:
            payload["checkedBlocks"] = {"from": self.from_block, "to": self.to_block}
        return payload


def describe_discrepancy(fresh: Set[str], cached: Set[str], from_block: int, to_block: int) -> str:
    missing = len(fresh - cached)
    stale = len(cached - fresh)
    return (
        f"Dispute ids differ in blocks {from_block}-{to_block}: "
        f"{len(fresh)} fresh vs {len(cached)} cached "
        f"({missing} missing from cache, {stale} only in cache)"
    )


def validate_cache_health(
    ledger: Ledger,
    cache: EventCache,
    current_height: int,
    config: Optional[ForkRiskConfig] = None,
) -> CacheHealth:
    """Compare crowdsourcer ids from a fresh query with the persisted cache.

    The window is the newest ``validation_depth`` blocks the cache covers,
    ending at ``min(current_height, cache.last_queried_block)`` and starting no
    earlier than ``cache.oldest_event_block``.
    """
    cfg = config or ForkRiskConfig()
    if not cache.has_data:
        logger.info("Cache health check skipped: no cached data yet")
        return CacheHealth(is_healthy=True, skipped=True)

    to_block = min(current_height, cache.last_queried_block)
    from_block = max(to_block - cfg.validation_depth, cache.oldest_event_block)
    if from_block > to_block:
        logger.info("Cache health check skipped: cache window is empty")
        return CacheHealth(is_healthy=True, skipped=True)

    try:
        fresh_ids: Set[str] = set()
        for kind in EventKind:
            for event in ledger.query_events(kind, from_block, to_block):
                fresh_ids.add(event.dispute_crowdsourcer)
    except Exception as exc:
        logger.warning(f"Cache health check failed: {exc}")
        return CacheHealth(
            is_healthy=False,
            discrepancy=f"Validation query failed: {exc}",
            from_block=from_block,
            to_block=to_block,
        )

    cached_ids = {e.dispute_crowdsourcer for e in cache.events_in_range(from_block, to_block)}

    if fresh_ids == cached_ids:
        logger.info(f"Cache health check passed for blocks {from_block}-{to_block}")
        return CacheHealth(is_healthy=True, from_block=from_block, to_block=to_block)

    discrepancy = describe_discrepancy(fresh_ids, cached_ids, from_block, to_block)
    logger.warning(f"Cache health check failed: {discrepancy}")
    return CacheHealth(
        is_healthy=False,
        discrepancy=discrepancy,
        from_block=from_block,
        to_block=to_block,
    )
