"""Versioned, bounded-retention cache of dispute events.

The cache is a single JSON document. Loading never raises: a missing,
unreadable, structurally invalid or version-mismatched document is discarded
and an empty cache is returned so the run falls back to a full scan. Saving is
best-effort.

Document layout::

    {
      "version": "2.0.0",
      "lastQueriedBlock": 21000000,
      "lastQueriedTimestamp": "...",
      "oldestEventBlock": 20949600,
      "events": {"created": [...], "contributions": [...], "completed": [...]},
      "metadata": {
        "totalEventsTracked": 12,
        "cacheGeneratedAt": "...",
        "blockchainSyncStatus": "complete"
      }
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .config import ForkRiskConfig
from .errors import EventDecodeError
from .events import EventKind, LedgerEvent, event_from_dict
from .fetcher import SYNC_COMPLETE, SYNC_PARTIAL, SYNC_STALE, FetchResult, ScanPlan

logger = logging.getLogger(__name__)

# Document keys for each event sequence.
SECTION_KEYS: Dict[EventKind, str] = {
    EventKind.CREATED: "created",
    EventKind.CONTRIBUTION: "contributions",
    EventKind.COMPLETED: "completed",
}

SYNC_STATUSES = (SYNC_COMPLETE, SYNC_PARTIAL, SYNC_STALE)


def _now_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _empty_sections() -> Dict[EventKind, List[LedgerEvent]]:
    return {kind: [] for kind in EventKind}


@dataclass
class EventCache:
    """In-memory cache state."""

    version: str
    last_queried_block: int = 0
    last_queried_timestamp: str = ""
    oldest_event_block: int = 0
    events: Dict[EventKind, List[LedgerEvent]] = field(default_factory=_empty_sections)
    total_events: int = 0
    generated_at: str = ""
    sync_status: str = SYNC_STALE

    @property
    def event_count(self) -> int:
        return sum(len(items) for items in self.events.values())

    @property
    def has_data(self) -> bool:
        """False until a scan has been recorded."""
        return self.last_queried_block > 0

    def all_events(self) -> List[LedgerEvent]:
        return [event for kind in EventKind for event in self.events[kind]]

    def events_in_range(self, from_block: int, to_block: int) -> List[LedgerEvent]:
        return [e for e in self.all_events() if from_block <= e.block_number <= to_block]

    def to_document(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "lastQueriedBlock": self.last_queried_block,
            "lastQueriedTimestamp": self.last_queried_timestamp,
            "oldestEventBlock": self.oldest_event_block,
            "events": {
                SECTION_KEYS[kind]: [event.to_dict() for event in self.events[kind]]
                for kind in EventKind
            },
            "metadata": {
                "totalEventsTracked": self.total_events,
                "cacheGeneratedAt": self.generated_at,
                "blockchainSyncStatus": self.sync_status,
            },
        }


def empty_cache(config: Optional[ForkRiskConfig] = None) -> EventCache:
    cfg = config or ForkRiskConfig()
    now = _now_utc()
    return EventCache(
        version=cfg.cache_version,
        last_queried_timestamp=now,
        generated_at=now,
        sync_status=SYNC_STALE,
    )


def validate_cache_document(
    document: Any,
    config: Optional[ForkRiskConfig] = None,
) -> Tuple[bool, str]:
    """Check a raw cache document; returns ``(is_valid, reason)``."""
    cfg = config or ForkRiskConfig()
    if not isinstance(document, dict):
        return False, "cache document is not an object"

    version = document.get("version")
    if version != cfg.cache_version:
        return False, f"cache version mismatch: {version} (expected {cfg.cache_version})"

    events = document.get("events")
    metadata = document.get("metadata")
    last_block = document.get("lastQueriedBlock")
    if not isinstance(events, dict) or not isinstance(metadata, dict) or last_block is None:
        return False, "cache missing required fields"
    if any(not isinstance(events.get(key), list) for key in SECTION_KEYS.values()):
        return False, "cache missing required event sections"
    if "totalEventsTracked" not in metadata:
        return False, "cache missing required fields"

    if isinstance(last_block, bool) or not isinstance(last_block, int):
        return False, "cache has invalid block number"
    if last_block < 0 or last_block > cfg.max_block_height:
        return False, "cache has invalid block number"

    total = sum(len(events[key]) for key in SECTION_KEYS.values())
    if total != metadata.get("totalEventsTracked"):
        return False, "cache event count mismatch"

    return True, ""


def cache_from_document(
    document: Mapping[str, Any],
    config: Optional[ForkRiskConfig] = None,
) -> EventCache:
    """Build an ``EventCache`` from a validated document.

    Raises:
        EventDecodeError: If an event entry is malformed or in the wrong section.
    """
    cfg = config or ForkRiskConfig()
    sections = _empty_sections()
    for kind, key in SECTION_KEYS.items():
        for entry in document["events"][key]:
            event = event_from_dict(entry)
            if event.kind is not kind:
                raise EventDecodeError(f"{event.kind.value} event stored under '{key}'")
            sections[kind].append(event)

    metadata = document["metadata"]
    status = metadata.get("blockchainSyncStatus")
    return EventCache(
        version=cfg.cache_version,
        last_queried_block=int(document["lastQueriedBlock"]),
        last_queried_timestamp=str(document.get("lastQueriedTimestamp") or ""),
        oldest_event_block=int(document.get("oldestEventBlock") or 0),
        events=sections,
        total_events=int(metadata["totalEventsTracked"]),
        generated_at=str(metadata.get("cacheGeneratedAt") or ""),
        sync_status=status if status in SYNC_STATUSES else SYNC_STALE,
    )


def prune_cache(
    cache: EventCache,
    current_height: int,
    config: Optional[ForkRiskConfig] = None,
) -> Tuple[EventCache, int]:
    """Drop events older than the lookback window ending at ``current_height``.

    Returns the pruned cache and the number of events removed. Pruning twice
    with the same height removes nothing the second time.
    """
    cfg = config or ForkRiskConfig()
    cutoff = current_height - cfg.lookback_blocks
    sections = {
        kind: [e for e in cache.events[kind] if e.block_number >= cutoff] for kind in EventKind
    }
    pruned = replace(cache, events=sections, oldest_event_block=max(0, cutoff))
    removed = cache.event_count - pruned.event_count
    pruned.total_events = pruned.event_count
    if removed > 0:
        logger.info(f"Pruned {removed} old events (older than block {cutoff})")
    return pruned, removed


def _dedupe(events: Iterable[LedgerEvent]) -> List[LedgerEvent]:
    seen: Dict[tuple, LedgerEvent] = {}
    for event in events:
        seen.setdefault(event.key, event)
    return sorted(seen.values(), key=lambda e: (e.block_number, e.log_index))


def merge_scan(
    cache: EventCache,
    fetched: FetchResult,
    plan: ScanPlan,
    config: Optional[ForkRiskConfig] = None,
) -> EventCache:
    """Fold a scan into the cache.

    Cached events inside successfully re-scanned chunks are replaced by the
    fresh copies, so nothing in the finality window is counted twice. Cached
    events in chunks that failed are kept. A full (non-incremental) scan starts
    from an empty base.
    """
    cfg = config or ForkRiskConfig()
    sections = _empty_sections()
    for kind in EventKind:
        kept: List[LedgerEvent] = []
        if plan.incremental:
            kept = [e for e in cache.events[kind] if not fetched.covers(e.block_number)]
        sections[kind] = _dedupe(kept + fetched.events[kind])

    if fetched.last_contiguous_block >= plan.from_block:
        last_block = fetched.last_contiguous_block
    elif plan.incremental:
        last_block = cache.last_queried_block
    else:
        last_block = max(0, plan.from_block - 1)

    now = _now_utc()
    merged = EventCache(
        version=cfg.cache_version,
        last_queried_block=last_block,
        last_queried_timestamp=now,
        oldest_event_block=cfg.lookback_start(plan.to_block),
        events=sections,
        generated_at=now,
        sync_status=fetched.sync_status,
    )
    merged.total_events = merged.event_count
    return merged


class EventCacheStore:
    """Loads and saves the cache document at a fixed path."""

    def __init__(self, path: Union[str, Path], config: Optional[ForkRiskConfig] = None):
        self.path = Path(path)
        self.config = config or ForkRiskConfig()

    def validate(self, cache: Union[EventCache, Mapping[str, Any]]) -> bool:
        document = cache.to_document() if isinstance(cache, EventCache) else cache
        ok, reason = validate_cache_document(document, self.config)
        if not ok:
            logger.warning(reason)
        return ok

    def load(self) -> EventCache:
        """Read the cache; anything unusable yields an empty cache."""
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No cache found, will perform full query")
            return empty_cache(self.config)
        except (OSError, ValueError) as exc:
            logger.warning(f"Cache load error: {exc}")
            return empty_cache(self.config)

        if not self.validate(document):
            logger.warning("Cache validation failed, creating new cache")
            return empty_cache(self.config)

        try:
            cache = cache_from_document(document, self.config)
        except (EventDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Cache contains malformed events, creating new cache: {exc}")
            return empty_cache(self.config)

        logger.info(f"Cache loaded: {cache.total_events} events tracked")
        return cache

    def save(self, cache: EventCache) -> bool:
        """Write the cache atomically. Failures are logged and swallowed."""
        try:
            cache.generated_at = _now_utc()
            cache.total_events = cache.event_count
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(cache.to_document(), indent=2) + "\n",
                encoding="utf-8",
            )
            tmp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(f"Failed to save cache: {exc}")
            return False

        logger.info(f"Cache saved: {cache.total_events} events")
        return True

    def prune(self, cache: EventCache, current_height: int) -> Tuple[EventCache, int]:
        return prune_cache(cache, current_height, self.config)

    def merge(self, cache: EventCache, fetched: FetchResult, plan: ScanPlan) -> EventCache:
        return merge_scan(cache, fetched, plan, self.config)
