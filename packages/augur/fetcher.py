"""Chunked dispute-event scanning under a provider block-range limit."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config import ForkRiskConfig, RunMode
from .events import EventKind, LedgerEvent
from .ledger import Ledger
from .retry import backoff_delay
from .rpc import is_rate_limit_error

logger = logging.getLogger(__name__)

SYNC_COMPLETE = "complete"
SYNC_PARTIAL = "partial"
SYNC_STALE = "stale"


@dataclass
class ScanPlan:
    """Block range to scan this run."""

    from_block: int
    to_block: int
    incremental: bool

    @property
    def block_count(self) -> int:
        return max(0, self.to_block - self.from_block + 1)


def plan_scan(
    last_scanned_block: int,
    current_height: int,
    config: ForkRiskConfig,
    mode: RunMode = RunMode.INCREMENTAL,
) -> ScanPlan:
    """Choose between a full lookback scan and an incremental resume.

    Incremental scans re-cover ``finality_depth`` blocks behind the last
    scanned block, never reaching further back than the lookback window.
    """
    lookback_start = config.lookback_start(current_height)
    usable = 0 < last_scanned_block <= current_height
    if mode is RunMode.FULL_REBUILD or not usable:
        return ScanPlan(from_block=lookback_start, to_block=current_height, incremental=False)
    from_block = max(last_scanned_block - config.finality_depth, lookback_start)
    return ScanPlan(from_block=from_block, to_block=current_height, incremental=True)


@dataclass
class FetchResult:
    """Events collected by one scan, with chunk bookkeeping."""

    from_block: int
    to_block: int
    events: Dict[EventKind, List[LedgerEvent]] = field(
        default_factory=lambda: {kind: [] for kind in EventKind}
    )
    total_chunks: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    aborted: bool = False
    last_contiguous_block: int = -1
    scanned_ranges: List[Tuple[int, int]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def covers(self, block_number: int) -> bool:
        """True when ``block_number`` lies in a successfully scanned chunk."""
        return any(start <= block_number <= end for start, end in self.scanned_ranges)

    @property
    def sync_status(self) -> str:
        if self.failed_chunks or self.aborted:
            return SYNC_PARTIAL
        return SYNC_COMPLETE

    @property
    def event_count(self) -> int:
        return sum(len(items) for items in self.events.values())

    @property
    def unusable(self) -> bool:
        """True when chunks were attempted and none of them succeeded."""
        return self.total_chunks > 0 and self.successful_chunks == 0

    def all_events(self) -> List[LedgerEvent]:
        return [event for kind in EventKind for event in self.events[kind]]


class ChunkedEventFetcher:
    """Scans [from, to] in ``chunk_size`` windows, three log queries per window."""

    def __init__(
        self,
        ledger: Ledger,
        config: Optional[ForkRiskConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.config = config or ForkRiskConfig()
        self.sleep = sleep

    def iter_chunks(self, from_block: int, to_block: int):
        size = self.config.chunk_size
        start = from_block
        while start <= to_block:
            yield start, min(start + size - 1, to_block)
            start += size

    def _query_chunk(self, start: int, end: int) -> Dict[EventKind, List[LedgerEvent]]:
        return {kind: self.ledger.query_events(kind, start, end) for kind in EventKind}

    def fetch(self, from_block: int, to_block: int) -> FetchResult:
        """Scan the range; failed chunks are skipped, five in a row abort the scan."""
        cfg = self.config
        result = FetchResult(
            from_block=from_block,
            to_block=to_block,
            last_contiguous_block=from_block - 1,
        )
        consecutive_failures = 0
        contiguous = True

        for start, end in self.iter_chunks(from_block, to_block):
            result.total_chunks += 1
            if result.total_chunks > 1 and cfg.chunk_delay_seconds > 0:
                self.sleep(cfg.chunk_delay_seconds)

            try:
                chunk = self._query_chunk(start, end)
            except Exception as exc:
                consecutive_failures += 1
                result.failed_chunks += 1
                contiguous = False
                result.errors.append(f"blocks {start}-{end}: {exc}")

                if is_rate_limit_error(exc):
                    delay = backoff_delay(
                        consecutive_failures, cfg.backoff_base_seconds, cfg.backoff_max_seconds
                    )
                    logger.warning(
                        f"Rate limit detected on blocks {start}-{end}, "
                        f"backing off {delay:.1f}s"
                    )
                    self.sleep(delay)
                else:
                    logger.warning(f"Failed to query blocks {start}-{end}: {exc}")

                if consecutive_failures >= cfg.max_consecutive_failures:
                    result.aborted = True
                    logger.warning(
                        f"Too many consecutive failures ({consecutive_failures}), "
                        f"stopping early with {result.successful_chunks}/"
                        f"{result.total_chunks} chunks"
                    )
                    break
                continue

            consecutive_failures = 0
            result.successful_chunks += 1
            result.scanned_ranges.append((start, end))
            if contiguous:
                result.last_contiguous_block = end
            found = 0
            for kind, items in chunk.items():
                result.events[kind].extend(items)
                found += len(items)
            if found:
                logger.info(
                    f"Found {found} dispute events in blocks {start}-{end} "
                    f"({len(chunk[EventKind.CREATED])} created, "
                    f"{len(chunk[EventKind.CONTRIBUTION])} contributions, "
                    f"{len(chunk[EventKind.COMPLETED])} completed)"
                )

        logger.info(
            f"Chunk scan complete: {result.successful_chunks}/{result.total_chunks} "
            f"successful, {result.event_count} events"
        )
        return result
