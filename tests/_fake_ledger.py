"""In-memory ledger and event builders shared by the fork risk tests."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from packages.augur.events import (
    DisputeCompleted,
    DisputeContribution,
    DisputeCreated,
    EventKind,
    LedgerEvent,
)

WEI = 10 ** 18


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def created(crowdsourcer: int, market: int, block: int, size_rep: float = 0, log_index: int = 0):
    return DisputeCreated(
        block_number=block,
        transaction_hash=tx(block * 1000 + crowdsourcer),
        log_index=log_index,
        dispute_crowdsourcer=addr(crowdsourcer),
        market=addr(market),
        size_wei=int(size_rep * WEI),
    )


def contribution(
    crowdsourcer: int,
    market: int,
    block: int,
    stake_rep: float,
    round_: int = 1,
    timestamp: int = 0,
    log_index: int = 0,
):
    return DisputeContribution(
        block_number=block,
        transaction_hash=tx(block * 1000 + crowdsourcer + 500),
        log_index=log_index,
        dispute_crowdsourcer=addr(crowdsourcer),
        market=addr(market),
        current_stake_wei=int(stake_rep * WEI),
        amount_staked_wei=int(stake_rep * WEI),
        dispute_round=round_,
        timestamp=timestamp,
    )


def completed(crowdsourcer: int, market: int, block: int, log_index: int = 0):
    return DisputeCompleted(
        block_number=block,
        transaction_hash=tx(block * 1000 + crowdsourcer + 900),
        log_index=log_index,
        dispute_crowdsourcer=addr(crowdsourcer),
        market=addr(market),
        dispute_round=1,
        timestamp=0,
    )


class FakeLedger:
    """Ledger double holding events in memory.

    ``fail_ranges`` maps a chunk start block to the exception raised when a
    query starts there. ``calls`` records every ``query_events`` call.
    """

    def __init__(
        self,
        height: int = 100_000,
        events: Optional[List[LedgerEvent]] = None,
        forking: bool = False,
        finalized: Optional[Dict[str, bool]] = None,
    ):
        self.height = height
        self.events = list(events or [])
        self.forking = forking
        self.finalized = finalized or {}
        self.fail_ranges: Dict[int, Exception] = {}
        self.fail_all: Optional[Exception] = None
        self.forking_error: Optional[Exception] = None
        self.finalized_error: Optional[Exception] = None
        self.on_query: Optional[Callable[[EventKind, int, int], None]] = None
        self.calls: List[tuple] = []
        self.closed = False

    def block_number(self) -> int:
        return self.height

    def get_current_height(self) -> int:
        return self.height

    def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        self.calls.append((EventKind(kind), from_block, to_block))
        if self.on_query is not None:
            self.on_query(EventKind(kind), from_block, to_block)
        if self.fail_all is not None:
            raise self.fail_all
        if from_block in self.fail_ranges:
            raise self.fail_ranges[from_block]
        return [
            e
            for e in self.events
            if e.kind is EventKind(kind) and from_block <= e.block_number <= to_block
        ]

    def is_forking(self) -> bool:
        if self.forking_error is not None:
            raise self.forking_error
        return self.forking

    def is_market_finalized(self, market: str) -> bool:
        if self.finalized_error is not None:
            raise self.finalized_error
        return self.finalized.get(market, False)

    def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
