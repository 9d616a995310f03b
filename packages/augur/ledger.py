"""Read-only ledger query interface for Augur dispute data.

Uses raw JSON-RPC (``eth_blockNumber``, ``eth_getLogs``, ``eth_call``) against
the contracts named in the contracts document.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Protocol

from .abi import decode_bool, decode_log, event_topic0, function_selector
from .config import ContractsDocument
from .errors import EventDecodeError
from .events import EVENT_NAMES, EventKind, LedgerEvent, event_from_args
from .rpc import JsonRpcClient

logger = logging.getLogger(__name__)

IS_FORKING_SELECTOR = function_selector("isForking()")
IS_FINALIZED_SELECTOR = function_selector("isFinalized()")


class Ledger(Protocol):
    """Narrow query contract the calculator depends on."""

    def get_current_height(self) -> int:
        ...

    def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        ...

    def is_forking(self) -> bool:
        ...

    def is_market_finalized(self, market: str) -> bool:
        ...


def _hex_int(value, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class AugurLedger:
    """Ledger implementation backed by a ``JsonRpcClient``."""

    def __init__(self, client: JsonRpcClient, contracts: ContractsDocument):
        self.client = client
        self.contracts = contracts
        registry = contracts["dispute-registry"]
        self._registry_address = registry.address
        self._event_abis: Dict[EventKind, dict] = {
            kind: registry.find_event(name) for kind, name in EVENT_NAMES.items()
        }
        self._topics: Dict[EventKind, str] = {
            kind: event_topic0(entry) for kind, entry in self._event_abis.items()
        }

    def get_current_height(self) -> int:
        return self.client.block_number()

    def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[LedgerEvent]:
        """Fetch and normalize one kind of dispute event in [from_block, to_block].

        Removed and pending logs are dropped; malformed logs are logged and
        skipped; transport errors propagate.
        """
        kind = EventKind(kind)
        raw_logs = self.client.get_logs(
            self._registry_address, self._topics[kind], from_block, to_block
        )
        events: List[LedgerEvent] = []
        for log in raw_logs:
            if log.get("removed") or log.get("blockNumber") is None:
                continue
            try:
                args = decode_log(self._event_abis[kind], log)
                events.append(
                    event_from_args(
                        kind,
                        list(args.values()),
                        block_number=_hex_int(log.get("blockNumber")),
                        transaction_hash=log.get("transactionHash") or "",
                        log_index=_hex_int(log.get("logIndex")),
                    )
                )
            except (EventDecodeError, ValueError) as exc:
                logger.warning(
                    f"Skipping malformed {kind.value} log in tx "
                    f"{log.get('transactionHash')}: {exc}"
                )
        return events

    def is_forking(self) -> bool:
        result = self.client.eth_call(self.contracts["universe"].address, IS_FORKING_SELECTOR)
        return decode_bool(result)

    def is_market_finalized(self, market: str) -> bool:
        result = self.client.eth_call(market, IS_FINALIZED_SELECTOR)
        return decode_bool(result)
