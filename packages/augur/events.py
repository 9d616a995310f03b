"""Normalized dispute events.

Raw logs (or cached entries) are converted once, at the boundary, into one of
three frozen variants. Everything downstream works with named fields; the same
types are used for freshly fetched and cache-sourced events.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Sequence, Tuple, Type, Union

from .errors import EventDecodeError

REP_DECIMALS = 18
_REP_SCALE = Decimal(10) ** REP_DECIMALS


class EventKind(str, Enum):
    """Dispute event kinds tracked by the calculator."""

    CREATED = "created"
    CONTRIBUTION = "contribution"
    COMPLETED = "completed"


def wei_to_rep(amount_wei: int) -> float:
    """Convert an attoREP amount to REP."""
    return float(Decimal(int(amount_wei)) / _REP_SCALE)


def _address(value: Any, label: str) -> str:
    text = str(value or "").lower()
    if not text.startswith("0x") or len(text) != 42:
        raise EventDecodeError(f"invalid {label} address: {value!r}")
    return text


def _uint(value: Any, label: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise EventDecodeError(f"invalid {label}: {value!r}") from exc
    if number < 0:
        raise EventDecodeError(f"negative {label}: {number}")
    return number


@dataclass(frozen=True)
class LedgerEvent:
    """Common fields of every dispute event."""

    block_number: int
    transaction_hash: str
    log_index: int
    dispute_crowdsourcer: str
    market: str

    kind: ClassVar[EventKind]
    min_args: ClassVar[int]

    @property
    def key(self) -> Tuple[int, str, str, int]:
        return (self.block_number, self.transaction_hash, self.kind.value, self.log_index)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the cache document. Amounts are stored as strings."""
        values = asdict(self)
        payload = {}
        for name in dispute_field_names(self.kind):
            value = values[name]
            payload[name] = str(value) if isinstance(value, int) else value
        return {
            "eventType": self.kind.value,
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "logIndex": self.log_index,
            "disputeCrowdsourcerAddress": self.dispute_crowdsourcer,
            "marketAddress": self.market,
            "fields": payload,
        }

    @classmethod
    def _from_fields(cls, common: Dict[str, Any], payload: Dict[str, Any]) -> "LedgerEvent":
        raise NotImplementedError

    @classmethod
    def _from_args(cls, common: Dict[str, Any], args: Sequence[Any]) -> "LedgerEvent":
        raise NotImplementedError


@dataclass(frozen=True)
class DisputeCreated(LedgerEvent):
    """``DisputeCrowdsourcerCreated``: a new crowdsourcer with its bond size."""

    size_wei: int = 0

    kind: ClassVar[EventKind] = EventKind.CREATED
    # universe, market, disputeCrowdsourcer, payoutNumerators, size, disputeRound
    min_args: ClassVar[int] = 6

    @classmethod
    def _from_args(cls, common, args):
        return cls(
            dispute_crowdsourcer=_address(args[2], "disputeCrowdsourcer"),
            market=_address(args[1], "market"),
            size_wei=_uint(args[4], "size"),
            **common,
        )

    @classmethod
    def _from_fields(cls, common, payload):
        return cls(size_wei=_uint(payload.get("size_wei"), "size_wei"), **common)


@dataclass(frozen=True)
class DisputeContribution(LedgerEvent):
    """``DisputeCrowdsourcerContribution``: stake added, with running totals."""

    current_stake_wei: int = 0
    amount_staked_wei: int = 0
    dispute_round: int = 1
    timestamp: int = 0

    kind: ClassVar[EventKind] = EventKind.CONTRIBUTION
    # universe, reporter, market, disputeCrowdsourcer, amountStaked, description,
    # payoutNumerators, currentStake, stakeRemaining, disputeRound, timestamp
    min_args: ClassVar[int] = 11

    @classmethod
    def _from_args(cls, common, args):
        return cls(
            dispute_crowdsourcer=_address(args[3], "disputeCrowdsourcer"),
            market=_address(args[2], "market"),
            amount_staked_wei=_uint(args[4], "amountStaked"),
            current_stake_wei=_uint(args[7], "currentStake"),
            dispute_round=_uint(args[9], "disputeRound"),
            timestamp=_uint(args[10], "timestamp"),
            **common,
        )

    @classmethod
    def _from_fields(cls, common, payload):
        return cls(
            current_stake_wei=_uint(payload.get("current_stake_wei"), "current_stake_wei"),
            amount_staked_wei=_uint(payload.get("amount_staked_wei", 0), "amount_staked_wei"),
            dispute_round=_uint(payload.get("dispute_round"), "dispute_round"),
            timestamp=_uint(payload.get("timestamp", 0), "timestamp"),
            **common,
        )


@dataclass(frozen=True)
class DisputeCompleted(LedgerEvent):
    """``DisputeCrowdsourcerCompleted``: the crowdsourcer filled its bond."""

    dispute_round: int = 0
    timestamp: int = 0

    kind: ClassVar[EventKind] = EventKind.COMPLETED
    # universe, market, disputeCrowdsourcer, payoutNumerators, nextWindowStartTime,
    # nextWindowEndTime, pacingOn, totalRepStakedInPayout, totalRepStakedInMarket,
    # disputeRound, timestamp
    min_args: ClassVar[int] = 11

    @classmethod
    def _from_args(cls, common, args):
        return cls(
            dispute_crowdsourcer=_address(args[2], "disputeCrowdsourcer"),
            market=_address(args[1], "market"),
            dispute_round=_uint(args[9], "disputeRound"),
            timestamp=_uint(args[10], "timestamp"),
            **common,
        )

    @classmethod
    def _from_fields(cls, common, payload):
        return cls(
            dispute_round=_uint(payload.get("dispute_round", 0), "dispute_round"),
            timestamp=_uint(payload.get("timestamp", 0), "timestamp"),
            **common,
        )


DisputeEvent = Union[DisputeCreated, DisputeContribution, DisputeCompleted]

EVENT_TYPES: Dict[EventKind, Type[LedgerEvent]] = {
    EventKind.CREATED: DisputeCreated,
    EventKind.CONTRIBUTION: DisputeContribution,
    EventKind.COMPLETED: DisputeCompleted,
}

EVENT_NAMES: Dict[EventKind, str] = {
    EventKind.CREATED: "DisputeCrowdsourcerCreated",
    EventKind.CONTRIBUTION: "DisputeCrowdsourcerContribution",
    EventKind.COMPLETED: "DisputeCrowdsourcerCompleted",
}


def event_from_args(
    kind: EventKind,
    args: Sequence[Any],
    *,
    block_number: int,
    transaction_hash: str,
    log_index: int = 0,
) -> LedgerEvent:
    """Build a typed event from positional decoded arguments.

    Raises:
        EventDecodeError: If there are too few arguments or a field is malformed.
    """
    cls = EVENT_TYPES[EventKind(kind)]
    if len(args) < cls.min_args:
        raise EventDecodeError(
            f"{kind.value} event needs {cls.min_args} args, got {len(args)}"
        )
    common = {
        "block_number": _uint(block_number, "blockNumber"),
        "transaction_hash": str(transaction_hash).lower(),
        "log_index": _uint(log_index, "logIndex"),
    }
    return cls._from_args(common, list(args))


def event_from_dict(payload: Dict[str, Any]) -> LedgerEvent:
    """Rebuild a typed event from its cache representation."""
    if not isinstance(payload, dict):
        raise EventDecodeError(f"cached event must be an object, got {type(payload).__name__}")
    try:
        kind = EventKind(payload.get("eventType"))
    except ValueError as exc:
        raise EventDecodeError(f"unknown eventType {payload.get('eventType')!r}") from exc
    tx = payload.get("transactionHash")
    if not isinstance(tx, str) or not tx:
        raise EventDecodeError("cached event missing transactionHash")
    common = {
        "block_number": _uint(payload.get("blockNumber"), "blockNumber"),
        "transaction_hash": tx.lower(),
        "log_index": _uint(payload.get("logIndex", 0), "logIndex"),
        "dispute_crowdsourcer": _address(payload.get("disputeCrowdsourcerAddress"), "disputeCrowdsourcer"),
        "market": _address(payload.get("marketAddress"), "market"),
    }
    extra = payload.get("fields") or {}
    if not isinstance(extra, dict):
        raise EventDecodeError("cached event 'fields' must be an object")
    return EVENT_TYPES[kind]._from_fields(common, extra)


def dispute_field_names(kind: EventKind) -> Tuple[str, ...]:
    """Kind-specific field names, in declaration order."""
    base = {f.name for f in fields(LedgerEvent)}
    return tuple(f.name for f in fields(EVENT_TYPES[kind]) if f.name not in base)
