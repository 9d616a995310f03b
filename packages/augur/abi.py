"""ABI helpers: event topics, function selectors and log decoding.

No web3.py dependency; topics are keccak-256 hashes of canonical signatures
and payloads are decoded with eth-abi.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from Crypto.Hash import keccak
from eth_abi import decode

from .errors import EventDecodeError

_TYPE_ALIASES = {"uint": "uint256", "int": "int256", "byte": "bytes1"}


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def _canonical_type(abi_type: str) -> str:
    base, bracket, rest = abi_type.partition("[")
    base = _TYPE_ALIASES.get(base, base)
    return f"{base}{bracket}{rest}"


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("string", "bytes") or abi_type.endswith("[]")


def event_signature(entry: Mapping[str, Any]) -> str:
    """Canonical signature, e.g. ``DisputeCrowdsourcerCreated(address,address,...)``."""
    types = ",".join(_canonical_type(i["type"]) for i in entry.get("inputs", []))
    return f"{entry['name']}({types})"


def event_topic0(entry: Mapping[str, Any]) -> str:
    """0x-prefixed keccak-256 of the event signature."""
    return "0x" + keccak256(event_signature(entry).encode("ascii")).hex()


def function_selector(signature: str) -> str:
    """0x-prefixed 4-byte selector for a function signature like ``isForking()``."""
    return "0x" + keccak256(signature.encode("ascii"))[:4].hex()


def _hex_to_bytes(value: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise EventDecodeError(f"expected 0x-prefixed hex, got {value!r}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError as exc:
        raise EventDecodeError(f"invalid hex payload: {value[:66]!r}") from exc


def _normalize(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


def decode_log(entry: Mapping[str, Any], log: Mapping[str, Any]) -> Dict[str, Any]:
    """Decode a raw ``eth_getLogs`` entry into named arguments, in ABI order.

    Indexed dynamic arguments are returned as their topic hash.

    Raises:
        EventDecodeError: If the topics or data do not match the ABI entry.
    """
    inputs: Sequence[Mapping[str, Any]] = entry.get("inputs", [])
    topics: List[str] = list(log.get("topics") or [])
    if not topics or topics[0].lower() != event_topic0(entry):
        raise EventDecodeError(f"log topic0 does not match {entry.get('name')}")

    indexed = [i for i in inputs if i.get("indexed")]
    if len(topics) - 1 != len(indexed):
        raise EventDecodeError(
            f"{entry.get('name')}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
        )

    plain = [i for i in inputs if not i.get("indexed")]
    try:
        data_values = decode(
            [_canonical_type(i["type"]) for i in plain],
            _hex_to_bytes(log.get("data") or "0x"),
        )
    except EventDecodeError:
        raise
    except Exception as exc:
        raise EventDecodeError(f"{entry.get('name')}: cannot decode data: {exc}") from exc

    topic_values: List[Any] = []
    for param, topic in zip(indexed, topics[1:]):
        abi_type = _canonical_type(param["type"])
        if _is_dynamic(abi_type):
            topic_values.append(topic.lower())
            continue
        try:
            (value,) = decode([abi_type], _hex_to_bytes(topic))
        except EventDecodeError:
            raise
        except Exception as exc:
            raise EventDecodeError(f"{entry.get('name')}: bad topic {topic!r}: {exc}") from exc
        topic_values.append(value)

    args: Dict[str, Any] = {}
    topic_iter = iter(topic_values)
    data_iter = iter(data_values)
    for position, param in enumerate(inputs):
        name = param.get("name") or f"arg{position}"
        value = next(topic_iter) if param.get("indexed") else next(data_iter)
        args[name] = _normalize(value)
    return args


def decode_bool(result_hex: str) -> bool:
    """Decode a single ABI-encoded ``bool`` return value."""
    try:
        (value,) = decode(["bool"], _hex_to_bytes(result_hex))
    except EventDecodeError:
        raise
    except Exception as exc:
        raise EventDecodeError(f"cannot decode bool from {result_hex!r}: {exc}") from exc
    return bool(value)
