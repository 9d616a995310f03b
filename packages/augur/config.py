"""Run configuration for the fork risk calculator.

Three layers are kept apart:

- ``ForkRiskConfig``: immutable protocol and scanning constants passed into
  every component.
- ``RunSettings``: where to read and write (endpoints, file paths, mode),
  resolved from defaults, an optional YAML file and ``FORK_RISK_*``
  environment variables.
- ``ContractsDocument``: the static contracts/ABI document, loaded once per run.

Config files may carry a UTF-8 BOM; every JSON read goes through
``load_json_from_path``.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .errors import ConfigLoadError

CACHE_VERSION = "2.0.0"

DEFAULT_RPC_ENDPOINTS = (
    "https://eth.llamarpc.com",
    "https://main-light.eth.linkpool.io",
    "https://ethereum.publicnode.com",
    "https://1rpc.io/eth",
)

DEFAULT_CACHE_PATH = "cache/event-cache.json"
DEFAULT_OUTPUT_PATH = "public/data/fork-risk.json"
DEFAULT_CONTRACTS_PATH = "contracts/augur-contracts.json"
DEFAULT_LOCAL_CONFIG_NAMES = ("forkwatch.yaml", "forkwatch.yml")

CONTRACT_ROLES = ("universe", "dispute-registry", "stake-token", "collateral-token")

_INT_CONSTANTS = (
    "blocks_per_day",
    "lookback_days",
    "finality_depth",
    "validation_depth",
    "chunk_size",
    "max_consecutive_failures",
    "forking_check_attempts",
    "max_tracked_disputes",
    "published_disputes",
    "next_update_minutes",
    "max_block_height",
)
_FLOAT_CONSTANTS = (
    "fork_threshold_rep",
    "chunk_delay_seconds",
    "backoff_base_seconds",
    "backoff_max_seconds",
    "low_band_percent",
    "moderate_band_percent",
    "high_band_percent",
)
_POSITIVE_CONSTANTS = (
    "fork_threshold_rep",
    "blocks_per_day",
    "lookback_days",
    "chunk_size",
    "max_consecutive_failures",
    "forking_check_attempts",
    "max_tracked_disputes",
    "published_disputes",
    "max_block_height",
    "low_band_percent",
)


@dataclass(frozen=True)
class ForkRiskConfig:
    """Protocol and scanning constants for a single run."""

    fork_threshold_rep: float = 275_000.0  # 2.5% of 11M REP
    blocks_per_day: int = 7200  # ~12s blocks
    lookback_days: int = 7
    finality_depth: int = 32
    validation_depth: int = 8
    chunk_size: int = 1000
    chunk_delay_seconds: float = 0.1
    max_consecutive_failures: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    forking_check_attempts: int = 3
    max_tracked_disputes: int = 10
    published_disputes: int = 5
    low_band_percent: float = 10.0
    moderate_band_percent: float = 25.0
    high_band_percent: float = 75.0
    next_update_minutes: int = 60
    max_block_height: int = 1_000_000_000
    cache_version: str = CACHE_VERSION

    def __post_init__(self) -> None:
        """Raise ConfigLoadError for constants a run cannot work with."""
        for name in _INT_CONSTANTS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigLoadError(f"{name} must be an integer, got {value!r}")
        for name in _FLOAT_CONSTANTS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigLoadError(f"{name} must be a number, got {value!r}")
        for name in _POSITIVE_CONSTANTS:
            if getattr(self, name) <= 0:
                raise ConfigLoadError(f"{name} must be > 0, got {getattr(self, name)!r}")
        for name in set(_INT_CONSTANTS + _FLOAT_CONSTANTS) - set(_POSITIVE_CONSTANTS):
            if getattr(self, name) < 0:
                raise ConfigLoadError(f"{name} must be >= 0, got {getattr(self, name)!r}")
        if not self.low_band_percent < self.moderate_band_percent < self.high_band_percent:
            raise ConfigLoadError(
                "risk band thresholds must ascend: "
                f"{self.low_band_percent} < {self.moderate_band_percent} < {self.high_band_percent}"
            )

    @property
    def lookback_blocks(self) -> int:
        return self.lookback_days * self.blocks_per_day

    def lookback_start(self, current_height: int) -> int:
        """First block of the retention window ending at ``current_height``."""
        return max(0, current_height - self.lookback_blocks)


class RunMode(str, Enum):
    """Scan mode selection."""

    INCREMENTAL = "incremental"
    FULL_REBUILD = "full-rebuild"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RunMode":
        if not value:
            return cls.INCREMENTAL
        normalized = str(value).strip().lower().replace("_", "-")
        if normalized in ("full", "rebuild"):
            return cls.FULL_REBUILD
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ConfigLoadError(
                f"unknown run mode {value!r} (expected 'incremental' or 'full-rebuild')"
            ) from exc


@dataclass(frozen=True)
class RunSettings:
    """Resolved I/O settings for one run."""

    rpc_endpoints: tuple = DEFAULT_RPC_ENDPOINTS
    cache_path: Path = Path(DEFAULT_CACHE_PATH)
    output_path: Path = Path(DEFAULT_OUTPUT_PATH)
    contracts_path: Path = Path(DEFAULT_CONTRACTS_PATH)
    mode: RunMode = RunMode.INCREMENTAL
    rpc_timeout_seconds: float = 10.0
    config: ForkRiskConfig = field(default_factory=ForkRiskConfig)

    def with_overrides(self, **overrides: Any) -> "RunSettings":
        """Return a copy with every non-None override applied."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **applied)


def load_json_from_path(path: Union[str, Path]) -> dict:
    """Load a JSON object from ``path``, accepting a UTF-8 BOM.

    Raises:
        ConfigLoadError: If the file is missing, not valid JSON, or not an object.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8-sig")
    except FileNotFoundError as exc:
        raise ConfigLoadError(f"config file not found: {p}") from exc

    try:
        result = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigLoadError(f"config file is not valid JSON ({p}): {exc}") from exc

    if not isinstance(result, dict):
        raise ConfigLoadError(
            f"config file must contain a JSON object, got {type(result).__name__}: {p}"
        )
    return result


def load_local_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load the optional YAML run config.

    An explicit ``config_path`` must exist. Without one, ``forkwatch.yaml`` /
    ``forkwatch.yml`` in the working directory are tried and silently skipped
    when absent.
    """
    if config_path:
        paths = [Path(config_path)]
        if not paths[0].exists():
            raise ConfigLoadError(f"config file not found: {paths[0]}")
    else:
        paths = [Path(name) for name in DEFAULT_LOCAL_CONFIG_NAMES]

    for path in paths:
        if not path.exists():
            continue
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8-sig")) or {}
        except yaml.YAMLError as exc:
            raise ConfigLoadError(f"config file is not valid YAML ({path}): {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigLoadError(f"config file must contain a mapping: {path}")
        return payload
    return {}


def _split_endpoints(raw: Union[str, List[str], tuple]) -> tuple:
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw)
    return tuple(str(item).strip() for item in items if str(item).strip())


def _build_config(overrides: Mapping[str, Any]) -> ForkRiskConfig:
    known = set(ForkRiskConfig.__dataclass_fields__)
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigLoadError(f"unknown fork risk constants: {', '.join(unknown)}")
    try:
        return ForkRiskConfig(**dict(overrides))
    except TypeError as exc:
        raise ConfigLoadError(f"invalid fork risk constants: {exc}") from exc


def _timeout_setting(value: Any, source: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigLoadError(f"{source} must be a number: {value!r}") from exc
    if timeout <= 0:
        raise ConfigLoadError(f"{source} must be > 0: {value!r}")
    return timeout


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunSettings:
    """Resolve ``RunSettings`` from defaults, YAML config, then environment."""
    env = os.environ if environ is None else environ
    local = load_local_config(config_path)

    settings = RunSettings()
    constants = local.get("constants") or {}
    if not isinstance(constants, dict):
        raise ConfigLoadError("'constants' must be a mapping")

    endpoints = local.get("rpc_endpoints")
    settings = settings.with_overrides(
        rpc_endpoints=_split_endpoints(endpoints) if endpoints else None,
        cache_path=Path(local["cache_path"]) if local.get("cache_path") else None,
        output_path=Path(local["output_path"]) if local.get("output_path") else None,
        contracts_path=Path(local["contracts_path"]) if local.get("contracts_path") else None,
        mode=RunMode.parse(local["mode"]) if local.get("mode") else None,
        rpc_timeout_seconds=_timeout_setting(local.get("rpc_timeout_seconds"), "rpc_timeout_seconds"),
        config=_build_config(constants) if constants else None,
    )

    env_endpoints = env.get("FORK_RISK_RPC_URLS")
    timeout = _timeout_setting(
        env.get("FORK_RISK_RPC_TIMEOUT_SECONDS"), "FORK_RISK_RPC_TIMEOUT_SECONDS"
    )

    settings = settings.with_overrides(
        rpc_endpoints=_split_endpoints(env_endpoints) if env_endpoints else None,
        cache_path=Path(env["FORK_RISK_CACHE_PATH"]) if env.get("FORK_RISK_CACHE_PATH") else None,
        output_path=Path(env["FORK_RISK_OUTPUT_PATH"]) if env.get("FORK_RISK_OUTPUT_PATH") else None,
        contracts_path=(
            Path(env["FORK_RISK_CONTRACTS_PATH"]) if env.get("FORK_RISK_CONTRACTS_PATH") else None
        ),
        mode=RunMode.parse(env["FORK_RISK_MODE"]) if env.get("FORK_RISK_MODE") else None,
        rpc_timeout_seconds=timeout,
    )

    if not settings.rpc_endpoints:
        raise ConfigLoadError("at least one RPC endpoint is required")
    return settings


@dataclass(frozen=True)
class ContractSpec:
    """Address and ABI of one contract role."""

    role: str
    address: str
    abi: tuple

    def find_event(self, name: str) -> Dict[str, Any]:
        for entry in self.abi:
            if entry.get("type") == "event" and entry.get("name") == name:
                return entry
        raise ConfigLoadError(f"event {name!r} not found in ABI for role {self.role!r}")


@dataclass(frozen=True)
class ContractsDocument:
    """Contract addresses and interface descriptors, keyed by role."""

    contracts: Dict[str, ContractSpec]

    def __getitem__(self, role: str) -> ContractSpec:
        try:
            return self.contracts[role]
        except KeyError as exc:
            raise ConfigLoadError(f"contracts document has no role {role!r}") from exc


def parse_contracts(payload: Mapping[str, Any]) -> ContractsDocument:
    """Validate a raw contracts mapping into a ``ContractsDocument``."""
    contracts: Dict[str, ContractSpec] = {}
    for role in CONTRACT_ROLES:
        entry = payload.get(role)
        if not isinstance(entry, dict):
            raise ConfigLoadError(f"contracts document missing role {role!r}")
        address = str(entry.get("address") or "").strip()
        if not address.startswith("0x") or len(address) != 42:
            raise ConfigLoadError(f"invalid address for role {role!r}: {address!r}")
        abi = entry.get("abi") or []
        if not isinstance(abi, list):
            raise ConfigLoadError(f"abi for role {role!r} must be a list")
        contracts[role] = ContractSpec(role=role, address=address.lower(), abi=tuple(abi))
    return ContractsDocument(contracts=contracts)


def load_contracts(path: Union[str, Path]) -> ContractsDocument:
    """Load and validate the contracts document at ``path``."""
    return parse_contracts(load_json_from_path(path))
