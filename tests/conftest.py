from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

_ISOLATED_ENV_VARS = (
    "FORK_RISK_MODE",
    "FORK_RISK_RPC_URLS",
    "FORK_RISK_CACHE_PATH",
    "FORK_RISK_OUTPUT_PATH",
    "FORK_RISK_CONTRACTS_PATH",
    "FORK_RISK_RPC_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _isolated_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Run every test in its own cwd with no FORK_RISK_* overrides."""
    for key in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path


@pytest.fixture
def contracts_path() -> Path:
    return REPO_ROOT / "contracts" / "augur-contracts.json"
