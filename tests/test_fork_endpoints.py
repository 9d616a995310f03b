"""Tests for RPC endpoint selection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from packages.augur.endpoints import select_endpoint
from packages.augur.errors import AllEndpointsUnavailableError, RpcError
from tests._fake_ledger import FakeLedger

ENDPOINTS = ("https://one.example", "https://two.example", "https://three.example")


def _down() -> MagicMock:
    client = MagicMock()
    client.block_number.side_effect = RpcError("connection refused")
    return client


def test_first_healthy_endpoint_wins():
    clients = {ENDPOINTS[0]: FakeLedger(height=10), ENDPOINTS[1]: FakeLedger(height=20)}

    connection = select_endpoint(ENDPOINTS, connect=clients.__getitem__)

    assert connection.endpoint == ENDPOINTS[0]
    assert connection.fallbacks_attempted == 0
    assert connection.height == 10
    assert connection.index == 0


def test_failed_endpoints_are_counted_and_closed():
    bad = _down()
    good = FakeLedger(height=20)
    clients = {ENDPOINTS[0]: bad, ENDPOINTS[1]: good}
    ticks = iter([0.0, 1.0, 1.25])

    connection = select_endpoint(ENDPOINTS, connect=clients.__getitem__, clock=lambda: next(ticks))

    assert connection.endpoint == ENDPOINTS[1]
    assert connection.fallbacks_attempted == 1
    assert connection.latency_ms == 250
    assert connection.index == 1
    bad.close.assert_called_once()
    bad.block_number.assert_called_once()


def test_connect_failure_counts_as_endpoint_failure():
    def connect(url):
        if url == ENDPOINTS[0]:
            raise RpcError("dns failure")
        return FakeLedger(height=5)

    connection = select_endpoint(ENDPOINTS, connect=connect)
    assert connection.endpoint == ENDPOINTS[1]
    assert connection.fallbacks_attempted == 1


def test_all_endpoints_failing_raises():
    with pytest.raises(AllEndpointsUnavailableError) as excinfo:
        select_endpoint(ENDPOINTS, connect=lambda url: _down())

    assert excinfo.value.attempted == 3
    assert str(excinfo.value).startswith("All RPC endpoints failed (attempted 3)")
    assert "connection refused" in excinfo.value.last_error


def test_resume_from_later_endpoint():
    clients = {url: FakeLedger(height=1) for url in ENDPOINTS}

    connection = select_endpoint(
        ENDPOINTS, connect=clients.__getitem__, start_index=1, prior_failures=1
    )

    assert connection.endpoint == ENDPOINTS[1]
    assert connection.fallbacks_attempted == 1
