"""Tests for the cache health check."""

from __future__ import annotations

from packages.augur.cache import empty_cache
from packages.augur.config import ForkRiskConfig
from packages.augur.errors import RpcError
from packages.augur.health import validate_cache_health
from tests._fake_ledger import FakeLedger, contribution, created

CFG = ForkRiskConfig()
HEIGHT = 100_000


def _cache(events, oldest=HEIGHT - CFG.lookback_blocks):
    cache = empty_cache(CFG)
    for event in events:
        cache.events[event.kind].append(event)
    cache.last_queried_block = HEIGHT
    cache.oldest_event_block = oldest
    cache.total_events = cache.event_count
    return cache


def test_matching_sets_are_healthy():
    events = [created(1, 11, HEIGHT - 3, 1), contribution(2, 12, HEIGHT - 1, 5)]
    ledger = FakeLedger(height=HEIGHT, events=events)

    health = validate_cache_health(ledger, _cache(events), HEIGHT, CFG)

    assert health.is_healthy
    assert health.discrepancy is None
    assert (health.from_block, health.to_block) == (HEIGHT - 8, HEIGHT)
    assert health.to_dict()["checkedBlocks"] == {"from": HEIGHT - 8, "to": HEIGHT}


def test_events_outside_window_are_ignored():
    old = created(3, 13, HEIGHT - 100, 1)
    ledger = FakeLedger(height=HEIGHT, events=[])
    assert validate_cache_health(ledger, _cache([old]), HEIGHT, CFG).is_healthy


def test_fresh_event_missing_from_cache_is_unhealthy():
    fresh = created(1, 11, HEIGHT - 2, 1)
    ledger = FakeLedger(height=HEIGHT, events=[fresh])

    health = validate_cache_health(ledger, _cache([]), HEIGHT, CFG)

    assert not health.is_healthy
    assert "1 missing from cache" in health.discrepancy
    assert health.to_dict()["isHealthy"] is False


def test_cached_event_gone_from_chain_is_unhealthy():
    orphan = contribution(4, 14, HEIGHT - 1, 3)
    ledger = FakeLedger(height=HEIGHT, events=[])

    health = validate_cache_health(ledger, _cache([orphan]), HEIGHT, CFG)

    assert not health.is_healthy
    assert "1 only in cache" in health.discrepancy


def test_window_starts_no_earlier_than_oldest_event_block():
    ledger = FakeLedger(height=HEIGHT)
    health = validate_cache_health(ledger, _cache([], oldest=HEIGHT - 2), HEIGHT, CFG)
    assert health.from_block == HEIGHT - 2
    assert {(start, end) for _, start, end in ledger.calls} == {(HEIGHT - 2, HEIGHT)}


def test_no_cache_data_skips_check():
    ledger = FakeLedger(height=HEIGHT)
    health = validate_cache_health(ledger, empty_cache(CFG), HEIGHT, CFG)
    assert health.is_healthy
    assert health.skipped
    assert ledger.calls == []
    assert health.to_dict() == {"isHealthy": True}


def test_query_failure_reports_unhealthy():
    ledger = FakeLedger(height=HEIGHT)
    ledger.fail_all = RpcError("eth_getLogs: HTTP 503 Service Unavailable", status_code=503)

    health = validate_cache_health(ledger, _cache([]), HEIGHT, CFG)

    assert not health.is_healthy
    assert health.discrepancy.startswith("Validation query failed")


def test_window_ends_at_last_cached_block():
    cached = created(1, 11, HEIGHT - 5, 1)
    cache = _cache([cached])
    ledger = FakeLedger(height=HEIGHT + 300, events=[cached, created(2, 12, HEIGHT + 100, 1)])

    health = validate_cache_health(ledger, cache, HEIGHT + 300, CFG)

    assert health.is_healthy
    assert (health.from_block, health.to_block) == (HEIGHT - 8, HEIGHT)


def test_empty_window_is_skipped():
    cache = _cache([], oldest=HEIGHT + 10)
    ledger = FakeLedger(height=HEIGHT)

    health = validate_cache_health(ledger, cache, HEIGHT, CFG)

    assert health.skipped
    assert health.is_healthy
    assert ledger.calls == []
