"""Tests for the JSON-RPC client, rate-limit classification and retry helpers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from packages.augur.errors import RpcError
from packages.augur.retry import backoff_delay, retry_with_backoff
from packages.augur.rpc import JsonRpcClient, is_rate_limit_error
from tests._fake_ledger import SleepRecorder


def _response(status_code=200, body=None, headers=None, reason="OK", json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    response.text = "<html>" if json_error else ""
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def client():
    rpc = JsonRpcClient("https://rpc.example", timeout=5)
    rpc.session = MagicMock()
    return rpc


class TestJsonRpcClient:
    def test_block_number_parses_hex(self, client):
        client.session.post.return_value = _response(body={"jsonrpc": "2.0", "id": 1, "result": "0x10"})
        assert client.block_number() == 16

        _, kwargs = client.session.post.call_args
        assert kwargs["json"]["method"] == "eth_blockNumber"
        assert kwargs["timeout"] == 5

    def test_request_ids_increase(self, client):
        client.session.post.return_value = _response(body={"result": "0x1"})
        client.block_number()
        client.block_number()
        ids = [c.kwargs["json"]["id"] for c in client.session.post.call_args_list]
        assert ids == [1, 2]

    def test_get_logs_sends_hex_range(self, client):
        client.session.post.return_value = _response(body={"result": []})
        assert client.get_logs("0xabc", "0xtopic", 1000, 1999) == []

        params = client.session.post.call_args.kwargs["json"]["params"][0]
        assert params == {
            "address": "0xabc",
            "topics": ["0xtopic"],
            "fromBlock": "0x3e8",
            "toBlock": "0x7cf",
        }

    def test_eth_call_targets_latest(self, client):
        client.session.post.return_value = _response(body={"result": "0x" + "00" * 32})
        client.eth_call("0xdef", "0x12345678")
        params = client.session.post.call_args.kwargs["json"]["params"]
        assert params == [{"to": "0xdef", "data": "0x12345678"}, "latest"]

    def test_http_429_is_rate_limit(self, client):
        client.session.post.return_value = _response(
            status_code=429, reason="Too Many Requests", headers={"Retry-After": "3"}
        )
        with pytest.raises(RpcError) as excinfo:
            client.block_number()
        assert excinfo.value.status_code == 429
        assert excinfo.value.retry_after_s == 3
        assert is_rate_limit_error(excinfo.value)

    def test_rpc_error_member_carries_code(self, client):
        client.session.post.return_value = _response(
            body={"error": {"code": -32005, "message": "limit exceeded"}}
        )
        with pytest.raises(RpcError) as excinfo:
            client.get_logs("0xabc", "0xtopic", 0, 1)
        assert excinfo.value.code == -32005
        assert is_rate_limit_error(excinfo.value)

    def test_timeout_raises_rpc_error(self, client):
        client.session.post.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(RpcError, match="timed out"):
            client.block_number()

    def test_connection_error_raises_rpc_error(self, client):
        client.session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RpcError, match="transport error"):
            client.block_number()

    def test_non_json_body_raises(self, client):
        client.session.post.return_value = _response(json_error=True)
        with pytest.raises(RpcError, match="invalid JSON-RPC response"):
            client.block_number()

    def test_unparseable_block_number_raises(self, client):
        client.session.post.return_value = _response(body={"result": None})
        with pytest.raises(RpcError):
            client.block_number()

    def test_close_closes_session(self, client):
        client.close()
        client.session.close.assert_called_once()


@pytest.mark.parametrize(
    "error,expected",
    [
        (RpcError("x", status_code=429), True),
        (RpcError("x", code=-32005), True),
        (Exception("Error code: 1015"), True),
        (Exception("exceeded maximum retry limit"), True),
        (Exception("You are being Rate Limited"), True),
        (RpcError("eth_call: RPC error 3: execution reverted", code=3), False),
        (RpcError("HTTP 503", status_code=503), False),
    ],
)
def test_is_rate_limit_error(error, expected):
    assert is_rate_limit_error(error) is expected


@pytest.mark.parametrize(
    "failures,expected",
    [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (4, 10.0), (10, 10.0)],
)
def test_backoff_delay(failures, expected):
    assert backoff_delay(failures) == expected


def test_retry_succeeds_after_failures():
    sleep = SleepRecorder()
    op = MagicMock(side_effect=[RpcError("a"), RpcError("b"), True])

    assert retry_with_backoff(op, max_attempts=3, sleep=sleep) is True
    assert sleep.calls == [1.0, 2.0]
    assert op.call_count == 3


def test_retry_raises_last_error():
    sleep = SleepRecorder()
    op = MagicMock(side_effect=[RpcError("a"), RpcError("b"), RpcError("c")])

    with pytest.raises(RpcError, match="c"):
        retry_with_backoff(op, max_attempts=3, sleep=sleep)
    assert sleep.calls == [1.0, 2.0]


def test_retry_stops_on_non_retryable_error():
    sleep = SleepRecorder()
    op = MagicMock(side_effect=ValueError("bad"))

    with pytest.raises(ValueError):
        retry_with_backoff(op, is_retryable=lambda exc: isinstance(exc, RpcError), sleep=sleep)
    assert sleep.calls == []
    assert op.call_count == 1


def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry_with_backoff(lambda: 1, max_attempts=0)
