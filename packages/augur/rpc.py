"""JSON-RPC client over a requests session, with rate-limit classification."""

import itertools
import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import RpcError

logger = logging.getLogger(__name__)

# Substrings providers use when throttling (Cloudflare 1015, ethers retry exhaustion).
RATE_LIMIT_MARKERS = (
    "429",
    "too many requests",
    "error code: 1015",
    "rate limit",
    "exceeded maximum retry limit",
)

# JSON-RPC "limit exceeded" (EIP-1474).
RATE_LIMIT_RPC_CODES = (-32005,)


def is_rate_limit_error(error: BaseException) -> bool:
    """Return True when ``error`` looks like provider throttling."""
    if isinstance(error, RpcError):
        if error.status_code == 429 or error.code in RATE_LIMIT_RPC_CODES:
            return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class JsonRpcClient:
    """Ethereum JSON-RPC client bound to one endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        max_retries: int = 0,
        backoff_factor: float = 0.5,
        retry_statuses: tuple = (502, 503, 504),
    ):
        """
        Initialize JSON-RPC client.

        Args:
            rpc_url: Endpoint URL
            timeout: Request timeout in seconds
            max_retries: Transport-level retries for gateway errors (0 = one try)
            backoff_factor: Multiplier for urllib3 exponential backoff
            retry_statuses: HTTP status codes retried at the transport level

        Rate limiting (429) is never retried here; callers decide how to back off.
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.retry_statuses = retry_statuses
        self._ids = itertools.count(1)

        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=list(self.retry_statuses),
            allowed_methods=["POST"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Content-Type": "application/json"})

        return session

    def close(self) -> None:
        self.session.close()

    def call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Execute one JSON-RPC call and return its ``result``.

        Raises:
            RpcError: On transport failure, non-2xx status, malformed body, or
                a JSON-RPC ``error`` member.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise RpcError(f"{method}: request timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise RpcError(f"{method}: transport error: {exc}") from exc

        if response.status_code >= 400:
            retry_after = response.headers.get("Retry-After", "")
            raise RpcError(
                f"{method}: HTTP {response.status_code} {response.reason}",
                status_code=response.status_code,
                retry_after_s=int(retry_after) if retry_after.strip().isdigit() else None,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RpcError(f"{method}: invalid JSON-RPC response: {response.text[:200]!r}") from exc

        if not isinstance(body, dict):
            raise RpcError(f"{method}: unexpected JSON-RPC response type {type(body).__name__}")

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method}: RPC error {code}: {message}", code=code)

        return body.get("result")

    def block_number(self) -> int:
        """Return the current block height (``eth_blockNumber``)."""
        result = self.call("eth_blockNumber")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise RpcError(f"eth_blockNumber: unparseable result {result!r}") from exc

    def get_logs(self, address: str, topic0: str, from_block: int, to_block: int) -> list:
        """Return raw logs for ``address``/``topic0`` in [from_block, to_block]."""
        params = {
            "address": address,
            "topics": [topic0],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        result = self.call("eth_getLogs", [params])
        if result is None:
            return []
        if not isinstance(result, list):
            raise RpcError(f"eth_getLogs: expected list, got {type(result).__name__}")
        return result

    def eth_call(self, to: str, data: str) -> str:
        """Execute a read-only ``eth_call`` against ``latest``."""
        result = self.call("eth_call", [{"to": to, "data": data}, "latest"])
        if not isinstance(result, str):
            raise RpcError(f"eth_call: expected hex string, got {result!r}")
        return result
