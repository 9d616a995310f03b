"""Endpoint selection: first healthy RPC endpoint wins."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .errors import AllEndpointsUnavailableError
from .rpc import JsonRpcClient

logger = logging.getLogger(__name__)


@dataclass
class RpcConnection:
    """A live connection plus the diagnostics published with the result."""

    client: Any
    endpoint: str
    latency_ms: int
    fallbacks_attempted: int
    height: int
    index: int = 0


def select_endpoint(
    endpoints: Sequence[str],
    *,
    connect: Optional[Callable[[str], Any]] = None,
    timeout: float = 10.0,
    start_index: int = 0,
    prior_failures: int = 0,
    clock: Callable[[], float] = time.monotonic,
) -> RpcConnection:
    """Return a connection to the first endpoint whose liveness probe succeeds.

    Each endpoint gets exactly one ``block_number()`` probe. ``start_index`` and
    ``prior_failures`` let a caller resume the pass after a failed run.

    Raises:
        AllEndpointsUnavailableError: If every remaining endpoint fails.
    """
    if connect is None:
        def connect(url: str) -> JsonRpcClient:
            return JsonRpcClient(url, timeout=timeout)

    failures = prior_failures
    last_error: Optional[str] = None

    for index in range(start_index, len(endpoints)):
        url = endpoints[index]
        logger.info(f"Trying RPC endpoint: {url}")
        client = None
        started = clock()
        try:
            client = connect(url)
            height = client.block_number()
        except Exception as exc:
            failures += 1
            last_error = str(exc)
            logger.warning(f"Failed to connect to {url}: {exc}")
            close = getattr(client, "close", None)
            if callable(close):
                close()
            continue

        latency_ms = int(round((clock() - started) * 1000))
        logger.info(f"Connected to {url} ({latency_ms}ms, block {height})")
        return RpcConnection(
            client=client,
            endpoint=url,
            latency_ms=latency_ms,
            fallbacks_attempted=failures,
            height=height,
            index=index,
        )

    raise AllEndpointsUnavailableError(failures, last_error)
