"""Exception taxonomy for the fork risk calculator."""

from __future__ import annotations

from typing import Optional


class ForkRiskError(Exception):
    """Base class for all fork risk calculator errors."""


class ConfigLoadError(ForkRiskError, ValueError):
    """Raised when a config or contracts document cannot be loaded."""


class RpcError(ForkRiskError):
    """Raised when a JSON-RPC call fails at the transport or protocol level."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        retry_after_s: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retry_after_s = retry_after_s


class AllEndpointsUnavailableError(ForkRiskError):
    """Raised when every candidate RPC endpoint failed its liveness probe."""

    def __init__(self, attempted: int, last_error: Optional[str] = None):
        message = f"All RPC endpoints failed (attempted {attempted})"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempted = attempted
        self.last_error = last_error


class LedgerUnavailableError(ForkRiskError):
    """Raised when neither the forking check nor the dispute scan produced data."""


class EventDecodeError(ForkRiskError, ValueError):
    """Raised when a raw log or cached event cannot be normalized."""


class ResultWriteError(ForkRiskError, OSError):
    """Raised when the published result document cannot be written."""
