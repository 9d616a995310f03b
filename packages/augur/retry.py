"""Retry with exponential backoff."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(
    failures: int,
    base_seconds: float = 1.0,
    max_seconds: float = 10.0,
) -> float:
    """Delay after ``failures`` consecutive failures: ``base * 2**failures``, capped."""
    if failures < 0:
        failures = 0
    return min(base_seconds * (2 ** failures), max_seconds)


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    base_seconds: float = 1.0,
    max_seconds: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """Call ``operation`` until it succeeds or attempts run out.

    Waits ``base * 2**(attempt-1)`` seconds (1s, 2s, 4s with defaults) between
    attempts. Errors rejected by ``is_retryable`` are raised immediately; the
    last error is raised once ``max_attempts`` is reached.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if is_retryable is not None and not is_retryable(exc):
                raise
            if attempt >= max_attempts:
                logger.error(f"{label} failed after {max_attempts} attempts: {exc}")
                raise
            delay = backoff_delay(attempt - 1, base_seconds, max_seconds)
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_attempts}): {exc}. "
                f"Retrying in {delay:.2f}s"
            )
            sleep(delay)
            attempt += 1
