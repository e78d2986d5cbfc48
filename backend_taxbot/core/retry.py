"""
Bounded retry with exponential backoff for upstream calls.

One combinator, parameterized per call site with a RetryPolicy. Only transient
failures (transport errors, timeouts, HTTP 429/5xx, node-side JSON-RPC errors)
are retried; anything else propagates on the first attempt. When the budget is
spent the last error is wrapped in UpstreamUnavailable.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from backend_taxbot.core.exceptions import RpcError, UpstreamUnavailable
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SEC = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SEC = 30.0

# JSON-RPC 2.0 reserves -32000..-32099 for server errors; Solana uses them for
# node health, rate limits and missing slots.
_RPC_SERVER_ERROR_RANGE = range(-32099, -31999)


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts: total calls made, including the first one.
    base_delay_sec: sleep after the first failure.
    multiplier: each further sleep is the previous one times this factor.
    max_delay_sec: cap for a single sleep.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_sec: float = DEFAULT_BASE_DELAY_SEC
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay_sec: float = DEFAULT_MAX_DELAY_SEC

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_sec < 0:
            raise ValueError("base_delay_sec must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Sleep before attempt `attempt + 1`, where attempt is 1-based."""
        return min(self.base_delay_sec * self.multiplier ** (attempt - 1), self.max_delay_sec)


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying (connection-class or server-side)."""
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, RpcError):
        return exc.code is None or exc.code in _RPC_SERVER_ERROR_RANGE
    return False


async def retry_async(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    retry_if: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **log_context: Any,
) -> T:
    """
    Await call() up to policy.max_attempts times.

    Non-retryable errors are re-raised unchanged. After the last failed attempt
    raises UpstreamUnavailable chained to the final error.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await call()
        except Exception as e:
            if not retry_if(e):
                raise
            last_error = e
            logger.warning(
                "upstream_retry",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=str(e),
                **log_context,
            )
            if attempt < policy.max_attempts:
                await sleep(policy.delay_for(attempt))

    logger.error(
        "upstream_give_up",
        operation=operation,
        max_attempts=policy.max_attempts,
        error=str(last_error),
        **log_context,
    )
    raise UpstreamUnavailable(
        f"Upstream call {operation} failed after {policy.max_attempts} attempts",
        details=str(last_error),
        operation=operation,
        attempts=policy.max_attempts,
    ) from last_error
