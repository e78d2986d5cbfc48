"""
Pytest tests for the retry combinator and transient-error classification.

Sleeps are recorded instead of awaited so backoff delays can be asserted.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://rpc.test")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def test_policy_delays_grow_and_cap():
    """delay_for doubles from the base delay and never exceeds max_delay_sec."""
    from backend_taxbot.core.retry import RetryPolicy

    policy = RetryPolicy(max_attempts=6, base_delay_sec=1.0, multiplier=2.0, max_delay_sec=5.0)
    assert [policy.delay_for(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_policy_rejects_bad_values():
    from backend_taxbot.core.retry import RetryPolicy

    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay_sec=-1)
    with pytest.raises(ValueError):
        RetryPolicy(multiplier=0.5)


def test_is_transient():
    """Transport errors, 429/5xx and node-side RPC errors retry; 4xx and bad input do not."""
    from backend_taxbot.core.exceptions import RpcError
    from backend_taxbot.core.retry import is_transient

    assert is_transient(httpx.ConnectError("refused"))
    assert is_transient(httpx.ReadTimeout("slow"))
    assert is_transient(_status_error(429))
    assert is_transient(_status_error(503))
    assert not is_transient(_status_error(400))
    assert is_transient(RpcError("getBalance", -32005, "node is behind"))
    assert is_transient(RpcError("getBalance", None, "no result"))
    assert not is_transient(RpcError("getBalance", -32602, "invalid params"))
    assert not is_transient(ValueError("bad"))


def test_retry_gives_up_after_exactly_n_attempts_with_increasing_delay():
    """Every attempt fails: N calls, N-1 sleeps with growing delays, then UpstreamUnavailable."""
    from backend_taxbot.core.exceptions import UpstreamUnavailable
    from backend_taxbot.core.retry import RetryPolicy, retry_async

    calls = []
    sleeps = []

    async def always_down():
        calls.append(1)
        raise httpx.ConnectError("refused")

    async def fake_sleep(delay):
        sleeps.append(delay)

    policy = RetryPolicy(max_attempts=4, base_delay_sec=0.5, multiplier=2.0)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        asyncio.run(retry_async(always_down, policy, operation="getBalance", sleep=fake_sleep))

    assert len(calls) == 4
    assert sleeps == [0.5, 1.0, 2.0]
    assert all(later > earlier for earlier, later in zip(sleeps, sleeps[1:]))
    err = exc_info.value
    assert err.attempts == 4
    assert err.operation == "getBalance"
    assert err.http_status == 503
    assert isinstance(err.__cause__, httpx.ConnectError)


def test_retry_recovers_after_transient_failure():
    from backend_taxbot.core.retry import RetryPolicy, retry_async

    attempts = []
    sleeps = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise _status_error(502)
        return "ok"

    async def fake_sleep(delay):
        sleeps.append(delay)

    result = asyncio.run(retry_async(flaky, RetryPolicy(max_attempts=3), operation="getSlot", sleep=fake_sleep))
    assert result == "ok"
    assert len(attempts) == 3
    assert sleeps == [1.0, 2.0]


def test_retry_does_not_retry_permanent_errors():
    """A non-transient error propagates unchanged on the first attempt."""
    from backend_taxbot.core.exceptions import RpcError
    from backend_taxbot.core.retry import RetryPolicy, retry_async

    calls = []

    async def invalid_params():
        calls.append(1)
        raise RpcError("getTransaction", -32602, "invalid params")

    async def fake_sleep(delay):
        raise AssertionError("must not sleep")

    with pytest.raises(RpcError):
        asyncio.run(retry_async(invalid_params, RetryPolicy(), operation="getTransaction", sleep=fake_sleep))
    assert len(calls) == 1
