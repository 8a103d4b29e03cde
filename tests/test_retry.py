"""Tests for RetryExecutor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from bi_agents.core.cancellation import CancellationToken
from bi_agents.core.errors import (
    CancelledError,
    CircuitOpenError,
    NonRetryableProviderError,
    QueueFullError,
    RetryExhaustedError,
    TransientProviderError,
)
from bi_agents.core.retry import RetryExecutor


class Flaky:
    """Raises the queued errors in turn, then returns ``value``."""

    def __init__(self, *errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def _transient(n=1):
    return [TransientProviderError(f"503 #{i}", service="deepseek", status_code=503) for i in range(n)]


class TestRetryExecutor:
    @pytest.mark.asyncio
    async def test_success_returns_immediately(self):
        operation = Flaky()
        assert await RetryExecutor(base_delay=0).call_with_retry(operation) == "ok"
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        operation = Flaky(*_transient(1))
        result = await RetryExecutor(base_delay=0).call_with_retry(operation, max_attempts=2)
        assert result == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self):
        errors = _transient(5)
        operation = Flaky(*errors)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryExecutor(base_delay=0).call_with_retry(operation, max_attempts=3)

        assert operation.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is errors[2]
        assert exc_info.value.__cause__ is errors[2]

    @pytest.mark.asyncio
    async def test_untagged_errors_are_retried(self):
        operation = Flaky(ConnectionError("reset"), ConnectionError("reset"))
        with pytest.raises(RetryExhaustedError):
            await RetryExecutor(base_delay=0).call_with_retry(operation, max_attempts=2)
        assert operation.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            NonRetryableProviderError("401", service="deepseek", status_code=401),
            CircuitOpenError("deepseek", retry_in=10.0),
            QueueFullError("deepseek", capacity=100),
        ],
    )
    async def test_fail_fast_kinds_run_exactly_once(self, error):
        operation = Flaky(error)
        with pytest.raises(type(error)):
            await RetryExecutor(base_delay=0).call_with_retry(operation, max_attempts=5)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        token = CancellationToken()
        token.sleep = AsyncMock()
        operation = Flaky(*_transient(3))

        await RetryExecutor(base_delay=1.0).call_with_retry(
            operation, max_attempts=4, token=token
        )

        delays = [c.args[0] for c in token.sleep.await_args_list]
        assert delays == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_default_max_attempts(self):
        operation = Flaky(*_transient(5))
        with pytest.raises(RetryExhaustedError):
            await RetryExecutor(base_delay=0, default_max_attempts=2).call_with_retry(operation)
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self):
        token = CancellationToken()
        token.cancel()
        operation = Flaky()

        with pytest.raises(CancelledError):
            await RetryExecutor().call_with_retry(operation, token=token)
        assert operation.calls == 0

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff_stops_retrying(self):
        token = CancellationToken()
        operation = Flaky(*_transient(5))
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(CancelledError):
            await RetryExecutor(base_delay=10.0).call_with_retry(
                operation, max_attempts=3, token=token
            )
        assert operation.calls == 1
        assert loop.time() - started < 5.0

    @pytest.mark.asyncio
    async def test_cancellation_wins_over_concurrent_failure(self):
        token = CancellationToken()

        async def fails_after_cancel():
            token.cancel()
            raise NonRetryableProviderError("401", service="deepseek", status_code=401)

        with pytest.raises(CancelledError):
            await RetryExecutor().call_with_retry(fails_after_cancel, token=token)

    def test_backoff_for(self):
        executor = RetryExecutor(base_delay=0.5)
        assert executor.backoff_for(1) == 0.5
        assert executor.backoff_for(3) == 1.5
