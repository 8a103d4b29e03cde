"""Tests for CancellationToken."""

import asyncio

import pytest

from bi_agents.core.cancellation import STOPPED_BY_USER, CancellationToken, cancellable
from bi_agents.core.errors import CancelledError, ErrorKind


class TestCancellationToken:
    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        assert token.cancel() is True
        assert token.cancel("again") is False
        assert token.cancelled
        assert token.reason == STOPPED_BY_USER

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("user pressed stop")
        with pytest.raises(CancelledError, match="user pressed stop"):
            token.raise_if_cancelled()

    def test_cancelled_error_is_not_asyncio_cancellation(self):
        assert not issubclass(CancelledError, asyncio.CancelledError)
        assert CancelledError().kind is ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_aborts_in_flight_work(self):
        token = CancellationToken()
        aborted = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                aborted.set()
                raise

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with pytest.raises(CancelledError):
            await token.run(slow())
        assert aborted.is_set()

    @pytest.mark.asyncio
    async def test_run_when_already_cancelled_never_starts(self):
        token = CancellationToken()
        token.cancel()
        started = []

        async def work():
            started.append(True)

        with pytest.raises(CancelledError):
            await token.run(work())
        assert started == []

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        token = CancellationToken()

        async def fails():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await token.run(fails())

    @pytest.mark.asyncio
    async def test_sleep_completes_without_cancel(self):
        token = CancellationToken()
        await token.sleep(0.01)
        await token.sleep(0)

    @pytest.mark.asyncio
    async def test_sleep_interrupted_by_cancel(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, token.cancel)
        started = loop.time()
        with pytest.raises(CancelledError):
            await token.sleep(10)
        assert loop.time() - started < 5

    @pytest.mark.asyncio
    async def test_cancellable_without_token(self):
        async def work():
            return "plain"

        assert await cancellable(None, work()) == "plain"
