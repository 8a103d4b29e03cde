"""Cooperative cancellation for agent runs.

A CancellationToken is created per user request and passed explicitly
through every layer (orchestrator -> retry -> breaker -> limiter -> HTTP).
Each suspension point either checks it or races against it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

from .errors import CancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STOPPED_BY_USER = "Analysis stopped by user"


class CancellationToken:
    """A one-shot, idempotent cancel signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason or STOPPED_BY_USER

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        logger.info(f"Cancellation requested: {self.reason}")
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(self.reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising CancelledError if fired meanwhile."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise CancelledError(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the underlying task is cancelled, which for an
        httpx request closes the connection mid-flight.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancelledError(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            if self._event.is_set() and task.exception() is not None:
                raise CancelledError(self.reason) from task.exception()
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Task raised while being cancelled: {e}")
        raise CancelledError(self.reason)


async def cancellable(token: Optional[CancellationToken], awaitable: Awaitable[Any]) -> Any:
    """Await ``awaitable`` under ``token`` if one was given."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)
