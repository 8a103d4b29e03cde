"""Rate Limiter - Sliding-window admission control with a priority queue.

Each downstream service gets one RateLimiter:
1. Admission: at most max_requests admissions inside any window_seconds
2. Queueing: calls beyond capacity wait in a priority queue
   (higher priority first, FIFO within a priority)
3. Backpressure: enqueue fails with QueueFullError once queue_capacity
   calls are waiting that the window cannot admit
4. Scheduling: a ticker re-checks admission every tick_interval while
   anything is queued

Admission counts attempts, not successes: a task that raises still used
its slot.
"""

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from .cancellation import CancellationToken, cancellable
from .errors import CancelledError, QueueFullError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RateLimiterConfig:
    """Configuration for a rate limiter."""

    max_requests: int = 50  # Admissions per window
    window_seconds: float = 60.0
    queue_capacity: int = 100  # Max pending calls
    tick_interval: float = 0.1  # Scheduler period while calls are queued


@dataclass
class RateLimiterStats:
    """Counters for a rate limiter."""

    admitted: int = 0
    rejected: int = 0  # Rejected because the queue was full
    cancelled: int = 0  # Left the queue before admission


@dataclass(eq=False)
class QueuedCall:
    """A call waiting for admission."""

    id: str
    priority: int
    enqueued_at: float
    sequence: int
    admitted: "asyncio.Future[float]" = field(repr=False)

    def __lt__(self, other: "QueuedCall") -> bool:
        """Higher priority first, then enqueue order."""
        if self.priority != other.priority:
            return self.priority > other.priority
        return self.sequence < other.sequence


class RateLimiter:
    """Per-service sliding-window rate limiter.

    Every enqueue goes through the queue. A drain is scheduled for the next
    event-loop iteration, so a lone call with spare capacity is admitted
    at once, while calls enqueued in the same loop turn are admitted in
    priority order.
    """

    def __init__(
        self,
        name: str,
        config: Optional[RateLimiterConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or RateLimiterConfig()
        self.stats = RateLimiterStats()
        self._clock = clock
        self._timestamps: Deque[float] = deque()
        self._queue: List[QueuedCall] = []
        self._sequence = itertools.count()
        self._drain_handle: Optional[asyncio.Handle] = None
        self._ticker: Optional[asyncio.Task] = None

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def _prune(self, now: float) -> None:
        """Drop admission timestamps that fell out of the window."""
        cutoff = now - self.config.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _waiting(self) -> int:
        """Queued calls the current window cannot admit on the next drain."""
        self._prune(self._clock())
        free_slots = max(0, self.config.max_requests - len(self._timestamps))
        return max(0, len(self._queue) - free_slots)

    def can_make_request(self) -> bool:
        """Check whether the window has spare admission capacity."""
        self._prune(self._clock())
        return len(self._timestamps) < self.config.max_requests

    async def enqueue(
        self,
        task: Callable[[], Awaitable[T]],
        priority: int = 0,
        token: Optional[CancellationToken] = None,
    ) -> T:
        """Run ``task`` once admission allows it.

        Args:
            task: Zero-argument coroutine function, called at most once
            priority: Higher runs first
            token: Optional cancellation token; cancelling while queued
                removes the call and raises CancelledError

        Returns:
            Whatever ``task`` returns; its exceptions propagate unchanged.
        """
        if token is not None:
            token.raise_if_cancelled()

        waiting = self._waiting()
        if waiting >= self.config.queue_capacity:
            self.stats.rejected += 1
            logger.warning(
                f"Rate limiter {self.name}: queue full ({waiting} waiting)"
            )
            raise QueueFullError(self.name, self.config.queue_capacity)

        loop = asyncio.get_running_loop()
        sequence = next(self._sequence)
        item = QueuedCall(
            id=f"{self.name}-req-{sequence}",
            priority=priority,
            enqueued_at=self._clock(),
            sequence=sequence,
            admitted=loop.create_future(),
        )
        heapq.heappush(self._queue, item)
        logger.debug(
            f"Queued {item.id} (priority {priority}), queue size {len(self._queue)}"
        )

        self._schedule_drain(loop)
        self._ensure_ticker()

        try:
            await cancellable(token, item.admitted)
        except (CancelledError, asyncio.CancelledError):
            self._discard(item)
            raise

        return await task()

    def _discard(self, item: QueuedCall) -> None:
        """Remove a call that gave up before admission."""
        if not item.admitted.done():
            item.admitted.cancel()
        if item in self._queue:
            self._queue.remove(item)
            heapq.heapify(self._queue)
            self.stats.cancelled += 1
            logger.debug(f"Removed {item.id} from queue before admission")

    def _schedule_drain(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._drain_handle is None:
            self._drain_handle = loop.call_soon(self._drain)

    def _ensure_ticker(self) -> None:
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.ensure_future(self._tick_loop())

    def _drain(self) -> None:
        """Admit queued calls while the window has capacity."""
        self._drain_handle = None
        now = self._clock()
        self._prune(now)
        while self._queue and len(self._timestamps) < self.config.max_requests:
            item = heapq.heappop(self._queue)
            if item.admitted.done():
                continue
            self._timestamps.append(now)
            self.stats.admitted += 1
            item.admitted.set_result(now)
            logger.debug(
                f"Admitted {item.id} after {now - item.enqueued_at:.3f}s in queue"
            )

    async def _tick_loop(self) -> None:
        while self._queue:
            await asyncio.sleep(self.config.tick_interval)
            self._drain()

    async def aclose(self) -> None:
        """Stop the scheduler and fail every call still queued."""
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        for item in self._queue:
            if not item.admitted.done():
                item.admitted.set_exception(
                    CancelledError(f"Rate limiter {self.name} closed")
                )
        self._queue.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get current window and queue statistics."""
        self._prune(self._clock())
        return {
            "name": self.name,
            "current_requests": len(self._timestamps),
            "max_requests": self.config.max_requests,
            "window_seconds": self.config.window_seconds,
            "queue_size": len(self._queue),
            "max_queue_size": self.config.queue_capacity,
            "can_make_request": len(self._timestamps) < self.config.max_requests,
            "admitted": self.stats.admitted,
            "rejected": self.stats.rejected,
            "cancelled": self.stats.cancelled,
        }
