"""Circuit Breaker Pattern - Protect Against Cascading Failures.

Implements the circuit breaker pattern to stop calling a failing provider:
1. CLOSED: Normal operation, requests flow through
2. OPEN: Service is failing, requests are rejected immediately
3. HALF_OPEN: Probing whether the service has recovered

A user cancellation is not a provider failure and never moves the circuit.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .errors import CancelledError, CircuitOpenError, QueueFullError
from .observability import log_circuit_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for a circuit breaker."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0  # Rejected while OPEN
    consecutive_failures: int = 0
    half_open_successes: int = 0
    last_failure_time: float = 0.0
    last_success_time: float = 0.0

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.failed_requests / self.total_requests) * 100

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_requests == 0:
            return 100.0
        return (self.successful_requests / self.total_requests) * 100


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures to open
    recovery_timeout: float = 30.0  # Seconds before a half-open probe
    half_open_close_threshold: int = 3  # Consecutive probe successes to close


class CircuitBreaker:
    """Circuit breaker for a single service.

    Protects against cascading failures by:
    1. Tracking consecutive failures
    2. Opening circuit after threshold exceeded
    3. Allowing probe calls after the recovery timeout
    4. Closing circuit after enough probe successes
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._clock = clock
        self._last_state_change = clock()

    @property
    def consecutive_failures(self) -> int:
        return self.stats.consecutive_failures

    @property
    def last_failure_at(self) -> float:
        return self.stats.last_failure_time

    def _recovery_elapsed(self) -> bool:
        return self._clock() - self.stats.last_failure_time >= self.config.recovery_timeout

    @property
    def is_available(self) -> bool:
        """Check if circuit would let a request through right now."""
        if self.state == CircuitState.OPEN:
            return self._recovery_elapsed()
        return True

    def _before_call(self) -> None:
        """Admit or reject a call, moving OPEN -> HALF_OPEN when due."""
        if self.state != CircuitState.OPEN:
            return
        if self._recovery_elapsed():
            self._transition_to(CircuitState.HALF_OPEN)
            return
        self.stats.rejected_requests += 1
        retry_in = self.config.recovery_timeout - (
            self._clock() - self.stats.last_failure_time
        )
        raise CircuitOpenError(self.name, retry_in=max(0.0, retry_in))

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under circuit protection.

        Raises:
            CircuitOpenError: If the circuit is open; ``operation`` is not called
            Original exception: If ``operation`` fails

        User cancellation and local queue rejections pass through without
        counting as a success or a failure.
        """
        self._before_call()
        try:
            result = await operation()
        except (CancelledError, QueueFullError):
            raise
        except Exception as e:
            self.record_failure(str(e))
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful request."""
        self.stats.total_requests += 1
        self.stats.successful_requests += 1
        self.stats.last_success_time = self._clock()
        self.stats.consecutive_failures = 0

        if self.state == CircuitState.HALF_OPEN:
            self.stats.half_open_successes += 1
            if self.stats.half_open_successes >= self.config.half_open_close_threshold:
                self._transition_to(CircuitState.CLOSED)

    def record_failure(self, error: Optional[str] = None) -> None:
        """Record a failed request."""
        self.stats.total_requests += 1
        self.stats.failed_requests += 1
        self.stats.last_failure_time = self._clock()
        self.stats.consecutive_failures += 1

        if error:
            logger.warning(f"Circuit {self.name} failure: {error}")

        if self.state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._transition_to(CircuitState.OPEN)
            logger.warning(f"Circuit {self.name}: Reopening after half-open failure")
        elif (
            self.state == CircuitState.CLOSED
            and self.stats.consecutive_failures >= self.config.failure_threshold
        ):
            logger.warning(
                f"Circuit {self.name}: Opening due to {self.stats.consecutive_failures} "
                f"consecutive failures"
            )
            self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state."""
        old_state = self.state
        self.state = new_state
        self._last_state_change = self._clock()

        if new_state in (CircuitState.HALF_OPEN, CircuitState.OPEN):
            self.stats.half_open_successes = 0
        elif new_state == CircuitState.CLOSED:
            self.stats.consecutive_failures = 0
            self.stats.half_open_successes = 0

        logger.info(f"Circuit {self.name}: {old_state.value} -> {new_state.value}")
        log_circuit_transition(self.name, old_state.value, new_state.value)

    def reset(self) -> None:
        """Reset the circuit breaker to initial state."""
        self.state = CircuitState.CLOSED
        self.stats = CircuitStats()
        self._last_state_change = self._clock()
        logger.info(f"Circuit {self.name}: Reset to CLOSED")

    def get_status(self) -> Dict[str, Any]:
        """Get current status of the circuit breaker."""
        return {
            "name": self.name,
            "state": self.state.value,
            "is_available": self.is_available,
            "total_requests": self.stats.total_requests,
            "successful_requests": self.stats.successful_requests,
            "failed_requests": self.stats.failed_requests,
            "rejected_requests": self.stats.rejected_requests,
            "success_rate": f"{self.stats.success_rate:.1f}%",
            "failure_rate": f"{self.stats.failure_rate:.1f}%",
            "consecutive_failures": self.stats.consecutive_failures,
            "seconds_in_state": self._clock() - self._last_state_change,
        }
