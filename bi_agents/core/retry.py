"""Retry Executor - Bounded retry with linear backoff.

Wraps a single outbound call:
1. Success returns immediately
2. Cancellation always wins and is never retried
3. Non-retryable, circuit-open and queue-full failures fail fast
4. Anything else waits attempt * base_delay and tries again

Composition order matters: retry is outermost, each attempt goes through
the circuit breaker, which goes through the rate limiter, which makes the
network call.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .cancellation import CancellationToken
from .errors import CancelledError, ErrorKind, RetryExhaustedError, classify_error
from .observability import log_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

FAIL_FAST_KINDS = frozenset(
    {ErrorKind.NON_RETRYABLE, ErrorKind.CIRCUIT_OPEN, ErrorKind.QUEUE_FULL}
)


class RetryExecutor:
    """Runs an operation up to ``max_attempts`` times."""

    def __init__(self, base_delay: float = 1.0, default_max_attempts: int = 2):
        self.base_delay = base_delay
        self.default_max_attempts = default_max_attempts

    def backoff_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return attempt * self.base_delay

    async def call_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        token: Optional[CancellationToken] = None,
        operation_name: str = "call",
    ) -> T:
        """Call ``operation`` until it succeeds or the policy gives up.

        Raises:
            CancelledError: The token fired, whatever the underlying error
            RetryExhaustedError: Every attempt failed with a retryable error
            Original exception: For non-retryable, circuit-open and
                queue-full failures
        """
        attempts = max(1, max_attempts or self.default_max_attempts)
        token = token or CancellationToken()

        for attempt in range(1, attempts + 1):
            token.raise_if_cancelled()
            try:
                return await operation()
            except CancelledError:
                raise
            except Exception as e:
                if token.cancelled:
                    raise CancelledError(token.reason) from e

                kind = classify_error(e)
                if kind is ErrorKind.CANCELLED:
                    raise
                if kind in FAIL_FAST_KINDS:
                    logger.info(
                        f"{operation_name}: not retrying {kind.value} error: {e}"
                    )
                    raise

                logger.warning(
                    f"{operation_name}: attempt {attempt}/{attempts} failed: {e}"
                )
                if attempt >= attempts:
                    raise RetryExhaustedError(attempts, e) from e

                delay = self.backoff_for(attempt)
                log_retry(operation_name, attempt + 1, attempts, delay, str(e))
                await token.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"Exhausted {attempts} attempts for {operation_name}")
