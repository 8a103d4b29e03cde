"""Error Taxonomy - Typed failures for the invocation layer.

Every failure that crosses a layer boundary carries an ErrorKind tag:
1. RETRYABLE: timeouts, 5xx, 429 - consumes retry budget
2. NON_RETRYABLE: auth, quota, malformed request - fails fast
3. CIRCUIT_OPEN: rejected by breaker policy
4. CANCELLED: user abort, always wins
5. QUEUE_FULL: rejected by admission control

Tags are assigned where the error is produced (the HTTP boundary),
so nothing downstream has to inspect message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification tag attached to invocation failures."""

    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"
    QUEUE_FULL = "queue_full"


class BIAgentsError(Exception):
    """Base class for all errors raised by bi_agents."""

    kind: ErrorKind = ErrorKind.RETRYABLE


class QueueFullError(BIAgentsError):
    """Raised when a rate limiter queue is at capacity."""

    kind = ErrorKind.QUEUE_FULL

    def __init__(self, service: str, capacity: int):
        super().__init__(
            f"Request queue for {service} is full ({capacity} pending). "
            "Please try again later."
        )
        self.service = service
        self.capacity = capacity


class CircuitOpenError(BIAgentsError):
    """Raised when a circuit breaker is open and the call is rejected."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, service: str, retry_in: float = 0.0):
        super().__init__(
            f"Service {service} is temporarily unavailable "
            f"(circuit open, retry in {retry_in:.1f}s)"
        )
        self.service = service
        self.retry_in = retry_in


class CancelledError(BIAgentsError):
    """Raised when the caller's cancellation token fired.

    An ``Exception``, not ``asyncio.CancelledError``: a user abort ends up
    as a result entry, not as a task teardown.
    """

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Request cancelled by user"):
        super().__init__(message)


class RetryExhaustedError(BIAgentsError):
    """Raised when every retry attempt failed with a retryable error."""

    kind = ErrorKind.RETRYABLE

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"All {attempts} attempts failed: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ProviderError(BIAgentsError):
    """An LLM provider call failed.

    Attributes:
        service: Service id of the provider ("deepseek", "openai")
        status_code: HTTP status if the provider answered, else None
    """

    def __init__(
        self,
        message: str,
        service: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeouts, 5xx, 429 and transport failures."""

    kind = ErrorKind.RETRYABLE


class NonRetryableProviderError(ProviderError):
    """Authentication, quota or malformed-request failures."""

    kind = ErrorKind.NON_RETRYABLE


class ConfigurationError(NonRetryableProviderError):
    """A provider is missing credentials or required settings."""


class ChatCreationError(BIAgentsError):
    """The chat/session record could not be created. Fatal to the request."""

    kind = ErrorKind.NON_RETRYABLE


# Statuses that are worth another attempt
RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind."""
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return ErrorKind.RETRYABLE
    return ErrorKind.NON_RETRYABLE


def provider_error_for_status(
    service: str,
    status_code: int,
    detail: str = "",
) -> ProviderError:
    """Build the typed ProviderError for a failed HTTP response."""
    if status_code == 429:
        message = f"{service} rate limit reached (429). Please wait a moment."
    elif status_code in (401, 403):
        message = f"{service} rejected the API key ({status_code})."
    elif status_code >= 500:
        message = f"{service} servers are experiencing issues ({status_code})."
    else:
        message = f"{service} API error: {status_code}"
    if detail:
        message = f"{message} {detail}"

    if classify_status(status_code) is ErrorKind.RETRYABLE:
        return TransientProviderError(message, service=service, status_code=status_code)
    return NonRetryableProviderError(message, service=service, status_code=status_code)


def classify_error(error: BaseException) -> ErrorKind:
    """Return the ErrorKind tag for any exception.

    Untagged exceptions are treated as transient.
    """
    if isinstance(error, BIAgentsError):
        return error.kind
    return ErrorKind.RETRYABLE
