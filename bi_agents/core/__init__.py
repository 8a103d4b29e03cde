"""Core resilience primitives for calling LLM providers.

This module provides:
- RateLimiter: Sliding-window admission with a priority queue
- CircuitBreaker: Protection against cascading failures
- RetryExecutor: Bounded retry with linear backoff
- ResponseCache: Fingerprinted response caching with TTL
- APIHealthMonitor: Advisory per-service health telemetry
- CancellationToken: Cooperative cancellation threaded through every layer

The composition layer lives in ``core.registry`` (ServiceRegistry) and
``core.orchestrator`` (AgentOrchestrator); import those modules directly.
"""

from .cancellation import STOPPED_BY_USER, CancellationToken, cancellable
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from .errors import (
    BIAgentsError,
    CancelledError,
    ChatCreationError,
    CircuitOpenError,
    ConfigurationError,
    ErrorKind,
    NonRetryableProviderError,
    ProviderError,
    QueueFullError,
    RetryExhaustedError,
    TransientProviderError,
    classify_error,
    classify_status,
)
from .health_monitor import APIHealthMonitor, HealthSnapshot, HealthStatus
from .rate_limiter import RateLimiter, RateLimiterConfig
from .response_cache import ResponseCache
from .retry import RetryExecutor

__all__ = [
    # Cancellation
    "CancellationToken",
    "STOPPED_BY_USER",
    "cancellable",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Errors
    "BIAgentsError",
    "CancelledError",
    "ChatCreationError",
    "CircuitOpenError",
    "ConfigurationError",
    "ErrorKind",
    "NonRetryableProviderError",
    "ProviderError",
    "QueueFullError",
    "RetryExhaustedError",
    "TransientProviderError",
    "classify_error",
    "classify_status",
    # Health
    "APIHealthMonitor",
    "HealthSnapshot",
    "HealthStatus",
    # Rate limiting
    "RateLimiter",
    "RateLimiterConfig",
    # Caching
    "ResponseCache",
    # Retry
    "RetryExecutor",
]
