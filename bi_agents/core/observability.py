"""Observability utilities for consistent Logfire logging.

This module provides centralized event helpers that ensure:
- Agent runs, retries and cancellations are logged with the same fields
- Circuit transitions and health status changes are tracked per service
- A telemetry failure never breaks an API call
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import logfire

logger = logging.getLogger(__name__)


def _emit(level: str, template: str, **fields: Any) -> None:
    try:
        getattr(logfire, level)(template, **fields)
    except Exception as e:
        logger.debug(f"Failed to emit logfire event: {e}")


# =============================================================================
# AGENT RUN LOGGING
# =============================================================================


def log_agent_started(agent_id: str, service: str, position: int, total: int) -> None:
    """Log the start of one agent call within a run."""
    _emit(
        "info",
        "Agent started: {agent_id} on {service} ({position}/{total})",
        agent_id=agent_id,
        service=service,
        position=position,
        total=total,
    )


def log_agent_finished(
    agent_id: str,
    status: str,
    cached: bool = False,
    latency_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """Log the outcome of one agent call."""
    level = "info" if status == "complete" else "warn"
    _emit(
        level,
        "Agent finished: {agent_id} → {status}",
        agent_id=agent_id,
        status=status,
        cached=cached,
        latency_ms=latency_ms,
        error=error,
    )


def log_run_cancelled(completed: int, total: int) -> None:
    """Log that a run stopped early because the user cancelled."""
    _emit(
        "warn",
        "Run cancelled after {completed}/{total} agents",
        completed=completed,
        total=total,
    )


# =============================================================================
# RESILIENCE LOGGING
# =============================================================================


def log_retry(
    operation: str,
    attempt: int,
    max_attempts: int,
    delay: float,
    error: str,
) -> None:
    """Log a retry after a transient failure."""
    _emit(
        "warn",
        "Retrying {operation}: attempt {attempt}/{max_attempts} in {delay}s",
        operation=operation,
        attempt=attempt,
        max_attempts=max_attempts,
        delay=delay,
        error=error,
    )


def log_circuit_transition(service: str, old_state: str, new_state: str) -> None:
    """Log a circuit breaker state change."""
    level = "warn" if new_state == "open" else "info"
    _emit(
        level,
        "Circuit {service}: {old_state} → {new_state}",
        service=service,
        old_state=old_state,
        new_state=new_state,
    )


def log_cache_hit(agent_id: str, key: str) -> None:
    """Log a response cache hit."""
    _emit("debug", "Cache hit for {agent_id}", agent_id=agent_id, key=key)


def log_health_change(
    service: str,
    old_status: str,
    new_status: str,
    error_rate_pct: float,
    latency_ms: float,
) -> None:
    """Log a change in a service's derived health status."""
    level = "info" if new_status == "healthy" else "warn"
    _emit(
        level,
        "Health {service}: {old_status} → {new_status}",
        service=service,
        old_status=old_status,
        new_status=new_status,
        error_rate_pct=round(error_rate_pct, 1),
        latency_ms=latency_ms,
    )
