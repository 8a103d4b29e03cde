"""API Health Monitoring - Advisory per-service telemetry.

Tracks rolling call outcomes per service and derives a health status:
- down: error rate above 50%
- degraded: error rate above 20% or last latency above 10s
- healthy: otherwise

Unlike the circuit breaker this never gates calls; reads never raise.
Optional background probes run lightweight connectivity checks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .observability import log_health_change

logger = logging.getLogger(__name__)

DOWN_ERROR_RATE_PCT = 50.0
DEGRADED_ERROR_RATE_PCT = 20.0
DEGRADED_LATENCY_MS = 10_000.0

HealthCheck = Callable[[], Awaitable[bool]]


class HealthStatus(str, Enum):
    """Derived health classification."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class ServiceHealth:
    """Mutable counters for one service."""

    service: str
    total_requests: int = 0
    successful_requests: int = 0
    last_response_time_ms: float = 0.0
    last_checked_at: float = 0.0

    @property
    def error_rate_pct(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return (self.total_requests - self.successful_requests) / self.total_requests * 100

    @property
    def status(self) -> HealthStatus:
        error_rate = self.error_rate_pct
        if error_rate > DOWN_ERROR_RATE_PCT:
            return HealthStatus.DOWN
        if error_rate > DEGRADED_ERROR_RATE_PCT or self.last_response_time_ms > DEGRADED_LATENCY_MS:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY


@dataclass(frozen=True)
class HealthSnapshot:
    """Read-only view of a service's health."""

    service: str
    status: HealthStatus
    error_rate_pct: float
    last_latency_ms: float
    total_requests: int = 0
    successful_requests: int = 0
    last_checked_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "status": self.status.value,
            "error_rate_pct": round(self.error_rate_pct, 1),
            "last_latency_ms": self.last_latency_ms,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "last_checked_at": self.last_checked_at,
        }


class APIHealthMonitor:
    """Per-service success/latency bookkeeping.

    A service that has never been observed reports healthy.
    """

    def __init__(
        self,
        services: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._health: Dict[str, ServiceHealth] = {
            name: ServiceHealth(service=name) for name in services
        }
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def services(self) -> List[str]:
        return list(self._health)

    def record_call(
        self, service: str, success: bool, latency_ms: Optional[float] = None
    ) -> None:
        """Record the outcome of one call attempt.

        ``latency_ms`` is None for attempts rejected before any network
        call; those count toward the error rate but keep the last latency.
        """
        health = self._health.get(service)
        if health is None:
            health = self._health[service] = ServiceHealth(service=service)

        old_status = health.status
        health.total_requests += 1
        if success:
            health.successful_requests += 1
        if latency_ms is not None:
            health.last_response_time_ms = latency_ms
        health.last_checked_at = self._clock()

        new_status = health.status
        logger.debug(
            f"API health [{service}]: {new_status.value}, "
            f"error rate {health.error_rate_pct:.1f}%, "
            f"{health.last_response_time_ms:.0f}ms"
        )
        if new_status != old_status:
            logger.info(f"API health [{service}]: {old_status.value} -> {new_status.value}")
            log_health_change(
                service, old_status.value, new_status.value,
                health.error_rate_pct, health.last_response_time_ms,
            )

    def get_status(self, service: str) -> HealthSnapshot:
        """Snapshot of one service's health."""
        health = self._health.get(service) or ServiceHealth(service=service)
        return HealthSnapshot(
            service=service,
            status=health.status,
            error_rate_pct=health.error_rate_pct,
            last_latency_ms=health.last_response_time_ms,
            total_requests=health.total_requests,
            successful_requests=health.successful_requests,
            last_checked_at=health.last_checked_at,
        )

    def get_all_status(self) -> Dict[str, HealthSnapshot]:
        return {name: self.get_status(name) for name in self._health}

    def is_available(self, service: str) -> bool:
        return self.get_status(service).status != HealthStatus.DOWN

    async def probe(self, service: str, check: HealthCheck) -> bool:
        """Run one connectivity check and record its outcome."""
        start = time.perf_counter()
        try:
            healthy = bool(await check())
        except Exception as e:
            logger.warning(f"Health check for {service} failed: {e}")
            healthy = False
        self.record_call(service, healthy, (time.perf_counter() - start) * 1000)
        return healthy

    async def start_background_checks(
        self,
        checks: Dict[str, HealthCheck],
        interval: float = 300.0,
    ) -> None:
        """Start a loop probing every service in ``checks`` each ``interval`` seconds."""
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.ensure_future(self._probe_loop(checks, interval))
        logger.info("Started API health check loop")

    async def stop_background_checks(self) -> None:
        """Stop the background probe loop."""
        if self._probe_task is None:
            return
        self._probe_task.cancel()
        try:
            await self._probe_task
        except asyncio.CancelledError:
            pass
        self._probe_task = None
        logger.info("Stopped API health check loop")

    async def _probe_loop(self, checks: Dict[str, HealthCheck], interval: float) -> None:
        while True:
            for service, check in checks.items():
                await self.probe(service, check)
            await asyncio.sleep(interval)
