"""Agent Orchestration - Runs a user request across the selected agents.

This module is the single entry point the UI layer calls. For every agent:
1. Check the cancellation token; a fired token ends the run
2. Look the request up in the ResponseCache
3. On a miss, call the provider through
   RetryExecutor -> CircuitBreaker -> RateLimiter -> provider
4. Store successes in the cache; turn failures into error entries

Failures stay local to their agent, except cancellation, which stops the
whole run. Results always come back in request order.

Usage:
    from bi_agents.core.orchestrator import AgentOrchestrator

    orchestrator = AgentOrchestrator(registry)
    results = await orchestrator.run_agents(prompt, agents, files, token)
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from bi_agents.agents import build_user_prompt
from bi_agents.config import ResilienceSettings
from bi_agents.models import (
    Agent,
    AgentCallRequest,
    AgentCallResult,
    AgentStatus,
    Completion,
    FileSummary,
)

from .cancellation import STOPPED_BY_USER, CancellationToken
from .errors import (
    CancelledError,
    CircuitOpenError,
    ErrorKind,
    QueueFullError,
    TransientProviderError,
    classify_error,
)
from .observability import (
    log_agent_finished,
    log_agent_started,
    log_cache_hit,
    log_run_cancelled,
)
from .registry import ServiceRegistry

logger = logging.getLogger(__name__)

# Admission priority for interactive agent calls; background work uses 0
INTERACTIVE_PRIORITY = 1


def stopped_result(agent_id: str) -> AgentCallResult:
    return AgentCallResult(
        agent_id=agent_id,
        content=STOPPED_BY_USER,
        status=AgentStatus.ERROR,
        error_kind=ErrorKind.CANCELLED.value,
    )


class AgentOrchestrator:
    """Coordinates agent calls over the resilience stack of a ServiceRegistry.

    Sequential processing is the default. ``run_agents_parallel`` trades
    simpler cancellation for throughput by running small batches
    concurrently behind the same contract.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        settings: Optional[ResilienceSettings] = None,
    ):
        self.registry = registry
        self.settings = settings or registry.settings.resilience
        self._token: Optional[CancellationToken] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Cancel the in-flight run. Safe to call repeatedly or with no run."""
        if self._token is None:
            return False
        return self._token.cancel(reason)

    def get_health_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: snapshot.to_dict()
            for name, snapshot in self.registry.health.get_all_status().items()
        }

    async def run_agents(
        self,
        prompt: str,
        agents: Sequence[Agent],
        files: Sequence[FileSummary] = (),
        token: Optional[CancellationToken] = None,
        file_analysis: str = "",
    ) -> List[AgentCallResult]:
        """Run ``agents`` one at a time against ``prompt``.

        Returns one result per agent that was reached, in request order.
        When the token fires, the agent in flight (or about to start) gets
        a "stopped by user" entry and later agents get none.
        """
        token = token or CancellationToken()
        self._token = token
        requests = self._build_requests(prompt, agents, files, token, file_analysis)
        results: List[AgentCallResult] = []
        total = len(requests)

        logger.info(f"Running {total} agent(s) sequentially")
        for position, request in enumerate(requests, start=1):
            if token.cancelled:
                results.append(stopped_result(request.agent_id))
                break

            result = await self._run_agent(request, position, total)
            results.append(result)
            if token.cancelled:
                break

            if position < total:
                try:
                    await token.sleep(self.settings.inter_agent_delay)
                except CancelledError:
                    # The next iteration records the stop for the next agent
                    continue

        if token.cancelled:
            log_run_cancelled(
                sum(1 for r in results if r.status == AgentStatus.COMPLETE), total
            )
        return results

    async def run_agents_parallel(
        self,
        prompt: str,
        agents: Sequence[Agent],
        files: Sequence[FileSummary] = (),
        token: Optional[CancellationToken] = None,
        batch_size: Optional[int] = None,
        file_analysis: str = "",
    ) -> List[AgentCallResult]:
        """Run ``agents`` in concurrent batches of ``batch_size``.

        Results keep request order. A cancelled batch reports its in-flight
        agents as stopped; later batches produce no entries.
        """
        token = token or CancellationToken()
        self._token = token
        size = max(1, batch_size or self.settings.batch_size)
        requests = self._build_requests(prompt, agents, files, token, file_analysis)
        results: List[AgentCallResult] = []
        total = len(requests)

        logger.info(f"Running {total} agent(s) in batches of {size}")
        for start in range(0, total, size):
            batch = requests[start : start + size]
            if token.cancelled:
                results.append(stopped_result(batch[0].agent_id))
                break

            batch_results = await asyncio.gather(
                *[
                    self._run_agent(request, start + offset + 1, total)
                    for offset, request in enumerate(batch)
                ]
            )
            results.extend(batch_results)
            if token.cancelled:
                break

            if start + size < total:
                try:
                    await token.sleep(self.settings.inter_agent_delay)
                except CancelledError:
                    continue

        if token.cancelled:
            log_run_cancelled(
                sum(1 for r in results if r.status == AgentStatus.COMPLETE), total
            )
        return results

    # ------------------------------------------------------------------
    # One agent
    # ------------------------------------------------------------------

    @staticmethod
    def _build_requests(
        prompt: str,
        agents: Sequence[Agent],
        files: Sequence[FileSummary],
        token: CancellationToken,
        file_analysis: str,
    ) -> List[AgentCallRequest]:
        return [
            AgentCallRequest(
                agent=agent,
                prompt_text=prompt,
                attached_files=list(files),
                file_analysis=file_analysis,
                token=token,
            )
            for agent in agents
        ]

    async def _run_agent(
        self,
        request: AgentCallRequest,
        position: int,
        total: int,
    ) -> AgentCallResult:
        """Produce exactly one result for ``request``; never raises."""
        agent = request.agent
        token = request.token or CancellationToken()
        log_agent_started(agent.id, agent.service, position, total)
        cache = self.registry.cache
        key = cache.fingerprint(agent.id, request.prompt_text, request.file_hashes)

        cached = cache.get(key)
        if cached is not None:
            log_cache_hit(agent.id, key)
            log_agent_finished(agent.id, AgentStatus.COMPLETE.value, cached=True)
            return AgentCallResult(
                agent_id=agent.id,
                content=cached,
                status=AgentStatus.COMPLETE,
                cached=True,
            )

        user_prompt = build_user_prompt(
            request.prompt_text,
            request.attached_files,
            request.file_analysis,
            max_chars=self.settings.max_prompt_chars,
        )
        try:
            completion = await self.invoke_agent(agent, user_prompt, token)
        except Exception as e:
            if token.cancelled:
                log_agent_finished(agent.id, AgentStatus.ERROR.value, error=STOPPED_BY_USER)
                return stopped_result(agent.id)
            kind = classify_error(e)
            logger.warning(f"Agent {agent.id} failed ({kind.value}): {e}")
            log_agent_finished(agent.id, AgentStatus.ERROR.value, error=str(e))
            return AgentCallResult(
                agent_id=agent.id,
                content=str(e),
                status=AgentStatus.ERROR,
                error_kind=kind.value,
            )

        if token.cancelled:
            # Finished after the user stopped the run; report the stop instead
            return stopped_result(agent.id)

        cache.set(key, completion.content)
        log_agent_finished(
            agent.id, AgentStatus.COMPLETE.value, latency_ms=completion.latency_ms
        )
        return AgentCallResult(
            agent_id=agent.id,
            content=completion.content,
            status=AgentStatus.COMPLETE,
        )

    async def invoke_agent(
        self,
        agent: Agent,
        user_prompt: str,
        token: CancellationToken,
    ) -> Completion:
        """Call the agent's provider through retry, breaker and limiter.

        Raises the final failure; every attempt is recorded in the health
        monitor, including rejections by the breaker or the limiter.
        """
        service = agent.service
        provider = self.registry.provider(service)
        breaker = self.registry.breaker(service)
        limiter = self.registry.limiter(service)
        health = self.registry.health
        timeout = self.settings.request_timeout_for(service)
        system_prompt = agent.resolved_system_prompt()

        async def network_call() -> Completion:
            start = time.perf_counter()
            try:
                completion = await token.run(
                    asyncio.wait_for(
                        provider.invoke(
                            system_prompt,
                            user_prompt,
                            max_tokens=self.settings.max_tokens,
                            temperature=self.settings.temperature,
                        ),
                        timeout=timeout,
                    )
                )
            except asyncio.TimeoutError as e:
                health.record_call(service, False, (time.perf_counter() - start) * 1000)
                raise TransientProviderError(
                    f"{service} request timed out after {timeout:g}s", service=service
                ) from e
            except Exception:
                health.record_call(service, False, (time.perf_counter() - start) * 1000)
                raise
            health.record_call(service, True, (time.perf_counter() - start) * 1000)
            return completion

        async def attempt() -> Completion:
            try:
                return await breaker.execute(
                    lambda: limiter.enqueue(
                        network_call, priority=INTERACTIVE_PRIORITY, token=token
                    )
                )
            except (CircuitOpenError, QueueFullError):
                # No network call happened; keep the last measured latency
                health.record_call(service, False)
                raise

        return await self.registry.retry.call_with_retry(
            attempt, token=token, operation_name=f"{agent.id}@{service}"
        )
