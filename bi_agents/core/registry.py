"""Service Registry - One place that owns per-service resilience state.

Built once, eagerly, at process start and handed to the orchestrator:
- one RateLimiter and one CircuitBreaker per configured service
- one shared ResponseCache, APIHealthMonitor and RetryExecutor
- the LLM provider for each service

Everything a call needs is reachable from here, so tests build a fresh
registry instead of resetting module state. State is shared by every
session that uses the same registry.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from bi_agents.config import DEEPSEEK_SERVICE, OPENAI_SERVICE, Settings
from bi_agents.deepseek_client import DeepSeekClient
from bi_agents.models import Completion
from bi_agents.openai_assistant import OpenAIAssistantClient

from .circuit_breaker import CircuitBreaker
from .errors import ConfigurationError
from .health_monitor import APIHealthMonitor, HealthCheck
from .rate_limiter import RateLimiter
from .response_cache import ResponseCache
from .retry import RetryExecutor

logger = logging.getLogger(__name__)


class LLMProvider(Protocol):
    """What the invocation layer needs from a remote model."""

    service_id: str

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 800,
        temperature: float = 0.1,
    ) -> Completion: ...

    async def check_health(self) -> bool: ...

    async def aclose(self) -> None: ...


def build_default_providers(settings: Settings) -> Dict[str, LLMProvider]:
    """Providers for every service the environment is configured for.

    DeepSeek is always registered; without a key its calls fail with a
    non-retryable ConfigurationError.
    """
    api = settings.api
    resilience = settings.resilience
    providers: Dict[str, LLMProvider] = {
        DEEPSEEK_SERVICE: DeepSeekClient(
            api_key=api.get_key_value(DEEPSEEK_SERVICE),
            base_url=api.deepseek_api_url,
            model=api.deepseek_model,
            timeout=resilience.request_timeout,
            http2=settings.http2,
        )
    }
    if api.has_provider(OPENAI_SERVICE):
        providers[OPENAI_SERVICE] = OpenAIAssistantClient(
            api_key=api.get_key_value(OPENAI_SERVICE),
            assistant_id=api.openai_assistant_id,
            base_url=api.openai_api_url,
            model=api.openai_model,
            organization=api.openai_organization,
            project=api.openai_project,
            poll_interval=resilience.openai_poll_interval,
            max_polls=resilience.openai_max_polls,
            timeout=resilience.request_timeout,
            http2=settings.http2,
        )
    return providers


class ServiceRegistry:
    """Eagerly constructed container for providers and resilience state."""

    def __init__(
        self,
        settings: Settings,
        providers: Optional[Mapping[str, LLMProvider]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings
        resilience = settings.resilience
        monotonic = clock or time.monotonic

        if providers is None:
            providers = build_default_providers(settings)
        self.providers: Dict[str, LLMProvider] = dict(providers)

        self.limiters: Dict[str, RateLimiter] = {
            name: RateLimiter(name, resilience.rate_limiter_config(name), clock=monotonic)
            for name in self.providers
        }
        self.breakers: Dict[str, CircuitBreaker] = {
            name: CircuitBreaker(name, resilience.circuit_breaker_config(name), clock=monotonic)
            for name in self.providers
        }
        self.cache = ResponseCache(
            ttl=resilience.cache_ttl_seconds,
            capacity=resilience.cache_capacity,
            prompt_prefix_chars=resilience.cache_prompt_prefix_chars,
            clock=monotonic,
        )
        self.health = APIHealthMonitor(services=self.providers, clock=clock or time.time)
        self.retry = RetryExecutor(
            base_delay=resilience.retry_base_delay,
            default_max_attempts=resilience.retry_max_attempts,
        )
        logger.info(f"Service registry ready: {', '.join(self.providers) or 'no services'}")

    @property
    def services(self) -> List[str]:
        return list(self.providers)

    def _lookup(self, table: Mapping[str, Any], service: str) -> Any:
        try:
            return table[service]
        except KeyError:
            raise ConfigurationError(
                f"No provider configured for service '{service}'", service=service
            ) from None

    def provider(self, service: str) -> LLMProvider:
        return self._lookup(self.providers, service)

    def limiter(self, service: str) -> RateLimiter:
        return self._lookup(self.limiters, service)

    def breaker(self, service: str) -> CircuitBreaker:
        return self._lookup(self.breakers, service)

    def health_checks(self) -> Dict[str, HealthCheck]:
        return {name: provider.check_health for name, provider in self.providers.items()}

    async def start_health_checks(self, interval: Optional[float] = None) -> None:
        await self.health.start_background_checks(
            self.health_checks(),
            interval=interval or self.settings.resilience.health_check_interval,
        )

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Per-service health, breaker and limiter snapshot for display."""
        return {
            name: {
                "health": self.health.get_status(name).to_dict(),
                "circuit": self.breakers[name].get_status(),
                "rate_limit": self.limiters[name].get_stats(),
            }
            for name in self.providers
        }

    async def aclose(self) -> None:
        """Stop background work and release provider connections."""
        await self.health.stop_background_checks()
        for limiter in self.limiters.values():
            await limiter.aclose()
        for name, provider in self.providers.items():
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning(f"Error closing provider {name}: {e}")
