"""Tests for ServiceRegistry wiring."""

import pytest

from bi_agents.config import APISettings, ResilienceSettings, Settings
from bi_agents.core.circuit_breaker import CircuitState
from bi_agents.core.errors import ConfigurationError
from bi_agents.core.registry import ServiceRegistry, build_default_providers
from bi_agents.deepseek_client import DeepSeekClient
from bi_agents.openai_assistant import OpenAIAssistantClient


def _settings(**api_values) -> Settings:
    return Settings(api=APISettings(**api_values), resilience=ResilienceSettings())


class TestDefaultProviders:
    @pytest.mark.asyncio
    async def test_deepseek_is_always_registered(self):
        providers = build_default_providers(_settings())
        try:
            assert list(providers) == ["deepseek"]
            assert isinstance(providers["deepseek"], DeepSeekClient)
        finally:
            for provider in providers.values():
                await provider.aclose()

    @pytest.mark.asyncio
    async def test_openai_needs_key_and_assistant(self):
        providers = build_default_providers(
            _settings(openai_api_key="sk-open", openai_assistant_id="asst_1")
        )
        try:
            assert set(providers) == {"deepseek", "openai"}
            openai = providers["openai"]
            assert isinstance(openai, OpenAIAssistantClient)
            assert openai.assistant_id == "asst_1"
            assert openai.poll_interval == 5.0
        finally:
            for provider in providers.values():
                await provider.aclose()


class TestServiceRegistry:
    @pytest.mark.asyncio
    async def test_per_service_state(self, make_provider, make_registry):
        registry = make_registry(make_provider("deepseek"), make_provider("openai"))

        assert registry.services == ["deepseek", "openai"]
        assert registry.limiter("openai").config.max_requests == 20
        assert registry.breaker("openai").config.failure_threshold == 3
        assert registry.limiter("deepseek") is not registry.limiter("openai")
        assert registry.breaker("deepseek").state is CircuitState.CLOSED
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_unknown_service(self, make_provider, make_registry):
        registry = make_registry(make_provider("deepseek"))
        with pytest.raises(ConfigurationError, match="anthropic"):
            registry.provider("anthropic")
        with pytest.raises(ConfigurationError):
            registry.breaker("anthropic")
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_get_status_shape(self, make_provider, make_registry):
        registry = make_registry(make_provider("deepseek"))
        status = registry.get_status()

        assert set(status) == {"deepseek"}
        assert status["deepseek"]["health"]["status"] == "healthy"
        assert status["deepseek"]["circuit"]["state"] == "closed"
        assert status["deepseek"]["rate_limit"]["max_requests"] == 50
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_probes_use_provider_health(self, make_provider, make_registry):
        provider = make_provider("deepseek")
        provider.healthy = False
        registry = make_registry(provider)

        for name, check in registry.health_checks().items():
            await registry.health.probe(name, check)

        assert registry.get_status()["deepseek"]["health"]["total_requests"] == 1
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_providers(self, make_provider, make_registry):
        provider = make_provider("deepseek")
        registry = make_registry(provider)
        await registry.aclose()
        assert provider.closed

    @pytest.mark.asyncio
    async def test_builds_default_providers_when_none_given(self):
        registry = ServiceRegistry(_settings(deepseek_api_key="sk-deep"))
        assert registry.services == ["deepseek"]
        assert registry.provider("deepseek").api_key == "sk-deep"
        await registry.aclose()
