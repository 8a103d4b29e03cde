"""Pytest configuration and fixtures for bi-agents tests.

To support `async def` tests without pytest-asyncio, we provide a minimal
hook that runs coroutine test functions using the stdlib's asyncio.
"""

import asyncio
import inspect
from typing import Callable, List, Optional

import logfire
import pytest

from bi_agents.config import (
    APISettings,
    ResilienceSettings,
    Settings,
    reset_settings,
)
from bi_agents.core.registry import ServiceRegistry
from bi_agents.models import Agent, Completion

PROVIDER_ENV_VARS = (
    "DEEPSEEK_API_KEY",
    "OPENAI_API_KEY",
    "OPENAI_ASSISTANT_ID",
    "LOGFIRE_TOKEN",
)


@pytest.fixture(scope="session", autouse=True)
def quiet_logfire():
    """Keep telemetry local and silent during tests."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch):
    """Make sure real credentials never leak into a test."""
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class FakeClock:
    """Manually advanced clock for time-based state machines."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


class FakeProvider:
    """In-process LLMProvider.

    ``script`` is consumed one entry per invoke: an exception instance is
    raised, a string is returned as content, a callable is awaited with
    the user prompt. When the script runs out the last entry repeats.
    """

    def __init__(self, service_id: str = "deepseek", script: Optional[list] = None):
        self.service_id = service_id
        self.script = list(script or ["ok"])
        self.calls: List[str] = []
        self.system_prompts: List[str] = []
        self.healthy = True
        self.closed = False

    async def invoke(self, system_prompt, user_prompt, max_tokens=800, temperature=0.1):
        self.calls.append(user_prompt)
        self.system_prompts.append(system_prompt)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            step = await step(user_prompt)
        return Completion(content=step, tokens_used=10, model="fake")

    async def check_health(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


def fast_settings(**overrides) -> Settings:
    """Settings with no real waiting between attempts or agents."""
    values = dict(
        inter_agent_delay=0.0,
        retry_base_delay=0.0,
        limiter_tick_interval=0.01,
        request_timeout=2.0,
    )
    values.update(overrides)
    return Settings(api=APISettings(), resilience=ResilienceSettings(**values))


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return fast_settings


@pytest.fixture
def settings() -> Settings:
    return fast_settings()


@pytest.fixture
def make_registry(settings) -> Callable[..., ServiceRegistry]:
    def factory(*providers: FakeProvider, settings: Settings = settings, clock=None):
        return ServiceRegistry(
            settings,
            providers={p.service_id: p for p in providers},
            clock=clock,
        )

    return factory


def make_agent(agent_id: str, service: str = "deepseek") -> Agent:
    return Agent(
        id=agent_id,
        display_name=agent_id.title(),
        description=f"{agent_id} persona",
        service=service,
        system_prompt=f"You are {agent_id}.",
    )


@pytest.fixture
def agent_factory() -> Callable[..., Agent]:
    return make_agent


def pytest_pyfunc_call(pyfuncitem: pytest.Item) -> Optional[bool]:
    """Enable running `async def` tests without external plugins.

    If the test function is a coroutine function, execute it via asyncio.run.
    Return True to signal that the call was handled, allowing pytest to
    proceed without complaining about missing async plugins.
    """
    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        # Build the kwargs that pytest would normally inject (fixtures)
        kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        asyncio.run(test_func(**kwargs))
        return True
    return None
