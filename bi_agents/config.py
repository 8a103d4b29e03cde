"""
Typed settings management using pydantic-settings.

Configuration is split into:
- APISettings: provider credentials and endpoints (no prefix, the usual
  provider env var names)
- ResilienceSettings: limiter, breaker, cache, retry and timing knobs
  (``BI_AGENTS_`` prefix)
- Settings: the aggregate handed to the ServiceRegistry

Usage:
    from bi_agents.config import get_settings

    settings = get_settings()
    print(settings.resilience.deepseek_max_requests)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from bi_agents.core.circuit_breaker import CircuitBreakerConfig
from bi_agents.core.rate_limiter import RateLimiterConfig

DEEPSEEK_SERVICE = "deepseek"
OPENAI_SERVICE = "openai"


class APISettings(BaseSettings):
    """API keys and endpoints for LLM providers.

    SecretStr prevents accidental logging of sensitive values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # DeepSeek
    deepseek_api_key: Optional[SecretStr] = Field(default=None, alias="DEEPSEEK_API_KEY")
    deepseek_api_url: str = Field(
        default="https://api.deepseek.com/v1", alias="DEEPSEEK_API_URL"
    )
    deepseek_model: str = Field(default="deepseek-chat", alias="DEEPSEEK_MODEL")

    # OpenAI Assistants
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    openai_assistant_id: Optional[str] = Field(default=None, alias="OPENAI_ASSISTANT_ID")
    openai_organization: Optional[str] = Field(default=None, alias="OPENAI_ORGANIZATION")
    openai_project: Optional[str] = Field(default=None, alias="OPENAI_PROJECT")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_api_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_API_URL")

    # Logfire
    logfire_token: Optional[SecretStr] = Field(default=None, alias="LOGFIRE_TOKEN")

    def get_key_value(self, service: str) -> Optional[str]:
        """Raw API key for a service id, or None if not configured."""
        value = {
            DEEPSEEK_SERVICE: self.deepseek_api_key,
            OPENAI_SERVICE: self.openai_api_key,
        }.get(service)
        if value is None:
            return None
        return value.get_secret_value() or None

    def has_provider(self, service: str) -> bool:
        if service == OPENAI_SERVICE:
            return bool(self.get_key_value(service) and self.openai_assistant_id)
        return bool(self.get_key_value(service))


class ResilienceSettings(BaseSettings):
    """Rate limiting, circuit breaking, caching, retry and timing."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BI_AGENTS_",
        extra="ignore",
    )

    # Rate limiting
    deepseek_max_requests: int = Field(default=50, ge=1)
    deepseek_window_seconds: float = Field(default=60.0, gt=0)
    deepseek_queue_capacity: int = Field(default=100, ge=1)
    openai_max_requests: int = Field(default=20, ge=1)
    openai_window_seconds: float = Field(default=60.0, gt=0)
    openai_queue_capacity: int = Field(default=50, ge=1)
    limiter_tick_interval: float = Field(default=0.1, gt=0)

    # Circuit breaking
    deepseek_failure_threshold: int = Field(default=5, ge=1)
    deepseek_recovery_timeout: float = Field(default=30.0, ge=0)
    openai_failure_threshold: int = Field(default=3, ge=1)
    openai_recovery_timeout: float = Field(default=60.0, ge=0)
    half_open_close_threshold: int = Field(default=3, ge=1)

    # Response cache
    cache_ttl_seconds: float = Field(default=300.0, ge=0)
    cache_capacity: int = Field(default=100, ge=1)
    cache_prompt_prefix_chars: int = Field(default=100, ge=1)

    # Retry
    retry_max_attempts: int = Field(default=2, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    # Timing
    request_timeout: float = Field(default=15.0, gt=0)
    # Covers a whole thread/run/poll cycle, not a single HTTP call
    openai_request_timeout: float = Field(default=330.0, gt=0)
    inter_agent_delay: float = Field(default=0.5, ge=0)
    batch_size: int = Field(default=2, ge=1)
    health_check_interval: float = Field(default=300.0, gt=0)

    # Completion parameters
    max_tokens: int = Field(default=800, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_prompt_chars: int = Field(default=8000, ge=1)

    # OpenAI run polling
    openai_poll_interval: float = Field(default=5.0, gt=0)
    openai_max_polls: int = Field(default=60, ge=1)

    def rate_limiter_config(self, service: str) -> RateLimiterConfig:
        if service == OPENAI_SERVICE:
            return RateLimiterConfig(
                max_requests=self.openai_max_requests,
                window_seconds=self.openai_window_seconds,
                queue_capacity=self.openai_queue_capacity,
                tick_interval=self.limiter_tick_interval,
            )
        return RateLimiterConfig(
            max_requests=self.deepseek_max_requests,
            window_seconds=self.deepseek_window_seconds,
            queue_capacity=self.deepseek_queue_capacity,
            tick_interval=self.limiter_tick_interval,
        )

    def request_timeout_for(self, service: str) -> float:
        if service == OPENAI_SERVICE:
            return self.openai_request_timeout
        return self.request_timeout

    def circuit_breaker_config(self, service: str) -> CircuitBreakerConfig:
        if service == OPENAI_SERVICE:
            return CircuitBreakerConfig(
                failure_threshold=self.openai_failure_threshold,
                recovery_timeout=self.openai_recovery_timeout,
                half_open_close_threshold=self.half_open_close_threshold,
            )
        return CircuitBreakerConfig(
            failure_threshold=self.deepseek_failure_threshold,
            recovery_timeout=self.deepseek_recovery_timeout,
            half_open_close_threshold=self.half_open_close_threshold,
        )


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BI_AGENTS_",
        extra="ignore",
        case_sensitive=False,
    )

    api: APISettings = Field(default_factory=APISettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    http2: bool = Field(default=False, description="Enable HTTP/2 for provider calls")
    log_level: str = Field(default="WARNING")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings singleton.

    To reload after the environment changed, call reset_settings() first.
    """
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings instance."""
    get_settings.cache_clear()
