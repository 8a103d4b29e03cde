"""Tests for pydantic-settings configuration."""

from bi_agents.config import (
    APISettings,
    ResilienceSettings,
    Settings,
    get_settings,
    reset_settings,
)


class TestDefaults:
    def test_resilience_defaults(self):
        resilience = ResilienceSettings()
        assert resilience.deepseek_max_requests == 50
        assert resilience.deepseek_window_seconds == 60.0
        assert resilience.deepseek_queue_capacity == 100
        assert resilience.openai_max_requests == 20
        assert resilience.openai_queue_capacity == 50
        assert resilience.deepseek_failure_threshold == 5
        assert resilience.deepseek_recovery_timeout == 30.0
        assert resilience.openai_failure_threshold == 3
        assert resilience.openai_recovery_timeout == 60.0
        assert resilience.half_open_close_threshold == 3
        assert resilience.cache_ttl_seconds == 300.0
        assert resilience.cache_capacity == 100
        assert resilience.retry_max_attempts == 2
        assert resilience.request_timeout == 15.0
        assert resilience.batch_size == 2

    def test_per_service_configs(self):
        resilience = ResilienceSettings()
        deepseek = resilience.rate_limiter_config("deepseek")
        openai = resilience.rate_limiter_config("openai")
        assert (deepseek.max_requests, deepseek.queue_capacity) == (50, 100)
        assert (openai.max_requests, openai.queue_capacity) == (20, 50)
        assert resilience.circuit_breaker_config("openai").failure_threshold == 3
        assert resilience.circuit_breaker_config("deepseek").recovery_timeout == 30.0
        assert resilience.request_timeout_for("deepseek") == 15.0
        assert resilience.request_timeout_for("openai") == 330.0

    def test_no_credentials_by_default(self):
        api = APISettings()
        assert api.get_key_value("deepseek") is None
        assert not api.has_provider("deepseek")
        assert not api.has_provider("openai")
        assert api.get_key_value("unknown") is None


class TestEnvironment:
    def test_prefixed_overrides(self, monkeypatch):
        monkeypatch.setenv("BI_AGENTS_RETRY_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("BI_AGENTS_DEEPSEEK_MAX_REQUESTS", "10")
        resilience = ResilienceSettings()
        assert resilience.retry_max_attempts == 4
        assert resilience.deepseek_max_requests == 10

    def test_provider_keys_use_plain_names(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deep")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-open")
        api = APISettings()
        assert api.get_key_value("deepseek") == "sk-deep"
        assert api.has_provider("deepseek")
        # An assistant id is required as well
        assert not api.has_provider("openai")

        monkeypatch.setenv("OPENAI_ASSISTANT_ID", "asst_1")
        assert APISettings().has_provider("openai")

    def test_secrets_are_masked(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deep")
        assert "sk-deep" not in repr(APISettings())

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-new")
        assert get_settings().api.get_key_value("deepseek") is None
        reset_settings()
        assert get_settings().api.get_key_value("deepseek") == "sk-new"

    def test_settings_aggregate(self):
        settings = Settings()
        assert isinstance(settings.api, APISettings)
        assert isinstance(settings.resilience, ResilienceSettings)
        assert settings.http2 is False
