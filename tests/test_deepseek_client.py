"""Tests for the DeepSeek provider, driven through httpx.MockTransport."""

import json

import httpx
import pytest

from bi_agents.core.errors import (
    ConfigurationError,
    ErrorKind,
    NonRetryableProviderError,
    TransientProviderError,
)
from bi_agents.deepseek_client import DeepSeekClient


def _client(handler, api_key="sk-test"):
    return DeepSeekClient(
        api_key=api_key,
        base_url="https://deepseek.test/v1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _completion(content="Strategic answer", total_tokens=123):
    return {
        "model": "deepseek-chat",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": total_tokens},
    }


class TestInvoke:
    @pytest.mark.asyncio
    async def test_successful_completion(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion())

        client = _client(handler)
        completion = await client.invoke("system", "user", max_tokens=800, temperature=0.1)
        await client.aclose()

        assert completion.content == "Strategic answer"
        assert completion.tokens_used == 123
        assert completion.model == "deepseek-chat"
        assert seen["url"] == "https://deepseek.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "deepseek-chat"
        assert seen["body"]["max_tokens"] == 800
        assert seen["body"]["temperature"] == 0.1
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    async def test_retryable_statuses(self, status):
        client = _client(lambda request: httpx.Response(status, json={"error": {"message": "busy"}}))

        with pytest.raises(TransientProviderError) as exc_info:
            await client.invoke("s", "u")
        await client.aclose()

        assert exc_info.value.status_code == status
        assert exc_info.value.kind is ErrorKind.RETRYABLE
        assert "busy" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 402, 403, 404, 422])
    async def test_non_retryable_statuses(self, status):
        client = _client(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(NonRetryableProviderError) as exc_info:
            await client.invoke("s", "u")
        await client.aclose()

        assert exc_info.value.status_code == status
        assert exc_info.value.kind is ErrorKind.NON_RETRYABLE

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        client = _client(handler)
        with pytest.raises(TransientProviderError, match="timed out"):
            await client.invoke("s", "u")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(TransientProviderError):
            await client.invoke("s", "u")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_any_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_completion())

        client = _client(handler, api_key=None)
        with pytest.raises(ConfigurationError):
            await client.invoke("s", "u")
        await client.aclose()
        assert calls == []

    @pytest.mark.asyncio
    async def test_malformed_body_is_non_retryable(self):
        client = _client(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(NonRetryableProviderError, match="Malformed"):
            await client.invoke("s", "u")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_content_is_transient(self):
        client = _client(lambda request: httpx.Response(200, json=_completion(content="")))
        with pytest.raises(TransientProviderError):
            await client.invoke("s", "u")
        await client.aclose()


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_on_success(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("pong"))

        client = _client(handler)
        assert await client.check_health() is True
        await client.aclose()
        assert bodies[0]["max_tokens"] == 10

    @pytest.mark.asyncio
    async def test_unconfigured_is_unhealthy(self):
        client = _client(lambda request: httpx.Response(200, json=_completion()), api_key="")
        assert await client.check_health() is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_propagates_to_the_probe(self):
        client = _client(lambda request: httpx.Response(503))
        with pytest.raises(TransientProviderError):
            await client.check_health()
        await client.aclose()
