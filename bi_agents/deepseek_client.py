"""DeepSeek chat-completions provider.

Translates httpx outcomes into typed ProviderErrors at the boundary so the
retry and breaker layers never inspect message text.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from bi_agents.core.errors import (
    ConfigurationError,
    NonRetryableProviderError,
    TransientProviderError,
    provider_error_for_status,
)
from bi_agents.http_utils import (
    create_async_client,
    create_auth_headers,
    extract_error_detail,
)
from bi_agents.models import Completion

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com/v1"
DEFAULT_MODEL = "deepseek-chat"


class DeepSeekClient:
    """LLMProvider for the DeepSeek chat-completions API."""

    service_id = "deepseek"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 15.0,
        http2: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client or create_async_client(timeout=timeout, http2=http2)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError(
                "DeepSeek API key not configured. Set DEEPSEEK_API_KEY.",
                service=self.service_id,
            )
        headers = create_auth_headers(self.api_key)
        headers["Content-Type"] = "application/json"
        return headers

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = self._headers()
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions", json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(
                f"DeepSeek request timed out: {e}", service=self.service_id
            ) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"Could not reach DeepSeek: {e}", service=self.service_id
            ) from e

        if response.status_code >= 400:
            raise provider_error_for_status(
                self.service_id, response.status_code, extract_error_detail(response)
            )
        return response

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 800,
        temperature: float = 0.1,
    ) -> Completion:
        start = time.perf_counter()
        response = await self._post(
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
                "stream": False,
            }
        )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise NonRetryableProviderError(
                f"Malformed DeepSeek response: {e}",
                service=self.service_id,
                status_code=response.status_code,
            ) from e

        if not content:
            raise TransientProviderError(
                "DeepSeek returned an empty response", service=self.service_id
            )

        usage = data.get("usage") or {}
        return Completion(
            content=content,
            tokens_used=int(usage.get("total_tokens", 0)),
            model=data.get("model", self.model),
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    async def check_health(self) -> bool:
        """Minimal completion used by the background health probe."""
        try:
            await self._post(
                {
                    "model": self.model,
                    "messages": [{"role": "user", "content": "ping"}],
                    "max_tokens": 10,
                }
            )
        except ConfigurationError:
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
