"""OpenAI Assistants provider.

One invoke is a small workflow against the Assistants v2 API:
1. Create a thread and add the user message
2. Start a run for the configured assistant
3. Poll the run until it completes, fails or the poll budget runs out
4. Read the latest assistant message

If the calling task is cancelled while a run is active, the run is
cancelled server side before the cancellation propagates.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

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

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"

TERMINAL_FAILURES = frozenset({"failed", "cancelled", "expired", "incomplete"})
# Run failure codes worth another attempt
RETRYABLE_RUN_ERRORS = frozenset({"rate_limit_exceeded", "server_error"})


class OpenAIAssistantClient:
    """LLMProvider backed by an OpenAI assistant."""

    service_id = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        assistant_id: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        poll_interval: float = 5.0,
        max_polls: int = 60,
        timeout: float = 15.0,
        http2: bool = False,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.assistant_id = assistant_id
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.organization = organization
        self.project = project
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._client = client or create_async_client(timeout=timeout, http2=http2)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key or not self.assistant_id:
            raise ConfigurationError(
                "OpenAI Assistants not configured. Set OPENAI_API_KEY and "
                "OPENAI_ASSISTANT_ID.",
                service=self.service_id,
            )
        headers = create_auth_headers(self.api_key)
        headers["Content-Type"] = "application/json"
        headers["OpenAI-Beta"] = "assistants=v2"
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        if self.project:
            headers["OpenAI-Project"] = self.project
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = self._headers()
        try:
            response = await self._client.request(
                method, f"{self.base_url}{path}", json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(
                f"OpenAI request timed out: {e}", service=self.service_id
            ) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"Could not reach OpenAI: {e}", service=self.service_id
            ) from e

        if response.status_code >= 400:
            raise provider_error_for_status(
                self.service_id, response.status_code, extract_error_detail(response)
            )
        try:
            return response.json()
        except ValueError as e:
            raise NonRetryableProviderError(
                f"Malformed OpenAI response: {e}",
                service=self.service_id,
                status_code=response.status_code,
            ) from e

    async def _wait_for_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        for attempt in range(1, self.max_polls + 1):
            run = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
            status = run.get("status")
            logger.debug(f"Run {run_id} status {status} (poll {attempt}/{self.max_polls})")

            if status == "completed":
                return run
            if status in TERMINAL_FAILURES:
                error = run.get("last_error") or {}
                message = f"Assistant run {status}: {error.get('message', 'no details')}"
                if error.get("code") in RETRYABLE_RUN_ERRORS or status == "expired":
                    raise TransientProviderError(message, service=self.service_id)
                raise NonRetryableProviderError(message, service=self.service_id)
            if status == "requires_action":
                raise NonRetryableProviderError(
                    "Assistant run requires tool outputs, which are not supported",
                    service=self.service_id,
                )
            await asyncio.sleep(self.poll_interval)

        raise TransientProviderError(
            f"Assistant run did not finish after {self.max_polls} polls",
            service=self.service_id,
        )

    async def _cancel_run(self, thread_id: str, run_id: str) -> None:
        try:
            await self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel")
            logger.info(f"Cancelled assistant run {run_id}")
        except Exception as e:
            logger.warning(f"Failed to cancel assistant run {run_id}: {e}")

    @staticmethod
    def _latest_assistant_text(messages: List[Dict[str, Any]]) -> str:
        for message in reversed(messages):
            if message.get("role") != "assistant":
                continue
            parts = [
                block["text"]["value"]
                for block in message.get("content", [])
                if block.get("type") == "text"
            ]
            if parts:
                return "\n".join(parts)
        return ""

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 800,
        temperature: float = 0.1,
    ) -> Completion:
        start = time.perf_counter()
        thread = await self._request("POST", "/threads", json={})
        thread_id = thread["id"]

        await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": "user", "content": user_prompt},
        )
        run = await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json={
                "assistant_id": self.assistant_id,
                "model": self.model,
                "instructions": system_prompt,
                "max_completion_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        run_id = run["id"]

        try:
            run = await self._wait_for_run(thread_id, run_id)
        except asyncio.CancelledError:
            await self._cancel_run(thread_id, run_id)
            raise

        messages = await self._request(
            "GET", f"/threads/{thread_id}/messages", params={"order": "asc"}
        )
        content = self._latest_assistant_text(messages.get("data", []))
        if not content:
            raise TransientProviderError(
                "Assistant returned no text response", service=self.service_id
            )

        usage = run.get("usage") or {}
        return Completion(
            content=content,
            tokens_used=int(usage.get("total_tokens", 0)),
            model=run.get("model", self.model),
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    async def check_health(self) -> bool:
        """Fetch the assistant definition as a lightweight connectivity check."""
        try:
            await self._request("GET", f"/assistants/{self.assistant_id}")
        except ConfigurationError:
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
