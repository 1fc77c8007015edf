"""Sub-agent backend for OpenAI-compatible chat completion APIs.

Sends the sub-agent's role and requirements as the system message and the
task (or refinement) prompt as the user message to ``/chat/completions``.
"""

from __future__ import annotations

import os
import time
from typing import Any

import httpx

from arbiter.core.config import BackendConfig
from arbiter.core.errors import BackendError
from arbiter.core.logging import get_logger
from arbiter.quality.models import ValidationContext

_logger = get_logger("backend.http")

SYSTEM_TEMPLATE = (
    "You are the {subagent} sub-agent. Respond with a JSON document containing "
    '"deliverables" (with "analysis" and "recommendations"), '
    '"structured_operations" and "metadata".'
)


class HttpSubAgentBackend:
    """Invoke sub-agents through an HTTP chat completions endpoint.

    The httpx client is created lazily on first use so the backend can be
    constructed outside an event loop. Call ``close()`` (or use the backend
    as an async context manager) to release it.

    Args:
        config: Endpoint, model and request settings.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or BackendConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    def _api_key(self) -> str | None:
        return os.environ.get(self.config.api_key_env)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            api_key = self._api_key()
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def invoke(self, prompt: str, context: ValidationContext) -> str:
        """Send ``prompt`` and return the completion text.

        Raises:
            BackendError: On transport errors, non-2xx responses, or a
                response without completion text.
        """
        system = SYSTEM_TEMPLATE.format(subagent=context.subagent_id)
        if context.quality_criteria:
            system += f"\n\nQuality requirements:\n{context.quality_criteria}"
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

        _logger.debug(
            "backend.request",
            endpoint=f"{self.base_url}/chat/completions",
            model=self.config.model,
            subagent_id=context.subagent_id,
            prompt_length=len(prompt),
        )
        start = time.monotonic()
        try:
            client = await self._get_client()
            response = await client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            _logger.error("backend.timeout", error=str(e))
            raise BackendError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            _logger.error("backend.connection_error", error=str(e))
            raise BackendError(f"Connection error: {e}") from e
        duration = time.monotonic() - start

        if response.status_code >= 400:
            _logger.error(
                "backend.error_response",
                status_code=response.status_code,
                duration_seconds=duration,
                response_text=response.text[:500],
            )
            raise BackendError(
                f"API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise BackendError(f"Malformed completion response: {e}") from e
        if not isinstance(content, str) or not content:
            raise BackendError("Completion response has no content")

        usage = data.get("usage") or {}
        _logger.info(
            "backend.completed",
            subagent_id=context.subagent_id,
            duration_seconds=round(duration, 3),
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )
        return content

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> HttpSubAgentBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
