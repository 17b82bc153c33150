"""HTTP transport for provider bodies.

Posts a normalized body to one backend, feeds the response bytes through
the stream decoder, and pulls text deltas out of each provider's stream
format (SSE for OpenAI, Anthropic and Google; NDJSON for Ollama).
Failures are raised immediately and never retried here.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from promptline.config import ModelConfig, StreamConfig
from promptline.exceptions import ModelConnectionError, ProviderHTTPError
from promptline.models.base import CanonicalRequest, ProviderKind
from promptline.models.normalizer import build_provider_body
from promptline.streaming.decoder import read_text_stream, split_lines, split_sse_events
from promptline.utils.tokens import estimate_tokens

logger = logging.getLogger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"

DEFAULT_BASE_URLS = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com",
    ProviderKind.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
    ProviderKind.LOCAL: "http://localhost:11434",
}


def endpoint_for(kind: ProviderKind, model: str) -> str:
    """Streaming endpoint path for *kind*, relative to the base URL."""
    if kind == ProviderKind.OPENAI:
        return "/chat/completions"
    if kind == ProviderKind.ANTHROPIC:
        return "/v1/messages"
    if kind == ProviderKind.GOOGLE:
        return f"/models/{model}:streamGenerateContent?alt=sse"
    return "/api/generate"


def headers_for(kind: ProviderKind, api_key: str) -> dict[str, str]:
    headers = {"content-type": "application/json"}
    key = api_key.strip()
    if not key:
        return headers
    if kind == ProviderKind.OPENAI:
        headers["Authorization"] = f"Bearer {key}"
    elif kind == ProviderKind.ANTHROPIC:
        headers["x-api-key"] = key
        headers["anthropic-version"] = ANTHROPIC_API_VERSION
    elif kind == ProviderKind.GOOGLE:
        headers["x-goog-api-key"] = key
    return headers


def _provider_error_code(detail: str) -> str:
    """Best-effort provider error code from a JSON error body."""
    try:
        data = json.loads(detail)
    except (json.JSONDecodeError, TypeError):
        return ""
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("code") or error.get("type") or error.get("status") or "")
    return ""


def extract_delta(kind: ProviderKind, payload: str) -> str:
    """Text carried by one stream event, or "" for control events."""
    payload = payload.strip()
    if not payload or payload == "[DONE]":
        return ""
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("stream_event_unparseable provider=%s payload=%s", kind, payload[:120])
        return ""
    if not isinstance(event, dict):
        return ""

    if kind == ProviderKind.OPENAI:
        choices = event.get("choices") or [{}]
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""

    if kind == ProviderKind.ANTHROPIC:
        event_type = event.get("type", "")
        if event_type == "error":
            error = event.get("error", {})
            message = error.get("message", "stream error")
            raise ProviderHTTPError(
                f"Anthropic stream error: {message}",
                status=500,
                detail=message,
                code=error.get("type", "server"),
            )
        if event_type == "content_block_delta":
            delta = event.get("delta", {})
            if delta.get("type") == "text_delta":
                return delta.get("text", "")
        return ""

    if kind == ProviderKind.GOOGLE:
        candidates = event.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    return event.get("response") or ""


class ProviderTransport:
    """Sends provider bodies for one configured model and decodes the reply."""

    def __init__(
        self,
        config: ModelConfig,
        stream_config: StreamConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._stream = stream_config or StreamConfig()
        self._kind = config.provider
        self._base_url = (config.base_url or DEFAULT_BASE_URLS[self._kind]).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._stream.request_timeout_seconds),
        )

    @property
    def kind(self) -> ProviderKind:
        return self._kind

    @property
    def model(self) -> str:
        return self._config.model

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    async def _http_error_body(response: httpx.Response, limit: int = 200) -> str:
        """Safely extract an HTTP error body from a streaming response."""
        try:
            body = await response.aread()
            if body:
                return body.decode("utf-8", errors="replace")[:limit]
        except httpx.HTTPError:
            pass
        return ""

    async def stream(
        self,
        request: CanonicalRequest,
        on_text: Callable[[str], Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        on_timeout: Callable[[], None] | None = None,
    ) -> str:
        """Send *request* and return the assembled response text.

        *on_text* receives each decoded delta and may be a coroutine function.
        """
        body = build_provider_body(self._kind, request)
        url = self._base_url + endpoint_for(self._kind, request.model)
        payload = json.dumps(body, ensure_ascii=False)
        logger.debug(
            "llm_request provider=%s model=%s request_bytes=%d request_est_tokens=%d",
            self._kind, request.model, len(payload.encode("utf-8")), estimate_tokens(payload),
        )

        deltas: list[str] = []
        buffer = ""
        split = split_lines if self._kind == ProviderKind.LOCAL else split_sse_events

        async def deliver(items: list[str]) -> None:
            for item in items:
                delta = extract_delta(self._kind, item)
                if not delta:
                    continue
                deltas.append(delta)
                if on_text is not None:
                    result = on_text(delta)
                    if inspect.isawaitable(result):
                        await result

        async def on_raw(text: str) -> None:
            nonlocal buffer
            items, buffer = split(buffer + text)
            await deliver(items)

        try:
            async with self._client.stream(
                "POST", url, content=payload,
                headers=headers_for(self._kind, self._config.api_key),
            ) as response:
                if response.is_error:
                    detail = await self._http_error_body(response)
                    raise ProviderHTTPError(
                        f"{self._kind} returned HTTP {response.status_code}: {detail}",
                        status=response.status_code,
                        detail=detail,
                        code=_provider_error_code(detail),
                    )
                await read_text_stream(
                    response.aiter_bytes(),
                    on_raw,
                    heartbeat_seconds=self._stream.heartbeat_seconds,
                    idle_timeout_seconds=self._stream.idle_timeout_seconds,
                    cancel_event=cancel_event,
                    on_timeout=on_timeout,
                )
        except httpx.ConnectError as e:
            raise ModelConnectionError(
                f"Cannot connect to {self._kind} at {self._base_url}: {e}",
                original=e,
                code="network",
            ) from e
        except httpx.TimeoutException as e:
            raise ModelConnectionError(
                f"{self._kind} request timed out ({request.model}): {e}",
                original=e,
                code="timeout",
            ) from e
        except httpx.ReadError as e:
            raise ModelConnectionError(
                f"{self._kind} stream interrupted ({request.model}): {e}",
                original=e,
                code="network",
            ) from e

        # A final event or line may arrive without its terminator.
        if buffer.strip():
            if self._kind == ProviderKind.LOCAL:
                await deliver([buffer])
            else:
                await deliver(split_sse_events(buffer + "\n\n")[0])
        return "".join(deltas)

    async def complete(self, request: CanonicalRequest) -> str:
        """Send *request* and return the full text without incremental delivery."""
        return await self.stream(request)
