"""Tests for the end-to-end request pipeline."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from pydantic import BaseModel

from promptline.config import Config, GuardrailConfig, ModelConfig
from promptline.context.allocator import Segment, SegmentKind, TrimResult
from promptline.events import types as ev
from promptline.events.bus import Event, EventBus
from promptline.exceptions import (
    PipelineError,
    ProviderHTTPError,
    StreamTimeoutError,
)
from promptline.models.base import ProviderKind
from promptline.models.transport import ProviderTransport
from promptline.pipeline import PromptPipeline, SamplingParams, assemble_prompt

SECRET = "sk-" + "Zx9" * 10


class Answer(BaseModel):
    verdict: str


class FakeTransport:
    """Stands in for ProviderTransport with a scripted reply."""

    def __init__(self, reply: str = "", error: Exception | None = None, time_out: bool = False):
        self.reply = reply
        self.error = error
        self.time_out = time_out
        self.streamed = []

    async def stream(self, request, on_text=None, *, cancel_event=None, on_timeout=None):
        self.streamed.append(request)
        if self.time_out:
            on_timeout()
            raise StreamTimeoutError("No stream data for 30s")
        if self.error is not None:
            raise self.error
        if on_text is not None:
            on_text(self.reply)
        return self.reply


def _record(bus: EventBus) -> list[Event]:
    seen: list[Event] = []
    bus.subscribe_all(seen.append)
    return seen


def _types(events: list[Event]) -> list[str]:
    return [e.event_type for e in events]


def _openai_reply(text: str) -> httpx.Response:
    chunk = json.dumps({"choices": [{"delta": {"content": text}}]})
    return httpx.Response(200, content=f"data: {chunk}\n\ndata: [DONE]\n\n".encode())


REASK_MODEL = ModelConfig(
    provider=ProviderKind.OPENAI,
    model="gpt-4o-mini",
    base_url="https://reask.test/v1",
    api_key="reask-key",
)


def _reask_client(reply: str, seen: list[dict]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "reask.test"
        seen.append(json.loads(request.content))
        return _openai_reply(reply)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAssemblePrompt:
    def test_context_is_fenced(self):
        prompt = assemble_prompt("Explain.", [TrimResult("1", "a.py", 2, 2, "x = 1")])
        assert prompt == "Explain.\n\n### a.py\n```\nx = 1\n```"


class TestPrepare:
    def test_builds_redacted_provider_body(self, config: Config, openai_model: ModelConfig):
        bus = EventBus()
        events = _record(bus)
        pipeline = PromptPipeline(config, openai_model, bus=bus)
        prepared = pipeline.prepare(
            "You review code.",
            f"Why does login fail? key={SECRET}",
            [Segment("c1", "auth.py", "def login():\n    pass\n", SegmentKind.FILE)],
            desired_output=200,
            sampling=SamplingParams(temperature=3.0),
        )

        body = prepared.body
        assert body["model"] == "gpt-4o"
        assert body["messages"][0] == {"role": "system", "content": "You review code."}
        assert body["temperature"] == 2.0
        assert body["max_tokens"] == 200
        assert "### auth.py" in body["messages"][1]["content"]
        assert SECRET not in json.dumps(body)
        assert prepared.warnings == ["Secrets were redacted."]
        assert _types(events) == [ev.BUDGET_ALLOCATED, ev.GUARDRAIL_REDACTED, ev.REQUEST_BUILT]

    def test_guardrail_toggle(self, openai_model: ModelConfig):
        config = Config(guardrails=GuardrailConfig(secrets=False))
        prepared = PromptPipeline(config, openai_model).prepare("", f"key={SECRET}")
        assert SECRET in prepared.body["messages"][0]["content"]
        assert prepared.warnings == []

    def test_overflow_uses_clamped_output(self, config: Config, openai_model: ModelConfig):
        prepared = PromptPipeline(config, openai_model).prepare("", "hi", desired_output=5000)
        plan = prepared.allocation.plan
        assert plan.overflow is True
        assert prepared.request.max_output_tokens == plan.clamped_output_tokens

    def test_json_mode_reaches_body(self, config: Config):
        model = ModelConfig(provider=ProviderKind.GOOGLE, model="gemini-1.5-pro")
        prepared = PromptPipeline(config, model).prepare("", "hi", json_mode=True)
        assert prepared.body["generationConfig"]["responseMimeType"] == "application/json"

    def test_context_window_from_registry(self, config: Config):
        model = ModelConfig(provider=ProviderKind.LOCAL, model="llama3")
        assert PromptPipeline(config, model).context_window == 8192


class TestRun:
    async def test_streams_text(self, config: Config, openai_model: ModelConfig):
        transport = FakeTransport(reply="All good.")
        pipeline = PromptPipeline(config, openai_model, transport=transport)
        events = _record(pipeline.bus)
        seen: list[str] = []
        result = await pipeline.run(pipeline.prepare("", "hi"), seen.append)
        assert result.text == "All good."
        assert seen == ["All good."]
        assert result.parsed is None
        assert ev.STREAM_COMPLETED in _types(events)

    async def test_structured_output_with_reask_model(self, config: Config, openai_model: ModelConfig):
        bodies: list[dict] = []
        client = _reask_client('{"verdict": "fine"}', bodies)
        transport = FakeTransport(reply="Sure! The verdict is fine.")
        pipeline = PromptPipeline(config, openai_model, transport=transport, client=client)
        events = _record(pipeline.bus)

        result = await pipeline.run(pipeline.prepare("", "judge"), schema=Answer, reask=REASK_MODEL)

        assert result.parsed == Answer(verdict="fine")
        assert len(bodies) == 1
        assert bodies[0]["model"] == "gpt-4o-mini"
        assert bodies[0]["temperature"] == 0.0
        assert bodies[0]["response_format"] == {"type": "json_object"}
        reasks = [e for e in events if e.event_type == ev.STRUCTURED_REASK]
        assert [e.data["model"] for e in reasks] == ["gpt-4o-mini"]
        await client.aclose()

    async def test_no_reask_without_reask_model(self, config: Config, openai_model: ModelConfig):
        bodies: list[dict] = []
        client = _reask_client('{"verdict": "fine"}', bodies)
        transport = FakeTransport(reply="Sure! The verdict is fine.")
        pipeline = PromptPipeline(config, openai_model, transport=transport, client=client)
        events = _record(pipeline.bus)

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(pipeline.prepare("", "judge"), schema=Answer)

        assert exc_info.value.cause == "unknown"
        assert bodies == []
        assert len(transport.streamed) == 1
        assert ev.STRUCTURED_REASK not in _types(events)
        await client.aclose()

    async def test_repaired_output_needs_no_reask(self, config: Config, openai_model: ModelConfig):
        bodies: list[dict] = []
        client = _reask_client('{"verdict": "other"}', bodies)
        transport = FakeTransport(reply="```json\n{'verdict': 'ok',}\n```")
        pipeline = PromptPipeline(config, openai_model, transport=transport, client=client)
        result = await pipeline.run(pipeline.prepare("", "judge"), schema=Answer, reask=REASK_MODEL)
        assert result.parsed == Answer(verdict="ok")
        assert bodies == []
        await client.aclose()

    async def test_unrecoverable_structured_output(self, config: Config, openai_model: ModelConfig):
        bodies: list[dict] = []
        client = _reask_client("still no", bodies)
        pipeline = PromptPipeline(
            config, openai_model, transport=FakeTransport(reply="no"), client=client,
        )
        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(pipeline.prepare("", "judge"), schema=Answer, reask=REASK_MODEL)
        assert exc_info.value.cause == "unknown"
        assert len(bodies) == 1
        await client.aclose()

    async def test_provider_error_is_classified(self, config: Config, openai_model: ModelConfig):
        transport = FakeTransport(error=ProviderHTTPError("HTTP 429", status=429))
        pipeline = PromptPipeline(config, openai_model, transport=transport)
        events = _record(pipeline.bus)
        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(pipeline.prepare("", "hi"))
        assert exc_info.value.cause == "rate_limit"
        assert exc_info.value.user_message == "Rate limit hit. Please wait briefly and retry."
        reported = [e for e in events if e.event_type == ev.ERROR_REPORTED]
        assert len(reported) == 1
        assert reported[0].data["cause"] == "rate_limit"

    async def test_callback_failure_is_classified(self, config: Config, openai_model: ModelConfig):
        transport = FakeTransport(reply="All good.")
        pipeline = PromptPipeline(config, openai_model, transport=transport)
        events = _record(pipeline.bus)

        def render(text: str) -> None:
            raise ValueError("render failed")

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(pipeline.prepare("", "hi"), render)

        assert exc_info.value.cause == "unknown"
        assert exc_info.value.user_message == "render failed"
        assert isinstance(exc_info.value.__cause__, ValueError)
        reported = [e for e in events if e.event_type == ev.ERROR_REPORTED]
        assert [e.data["cause"] for e in reported] == ["unknown"]

    async def test_timeout_emits_event(self, config: Config, openai_model: ModelConfig):
        transport = FakeTransport(time_out=True)
        pipeline = PromptPipeline(config, openai_model, transport=transport)
        events = _record(pipeline.bus)
        with pytest.raises(PipelineError) as exc_info:
            await pipeline.run(pipeline.prepare("", "hi"))
        assert exc_info.value.cause == "timeout"
        assert ev.STREAM_TIMEOUT in _types(events)

    async def test_with_http_transport(self, config: Config, openai_model: ModelConfig):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["messages"][-1]["content"] == "ping"
            return _openai_reply("pong")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = ProviderTransport(openai_model, config.stream, client=client)
        pipeline = PromptPipeline(config, openai_model, transport=transport)
        result = await pipeline.run(pipeline.prepare("", "ping"))
        assert result.text == "pong"
        await client.aclose()

    async def test_async_on_text_over_http(self, config: Config, openai_model: ModelConfig):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: _openai_reply("pong")))
        pipeline = PromptPipeline(config, openai_model, client=client)
        seen: list[str] = []

        async def render(text: str) -> None:
            seen.append(text)

        result = await pipeline.run(pipeline.prepare("", "ping"), render)
        assert result.text == "pong"
        assert seen == ["pong"]
        await pipeline.close()
        assert not client.is_closed
        await client.aclose()


class TestClose:
    async def test_close_waits_for_async_observers(self, config: Config, openai_model: ModelConfig):
        pipeline = PromptPipeline(config, openai_model, transport=FakeTransport(reply="ok"))
        seen: list[str] = []

        async def observer(event: Event) -> None:
            await asyncio.sleep(0)
            seen.append(event.event_type)

        pipeline.bus.subscribe(ev.STREAM_COMPLETED, observer)
        await pipeline.run(pipeline.prepare("", "hi"))
        await pipeline.close()
        assert seen == [ev.STREAM_COMPLETED]
