"""Request pipeline: allocate, redact, normalize, stream, recover.

``PromptPipeline.prepare`` is synchronous and pure apart from event
emission; ``PromptPipeline.run`` performs the network call. Every failure
that leaves ``run``, apart from task cancellation, is a ``PipelineError``
carrying a classified cause and a fixed user-safe message.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from promptline.config import Config, ModelConfig
from promptline.context.allocator import AllocationResult, Segment, TrimResult, allocate_tokens
from promptline.events import types as ev
from promptline.events.bus import ErrorReporter, Event, EventBus
from promptline.exceptions import PipelineError
from promptline.guardrails.redact import GuardResult, enabled_kinds, redact
from promptline.models.base import CanonicalRequest, Message
from promptline.models.normalizer import build_provider_body
from promptline.models.registry import get_context_window
from promptline.models.transport import ProviderTransport
from promptline.structured.safejson import Reask, parse_with_schema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplingParams:
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None


@dataclass(frozen=True)
class PreparedRequest:
    """Everything decided before the request leaves the process."""

    request_id: str
    allocation: AllocationResult
    system_guard: GuardResult
    prompt_guard: GuardResult
    request: CanonicalRequest
    body: dict

    @property
    def warnings(self) -> list[str]:
        seen: list[str] = []
        for warning in [*self.system_guard.warnings, *self.prompt_guard.warnings]:
            if warning not in seen:
                seen.append(warning)
        return seen


@dataclass
class PipelineResult:
    request_id: str
    text: str
    parsed: Any = None
    warnings: list[str] = field(default_factory=list)


def assemble_prompt(user_text: str, context: Sequence[TrimResult]) -> str:
    """User text followed by each kept context segment in a fenced block."""
    blocks = [user_text] if user_text else []
    for item in context:
        if item.text:
            blocks.append(f"### {item.label}\n```\n{item.text}\n```")
    return "\n\n".join(blocks)


class _ObservedReask:
    """Transport wrapper that announces the single re-ask."""

    def __init__(self, transport: ProviderTransport, announce: Callable[[], None]):
        self._transport = transport
        self._announce = announce

    async def complete(self, request: CanonicalRequest) -> str:
        self._announce()
        return await self._transport.complete(request)


class PromptPipeline:
    """Runs one configured model end to end."""

    def __init__(
        self,
        config: Config,
        model: ModelConfig,
        transport: ProviderTransport | None = None,
        bus: EventBus | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._model = model
        self._client = client
        self._transport = transport
        self._owns_transport = transport is None
        self._bus = bus or EventBus()
        self._reporter = ErrorReporter(self._bus)

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def context_window(self) -> int:
        return self._model.context_window or get_context_window(self._model.model)

    @property
    def transport(self) -> ProviderTransport:
        if self._transport is None:
            self._transport = ProviderTransport(self._model, self._config.stream, client=self._client)
        return self._transport

    async def close(self, drain_timeout: float = 5.0) -> None:
        """Release the transport this pipeline built and flush async observers."""
        if self._owns_transport and self._transport is not None:
            await self._transport.close()
        await self._bus.drain(timeout=drain_timeout)

    def _emit(self, event_type: str, request_id: str, **data: Any) -> None:
        self._bus.emit(Event(event_type=event_type, request_id=request_id, data=data))

    def prepare(
        self,
        system_text: str,
        user_text: str,
        context: Sequence[Segment] = (),
        *,
        desired_output: int | None = None,
        json_mode: bool = False,
        sampling: SamplingParams | None = None,
    ) -> PreparedRequest:
        """Budget, redact and normalize one request without sending it."""
        request_id = uuid.uuid4().hex[:12]
        sampling = sampling or SamplingParams()

        allocation = allocate_tokens(
            system_text,
            user_text,
            list(context),
            self.context_window,
            desired_output=desired_output,
            allocation=self._config.allocation,
            model_id=self._model.model,
        )
        self._emit(ev.BUDGET_ALLOCATED, request_id, **allocation.to_report())

        active = enabled_kinds(self._config.guardrails)
        system_guard = redact(allocation.system.text, active)
        prompt_guard = redact(assemble_prompt(allocation.user.text, allocation.context), active)
        if system_guard.redactions or prompt_guard.redactions:
            kinds = sorted(k.value for k in system_guard.kinds | prompt_guard.kinds)
            self._emit(
                ev.GUARDRAIL_REDACTED, request_id,
                count=len(system_guard.redactions) + len(prompt_guard.redactions),
                kinds=kinds,
            )

        plan = allocation.plan
        max_output = desired_output
        if plan is not None and plan.overflow:
            max_output = plan.clamped_output_tokens

        request = CanonicalRequest(
            model=self._model.model,
            messages=(Message("user", prompt_guard.text),),
            system_text=system_guard.text or None,
            temperature=sampling.temperature,
            top_p=sampling.top_p,
            top_k=sampling.top_k,
            max_output_tokens=max_output,
            stop_sequences=sampling.stop_sequences,
            frequency_penalty=sampling.frequency_penalty,
            presence_penalty=sampling.presence_penalty,
            json_mode=json_mode or None,
        )
        body = build_provider_body(self._model.provider, request)
        self._emit(
            ev.REQUEST_BUILT, request_id,
            provider=self._model.provider.value,
            model=self._model.model,
            prompt_tokens=allocation.prompt_total,
            max_output_tokens=max_output,
        )
        logger.debug(
            "request_built id=%s provider=%s model=%s prompt_tokens=%d",
            request_id, self._model.provider, self._model.model, allocation.prompt_total,
        )
        return PreparedRequest(
            request_id=request_id,
            allocation=allocation,
            system_guard=system_guard,
            prompt_guard=prompt_guard,
            request=request,
            body=body,
        )

    async def run(
        self,
        prepared: PreparedRequest,
        on_text: Callable[[str], Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        schema: type | None = None,
        reask: ModelConfig | None = None,
    ) -> PipelineResult:
        """Send *prepared* and return the streamed text.

        With *schema*, the text is also recovered into an instance of it.
        One re-ask is allowed only when *reask* names the model to ask.
        """
        request_id = prepared.request_id

        def on_timeout() -> None:
            self._emit(
                ev.STREAM_TIMEOUT, request_id,
                idle_timeout_seconds=self._config.stream.idle_timeout_seconds,
            )

        try:
            text = await self.transport.stream(
                prepared.request, on_text,
                cancel_event=cancel_event, on_timeout=on_timeout,
            )
            self._emit(ev.STREAM_COMPLETED, request_id, chars=len(text))
            parsed = None
            if schema is not None:
                parsed = await self._recover(text, schema, reask, request_id)
        except Exception as e:
            facing = self._reporter.report(e, request_id)
            raise PipelineError(
                str(e), cause=facing.cause.value, user_message=facing.message,
            ) from e

        return PipelineResult(
            request_id=request_id,
            text=text,
            parsed=parsed,
            warnings=prepared.warnings,
        )

    async def _recover(
        self,
        text: str,
        schema: type,
        reask_model: ModelConfig | None,
        request_id: str,
    ) -> Any:
        if reask_model is None:
            return await parse_with_schema(text, schema)

        def announce() -> None:
            self._emit(ev.STRUCTURED_REASK, request_id, model=reask_model.model)

        reask_transport = ProviderTransport(reask_model, self._config.stream, client=self._client)
        try:
            reask = Reask(_ObservedReask(reask_transport, announce), reask_model.model)
            return await parse_with_schema(text, schema, reask)
        finally:
            await reask_transport.close()
