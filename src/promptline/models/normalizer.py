"""Canonical request -> provider wire body translation.

Pure functions only: no network or I/O happens here. Each provider has
one translation function, dispatched through BODY_BUILDERS keyed by
ProviderKind. Sampling fields that were never set are left out of the
body instead of being defaulted.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from promptline.models.base import CanonicalRequest, ProviderKind


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_params(request: CanonicalRequest) -> CanonicalRequest:
    """Bound sampling parameters to ranges every provider accepts."""
    changes: dict[str, Any] = {}
    if request.temperature is not None:
        changes["temperature"] = _clamp(float(request.temperature), 0.0, 2.0)
    if request.top_p is not None:
        changes["top_p"] = _clamp(float(request.top_p), 0.0, 1.0)
    if request.top_k is not None:
        changes["top_k"] = max(1, math.floor(request.top_k))
    if request.max_output_tokens is not None:
        changes["max_output_tokens"] = max(1, math.floor(request.max_output_tokens))
    return replace(request, **changes) if changes else request


def _drop_none(body: dict) -> dict:
    return {key: value for key, value in body.items() if value is not None}


def _stop_list(request: CanonicalRequest) -> list[str] | None:
    return list(request.stop_sequences) if request.stop_sequences is not None else None


def to_openai(request: CanonicalRequest) -> dict:
    messages = request.message_dicts()
    if request.system_text and not any(m["role"] == "system" for m in messages):
        messages.insert(0, {"role": "system", "content": request.system_text})
    body = _drop_none({
        "model": request.model,
        "messages": messages,
        "temperature": request.temperature,
        "top_p": request.top_p,
        "max_tokens": request.max_output_tokens,
        "frequency_penalty": request.frequency_penalty,
        "presence_penalty": request.presence_penalty,
        "stream": True,
    })
    if request.json_mode:
        body["response_format"] = {"type": "json_object"}
    return body


def to_anthropic(request: CanonicalRequest) -> dict:
    return _drop_none({
        "model": request.model,
        "system": request.system_text,
        "messages": [m for m in request.message_dicts() if m["role"] != "system"],
        "temperature": request.temperature,
        "top_p": request.top_p,
        "top_k": request.top_k,
        "max_output_tokens": request.max_output_tokens,
        "stop_sequences": _stop_list(request),
        "stream": True,
    })


def to_google(request: CanonicalRequest) -> dict:
    body: dict[str, Any] = {
        "contents": [
            {"role": m.role, "parts": [{"text": m.content}]}
            for m in request.messages
        ],
    }
    if request.system_text:
        body["systemInstruction"] = {
            "role": "system",
            "parts": [{"text": request.system_text}],
        }
    body["generationConfig"] = _drop_none({
        "temperature": request.temperature,
        "topP": request.top_p,
        "topK": request.top_k,
        "maxOutputTokens": request.max_output_tokens,
        "stopSequences": _stop_list(request),
        "responseMimeType": "application/json" if request.json_mode else "text/plain",
    })
    return body


def flatten_prompt(request: CanonicalRequest) -> str:
    """Single prompt string for completion-style local backends."""
    lines = [f"System:\n{request.system_text}\n"] if request.system_text else []
    lines.extend(f"{m.role.upper()}: {m.content}" for m in request.messages)
    return "\n".join(lines)


def to_local(request: CanonicalRequest) -> dict:
    body: dict[str, Any] = {
        "model": request.model,
        "prompt": flatten_prompt(request),
        "stream": True,
        "options": _drop_none({
            "temperature": request.temperature,
            "top_p": request.top_p,
            "top_k": request.top_k,
            "num_predict": request.max_output_tokens,
            "stop": _stop_list(request),
        }),
    }
    if request.json_mode:
        body["format"] = "json"
    return body


BODY_BUILDERS: dict[ProviderKind, Callable[[CanonicalRequest], dict]] = {
    ProviderKind.OPENAI: to_openai,
    ProviderKind.ANTHROPIC: to_anthropic,
    ProviderKind.GOOGLE: to_google,
    ProviderKind.LOCAL: to_local,
}


def build_provider_body(provider: ProviderKind | str, request: CanonicalRequest) -> dict:
    """Clamp *request* and translate it for *provider*."""
    kind = provider if isinstance(provider, ProviderKind) else ProviderKind.parse(provider)
    return BODY_BUILDERS[kind](clamp_params(request))
