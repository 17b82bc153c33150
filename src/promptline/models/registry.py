"""Known models and their context windows."""

from __future__ import annotations

from dataclasses import dataclass

from promptline.models.base import ProviderKind

DEFAULT_CONTEXT_WINDOW = 32_000


@dataclass(frozen=True)
class ModelSpec:
    id: str
    provider: ProviderKind
    label: str
    context_window: int


MODEL_REGISTRY: tuple[ModelSpec, ...] = (
    ModelSpec("gpt-5", ProviderKind.OPENAI, "GPT-5", 200_000),
    ModelSpec("gpt-5-mini", ProviderKind.OPENAI, "GPT-5 Mini", 128_000),
    ModelSpec("gpt-5-nano", ProviderKind.OPENAI, "GPT-5 Nano", 64_000),
    ModelSpec("gpt-4o", ProviderKind.OPENAI, "GPT-4o", 128_000),
    ModelSpec("gpt-4o-mini", ProviderKind.OPENAI, "GPT-4o mini", 128_000),
    ModelSpec("gpt-4-turbo", ProviderKind.OPENAI, "GPT-4 Turbo", 128_000),
    ModelSpec("gpt-4", ProviderKind.OPENAI, "GPT-4", 8_192),
    ModelSpec("gpt-3.5-turbo", ProviderKind.OPENAI, "GPT-3.5 Turbo", 4_096),
    ModelSpec("claude-4-opus", ProviderKind.ANTHROPIC, "Claude 4 Opus", 200_000),
    ModelSpec("claude-4-sonnet", ProviderKind.ANTHROPIC, "Claude 4 Sonnet", 200_000),
    ModelSpec(
        "claude-3-5-sonnet-20241022", ProviderKind.ANTHROPIC,
        "Claude 3.5 Sonnet (2024-10-22)", 200_000,
    ),
    ModelSpec(
        "claude-3-5-haiku-20241022", ProviderKind.ANTHROPIC,
        "Claude 3.5 Haiku (2024-10-22)", 200_000,
    ),
    ModelSpec(
        "claude-3-haiku-20240307", ProviderKind.ANTHROPIC,
        "Claude 3 Haiku (2024-03-07)", 200_000,
    ),
    ModelSpec("gemini-2.0-flash-exp", ProviderKind.GOOGLE, "Gemini 2.0 Flash (exp)", 1_000_000),
    ModelSpec("gemini-1.5-pro", ProviderKind.GOOGLE, "Gemini 1.5 Pro", 1_000_000),
    ModelSpec("gemini-1.5-flash", ProviderKind.GOOGLE, "Gemini 1.5 Flash", 1_000_000),
    ModelSpec("gemini-pro", ProviderKind.GOOGLE, "Gemini Pro", 120_000),
    ModelSpec("llama3.1", ProviderKind.LOCAL, "Llama 3.1", 32_768),
    ModelSpec("llama3", ProviderKind.LOCAL, "Llama 3", 8_192),
    ModelSpec("codellama", ProviderKind.LOCAL, "CodeLlama", 8_192),
)

_BY_ID = {spec.id: spec for spec in MODEL_REGISTRY}


def get_context_window(model_id: str) -> int:
    """Context window for *model_id*, or the default for unknown models."""
    spec = _BY_ID.get(model_id)
    return spec.context_window if spec else DEFAULT_CONTEXT_WINDOW
