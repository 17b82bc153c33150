"""Configuration loader for promptline.

Loads from promptline.toml with sensible defaults when file is absent.
Configuration is loaded once at startup and passed via dependency injection.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from promptline.models.base import ProviderKind


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class AllocationConfig:
    """Shares of the input budget, each clamped to [0, 1] at use."""

    system_pct: float = 0.10
    user_pct: float = 0.20
    context_pct: float = 0.70
    max_context_tokens: int = 600


@dataclass(frozen=True)
class StreamConfig:
    heartbeat_seconds: float = 10.0
    idle_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 120.0


@dataclass(frozen=True)
class GuardrailConfig:
    """Which redaction categories are active."""

    secrets: bool = True
    pii: bool = True
    risk_commands: bool = True
    exfil_urls: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ModelConfig:
    """Configuration for a single model backend."""

    provider: ProviderKind
    model: str = ""
    base_url: str = ""
    api_key: str = ""
    context_window: int = 0  # 0 = look up in the model registry

    def __repr__(self) -> str:
        key_display = f"***{self.api_key[-4:]}" if self.api_key else ""
        return (
            f"ModelConfig(provider={self.provider.value!r}, model={self.model!r}, "
            f"base_url={self.base_url!r}, api_key={key_display!r})"
        )


@dataclass(frozen=True)
class Config:
    """Top-level promptline configuration."""

    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    models: dict[str, ModelConfig] = field(default_factory=dict)


def _number(data: dict, key: str, default: float, section: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"[{section}] {key} must be a number, got {value!r}")
    return float(value)


def _parse_model_config(name: str, data: dict) -> ModelConfig:
    """Parse a single model configuration section."""
    try:
        provider = ProviderKind.parse(str(data["provider"]))
    except ValueError as e:
        raise ConfigError(f"[models.{name}] {e}") from e

    window = data.get("context_window", 0)
    try:
        window = max(0, int(window))
    except (TypeError, ValueError):
        raise ConfigError(
            f"[models.{name}] context_window must be an integer, got {window!r}"
        ) from None

    return ModelConfig(
        provider=provider,
        model=str(data.get("model", "")),
        base_url=str(data.get("base_url", "")),
        api_key=str(data.get("api_key", "")),
        context_window=window,
    )


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If path is None, searches for promptline.toml in current directory
    then ~/.promptline/. Returns default config if no file is found.
    """
    if path is None:
        candidates = [
            Path.cwd() / "promptline.toml",
            Path.home() / ".promptline" / "promptline.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return Config()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    alloc_data = raw.get("allocation", {})
    allocation = AllocationConfig(
        system_pct=_number(alloc_data, "system_pct", 0.10, "allocation"),
        user_pct=_number(alloc_data, "user_pct", 0.20, "allocation"),
        context_pct=_number(alloc_data, "context_pct", 0.70, "allocation"),
        max_context_tokens=int(
            _number(alloc_data, "max_context_tokens", 600, "allocation")
        ),
    )

    stream_data = raw.get("stream", {})
    stream = StreamConfig(
        heartbeat_seconds=_number(stream_data, "heartbeat_seconds", 10.0, "stream"),
        idle_timeout_seconds=_number(
            stream_data, "idle_timeout_seconds", 30.0, "stream"
        ),
        request_timeout_seconds=_number(
            stream_data, "request_timeout_seconds", 120.0, "stream"
        ),
    )
    if stream.heartbeat_seconds <= 0 or stream.idle_timeout_seconds <= 0:
        raise ConfigError("[stream] heartbeat and idle timeout must be positive")

    guard_data = raw.get("guardrails", {})
    guardrails = GuardrailConfig(
        secrets=bool(guard_data.get("secrets", True)),
        pii=bool(guard_data.get("pii", True)),
        risk_commands=bool(guard_data.get("risk_commands", True)),
        exfil_urls=bool(guard_data.get("exfil_urls", True)),
    )

    log_data = raw.get("logging", {})
    logging_cfg = LoggingConfig(level=str(log_data.get("level", "INFO")).upper())

    models: dict[str, ModelConfig] = {}
    for name, model_data in raw.get("models", {}).items():
        if isinstance(model_data, dict) and "provider" in model_data:
            models[name] = _parse_model_config(name, model_data)

    return Config(
        allocation=allocation,
        stream=stream,
        guardrails=guardrails,
        logging=logging_cfg,
        models=models,
    )
