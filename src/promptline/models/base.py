"""Provider-agnostic request model.

Every backend request starts life as a CanonicalRequest; the
normalizer turns it into the wire body of one ProviderKind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ProviderKind(StrEnum):
    """Closed set of supported backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    LOCAL = "local"

    @classmethod
    def parse(cls, value: str) -> ProviderKind:
        """Resolve a provider tag, accepting common aliases."""
        key = value.strip().lower()
        aliases = {
            "openai_compatible": cls.OPENAI,
            "gemini": cls.GOOGLE,
            "ollama": cls.LOCAL,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown provider type: {value}") from None


@dataclass(frozen=True)
class Message:
    role: str  # "system" | "user" | "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CanonicalRequest:
    """The single internal request shape.

    Optional sampling fields left as None are omitted from every
    provider body rather than defaulted.
    """

    model: str
    messages: tuple[Message, ...] = field(default_factory=tuple)
    system_text: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    json_mode: bool | None = None

    def __post_init__(self) -> None:
        # Accept lists/dicts from callers, store immutable tuples.
        messages = tuple(
            m if isinstance(m, Message) else Message(str(m["role"]), str(m["content"]))
            for m in self.messages
        )
        object.__setattr__(self, "messages", messages)
        if self.stop_sequences is not None:
            object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    def message_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self.messages]
