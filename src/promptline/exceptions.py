"""promptline exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish transport, protocol and content failures.
"""

from __future__ import annotations


class PromptlineError(Exception):
    """Base for all promptline exceptions."""


class ModelError(PromptlineError):
    """Provider connection, status, and stream failures."""


class ModelConnectionError(ModelError):
    """Raised when a provider call fails before any HTTP status is known.

    Wraps the underlying httpx/transport error with a user-friendly
    message and preserves the original exception for debugging.
    ``code`` is ``"network"`` or ``"timeout"``.
    """

    def __init__(
        self,
        message: str,
        original: Exception | None = None,
        code: str = "network",
    ):
        super().__init__(message)
        self.original = original
        self.code = code


class ProviderHTTPError(ModelError):
    """Raised when a provider answers with a non-OK HTTP status."""

    def __init__(self, message: str, status: int, detail: str = "", code: str = ""):
        super().__init__(message)
        self.status = status
        self.detail = detail
        self.code = code


class StreamError(ModelError):
    """Failures while consuming a streamed response."""

    code = "stream"


class StreamTimeoutError(StreamError):
    """No bytes arrived within the idle ceiling."""

    code = "timeout"


class StreamAbortedError(StreamError):
    """The caller's cancellation signal was set."""

    code = "aborted"


class StructuredOutputError(PromptlineError):
    """JSON could not be recovered from model text.

    ``raw_text`` is the last text that was attempted so callers can
    display it.
    """

    code = "parse"

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class PipelineError(PromptlineError):
    """A classified pipeline failure ready for display."""

    def __init__(self, message: str, cause: str, user_message: str):
        super().__init__(message)
        self.cause = cause
        self.user_message = user_message
