"""Unified token estimation.

Single source of truth for the ~4 chars/token heuristic used
throughout the codebase. Rounds up so budget checks stay on the
safe side without a real tokenizer.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Estimate token count (~4 chars/token). Empty text is 0."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def tokens_to_chars(tokens: int) -> int:
    """Largest character count whose estimate stays within *tokens*."""
    return max(0, int(tokens)) * CHARS_PER_TOKEN
