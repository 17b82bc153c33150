"""Request-level token budget planning."""

from __future__ import annotations

import math
from dataclasses import dataclass

# Output floor and safety margin applied when a request would overflow.
_MIN_CLAMPED_OUTPUT = 128
_OVERFLOW_MARGIN = 32


@dataclass(frozen=True)
class BudgetPlan:
    """Input/output split for one request against a context window."""

    model_id: str
    context_window_tokens: int
    input_tokens: int
    reserved_output_tokens: int
    total_tokens: int
    overflow: bool
    clamped_output_tokens: int | None = None


def make_budget_plan(
    model_id: str,
    context_window: int,
    input_tokens: int,
    desired_output: int | None = None,
) -> BudgetPlan:
    """Plan a request.

    The reserved output defaults to half the input estimate. When the
    total would not fit the window, ``clamped_output_tokens`` is the
    largest output that would (never below 128).
    """
    input_tokens = max(0, int(input_tokens))
    if desired_output is None:
        reserved = math.ceil(input_tokens * 0.5)
    else:
        reserved = max(0, math.floor(desired_output))
    total = input_tokens + reserved
    overflow = total > context_window
    clamped = None
    if overflow:
        clamped = max(_MIN_CLAMPED_OUTPUT, context_window - input_tokens - _OVERFLOW_MARGIN)
    return BudgetPlan(
        model_id=model_id,
        context_window_tokens=context_window,
        input_tokens=input_tokens,
        reserved_output_tokens=reserved,
        total_tokens=total,
        overflow=overflow,
        clamped_output_tokens=clamped,
    )
