"""Deterministic token allocation across prompt segments.

The input budget (context window minus reserved output) is split into
system, user, and context shares. Each share is filled greedily and any
text that does not fit is trimmed with a recorded strategy:

- system/user: first 40% and last 40% of the characters
- context: first 25% and last 25%, plus an 800-char focus window around
  the first class/function/test declaration when one exists

Identical inputs always produce identical trimming decisions, so the
results can be cached and explained ("why was my context cut").
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum

from promptline.config import AllocationConfig
from promptline.context.budget import BudgetPlan, make_budget_plan
from promptline.utils.tokens import estimate_tokens, tokens_to_chars

logger = logging.getLogger(__name__)

ELLIPSIS = "\n…\n"

_EDGE_SHARE = 0.40
_CONTEXT_EDGE_SHARE = 0.25
_FOCUS_LEAD_CHARS = 400
_FOCUS_WINDOW_CHARS = 800
_FOCUS_ANCHOR_RE = re.compile(
    r"(class\s+\w+|def\s+\w+\(|function\s+\w+\(|describe\(|it\()",
    re.IGNORECASE,
)


class SegmentKind(StrEnum):
    SELECTION = "selection"
    FILE = "file"
    PASTE = "paste"
    OTHER = "other"


_PRIORITY = {
    SegmentKind.SELECTION: 3,
    SegmentKind.FILE: 2,
    SegmentKind.PASTE: 1,
    SegmentKind.OTHER: 0,
}


class TrimNote(StrEnum):
    NONE = "none"
    HEAD = "head"
    FOCUS = "focus"
    TAIL = "tail"
    MIXED = "mixed"


@dataclass(frozen=True)
class Segment:
    """One named unit of prompt material."""

    id: str
    label: str
    text: str
    kind: SegmentKind = SegmentKind.OTHER

    @property
    def priority(self) -> int:
        return _PRIORITY.get(self.kind, 0)


@dataclass(frozen=True)
class TrimResult:
    id: str
    label: str
    used_tokens: int
    total_tokens: int
    text: str
    note: TrimNote = TrimNote.NONE


@dataclass(frozen=True)
class AllocationResult:
    system: TrimResult
    user: TrimResult
    context: list[TrimResult] = field(default_factory=list)
    prompt_total: int = 0
    input_budget: int = 0
    budget_ok: bool = True
    plan: BudgetPlan | None = None

    def to_report(self) -> dict:
        """Token usage per segment, for display."""
        rows = [self.system, self.user, *self.context]
        return {
            "input_budget": self.input_budget,
            "prompt_total": self.prompt_total,
            "budget_ok": self.budget_ok,
            "segments": [
                {
                    "id": r.id,
                    "label": r.label,
                    "used": r.used_tokens,
                    "total": r.total_tokens,
                    "note": r.note.value,
                }
                for r in rows
            ],
        }


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _take_head(text: str, n: int) -> str:
    return text[: max(0, n)]


def _take_tail(text: str, n: int) -> str:
    n = max(0, n)
    return text[len(text) - n:] if n else ""


def _shrink(piece: str, side: TrimNote, keep: int) -> str:
    if keep >= len(piece):
        return piece
    if side == TrimNote.HEAD:
        return _take_head(piece, keep)
    if side == TrimNote.TAIL:
        return _take_tail(piece, keep)
    start = (len(piece) - keep) // 2
    return piece[start:start + keep]


def _fit_pieces(pieces: list[tuple[TrimNote, str]], budget: int) -> tuple[str, TrimNote]:
    """Join head/focus/tail pieces, shrinking them until the join fits *budget*."""
    pieces = [(side, text) for side, text in pieces if text]
    if not pieces or budget <= 0:
        return "", TrimNote.MIXED

    joined = ELLIPSIS.join(text for _, text in pieces)
    if estimate_tokens(joined) <= budget:
        note = TrimNote.MIXED if len(pieces) > 1 else pieces[0][0]
        return joined, note

    max_chars = tokens_to_chars(budget)
    allowance = max_chars - len(ELLIPSIS) * (len(pieces) - 1)
    if allowance <= len(pieces):
        # Not even room for the separators; keep a bare head.
        side, text = pieces[0]
        return _shrink(text, side, max_chars), side

    total_chars = sum(len(text) for _, text in pieces)
    shrunk = [
        (side, _shrink(text, side, len(text) * allowance // total_chars))
        for side, text in pieces
    ]
    shrunk = [(side, text) for side, text in shrunk if text]
    note = TrimNote.MIXED if len(shrunk) > 1 else shrunk[0][0]
    return ELLIPSIS.join(text for _, text in shrunk), note


def trim_to_budget(label: str, text: str, budget: int) -> TrimResult:
    """Trim system or user text to *budget* tokens (head 40% + tail 40%)."""
    text = text or ""
    total = estimate_tokens(text)
    if total <= budget:
        return TrimResult(label, label, total, total, text, TrimNote.NONE)

    cut = int(len(text) * _EDGE_SHARE)
    merged, note = _fit_pieces(
        [(TrimNote.HEAD, _take_head(text, cut)), (TrimNote.TAIL, _take_tail(text, cut))],
        budget,
    )
    used = min(estimate_tokens(merged), max(budget, 0))
    return TrimResult(label, label, used, total, merged, note)


def _slice_context(text: str) -> list[tuple[TrimNote, str]]:
    cut = int(len(text) * _CONTEXT_EDGE_SHARE)
    head = (TrimNote.HEAD, _take_head(text, cut))
    tail = (TrimNote.TAIL, _take_tail(text, cut))
    match = _FOCUS_ANCHOR_RE.search(text)
    if match is None:
        return [head, tail]
    start = max(0, match.start() - _FOCUS_LEAD_CHARS)
    end = min(len(text), start + _FOCUS_WINDOW_CHARS)
    return [head, (TrimNote.FOCUS, text[start:end]), tail]


def trim_context(segments: list[Segment], budget: int) -> list[TrimResult]:
    """Greedily fill *budget* with context segments in priority order.

    Segments left over once the budget is spent are dropped entirely.
    """
    ordered = sorted(segments, key=lambda s: s.priority, reverse=True)
    remaining = max(budget, 0)
    out: list[TrimResult] = []
    for seg in ordered:
        if remaining <= 0:
            break
        text = seg.text or ""
        total = estimate_tokens(text)
        if total <= remaining:
            kept, note = text, TrimNote.NONE
        else:
            kept, note = _fit_pieces(_slice_context(text), remaining)
        used = min(estimate_tokens(kept), remaining)
        out.append(TrimResult(seg.id, seg.label, used, total, kept, note))
        remaining -= used

    dropped = len(ordered) - len(out)
    if dropped:
        logger.debug("context_trim dropped=%d budget=%d", dropped, budget)
    return out


def allocate_tokens(
    system_text: str,
    user_text: str,
    context: list[Segment],
    context_window: int,
    desired_output: int | None = None,
    allocation: AllocationConfig | None = None,
    model_id: str = "",
) -> AllocationResult:
    """Split the input budget across system, user, and context segments."""
    allocation = allocation or AllocationConfig()
    estimated_input = (
        estimate_tokens(system_text)
        + estimate_tokens(user_text)
        + sum(estimate_tokens(seg.text) for seg in context)
    )
    plan = make_budget_plan(model_id, context_window, estimated_input, desired_output)
    input_budget = max(0, context_window - plan.reserved_output_tokens)

    sys_budget = int(input_budget * _clamp01(allocation.system_pct))
    usr_budget = int(input_budget * _clamp01(allocation.user_pct))
    ctx_budget = min(
        int(input_budget * _clamp01(allocation.context_pct)),
        max(0, int(allocation.max_context_tokens)),
    )

    system = trim_to_budget("system", system_text, sys_budget)
    user = trim_to_budget("user", user_text, usr_budget)
    ctx = trim_context(context, ctx_budget)

    prompt_total = system.used_tokens + user.used_tokens + sum(r.used_tokens for r in ctx)
    budget_ok = prompt_total <= input_budget
    logger.debug(
        "allocation model=%s input_budget=%d system=%d/%d user=%d/%d "
        "context=%d/%d segments=%d/%d total=%d ok=%s",
        model_id or "-", input_budget,
        system.used_tokens, sys_budget, user.used_tokens, usr_budget,
        sum(r.used_tokens for r in ctx), ctx_budget, len(ctx), len(context),
        prompt_total, budget_ok,
    )
    return AllocationResult(
        system=system,
        user=user,
        context=ctx,
        prompt_total=prompt_total,
        input_budget=input_budget,
        budget_ok=budget_ok,
        plan=plan,
    )
