"""Structured (JSON) output recovery from free-form model text.

Recovery is bounded: strict parse, one repair pass, and at most one
re-ask asking the model to return only valid JSON for the schema.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from promptline.exceptions import StructuredOutputError
from promptline.models.base import CanonicalRequest, Message

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_OPEN_RE = re.compile(r"```[a-zA-Z0-9_-]*\n?")
_CONTROL_RE = re.compile(r"[\x00-\x1f]")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_UNESCAPED_DQUOTE_RE = re.compile(r'(?<!\\)"')
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)\s*:")

REASK_INSTRUCTION = (
    "Only return a VALID JSON that strictly matches the target schema.\n"
    "- Do not include code fences or explanations.\n"
    "- No comments, no trailing commas, double quotes only."
)


class CompletionTransport(Protocol):
    async def complete(self, request: CanonicalRequest) -> str: ...


@dataclass(frozen=True)
class Reask:
    """Where to send the single repair request."""

    transport: CompletionTransport
    model: str


def strip_code_fences(text: str) -> str:
    return _FENCE_OPEN_RE.sub("", text or "").replace("```", "").strip()


def extract_first_json_block(text: str) -> str | None:
    """Return the first complete top-level JSON object or array in *text*.

    Brackets inside string literals are ignored; anything after the
    closing bracket is dropped.
    """
    cleaned = strip_code_fences(text)
    match = re.search(r"[{\[]", cleaned)
    if match is None:
        return None

    depth = 0
    quote: str | None = None
    escaped = False
    prev = ""
    for i in range(match.start(), len(cleaned)):
        ch = cleaned[i]
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch == '"' or (ch == "'" and prev in "{[,:"):
            quote = ch
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return cleaned[match.start():i + 1]
        if not ch.isspace():
            prev = ch
    return None


def _split_literals(block: str) -> list[tuple[str, str]]:
    """Split *block* into ``(kind, chunk)`` pieces.

    *kind* is ``'"'`` or ``"'"`` for a string literal and ``""`` for the
    text between literals. A single quote opens a literal only where a
    JSON value or key may start. An unterminated literal stays text.
    """
    pieces: list[tuple[str, str]] = []
    start = 0
    quote: str | None = None
    escaped = False
    last = ""
    for i, ch in enumerate(block):
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                pieces.append((quote, block[start:i + 1]))
                start = i + 1
                quote = None
                last = ch
            continue
        if ch == '"' or (ch == "'" and last in ("{", "[", ",", ":")):
            pieces.append(("", block[start:i]))
            start = i
            quote = ch
        elif not ch.isspace():
            last = ch
    pieces.append(("", block[start:]))
    return pieces


def _requote(literal: str) -> str:
    inner = literal[1:-1].replace("\\'", "'")
    return '"' + _UNESCAPED_DQUOTE_RE.sub(r'\\"', inner) + '"'


def repair_json(block: str) -> str:
    """Apply the bounded repair pass to a JSON-ish block.

    Single-quoted literals become double-quoted, bare keys are quoted and
    trailing commas dropped. String contents are never rewritten.
    """
    out: list[str] = []
    for kind, chunk in _split_literals(_CONTROL_RE.sub("", block)):
        if kind == '"':
            out.append(chunk)
        elif kind == "'":
            out.append(_requote(chunk))
        else:
            chunk = _BARE_KEY_RE.sub(lambda m: f'{m.group(1)}"{m.group(2)}":', chunk)
            out.append(_TRAILING_COMMA_RE.sub(r"\1", chunk))
    return "".join(out)


def parse_json_loose(text: str) -> Any:
    """Extract and parse one JSON value, repairing it once if needed."""
    block = extract_first_json_block(text)
    if block is None:
        raise StructuredOutputError("No JSON block found", raw_text=text)
    try:
        return json.loads(block)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(repair_json(block))
    except json.JSONDecodeError as e:
        raise StructuredOutputError(f"Invalid JSON after repair: {e}", raw_text=text) from e


def validate_structured(text: str, schema: type[T]) -> T:
    """Parse *text* loosely and validate it against *schema*."""
    obj = parse_json_loose(text)
    try:
        return TypeAdapter(schema).validate_python(obj)
    except ValidationError as e:
        raise StructuredOutputError(
            f"JSON does not match schema: {e.error_count()} error(s)", raw_text=text,
        ) from e


def build_reask_prompt(text: str, schema: type) -> str:
    schema_json = json.dumps(TypeAdapter(schema).json_schema(), ensure_ascii=False)
    return (
        f"{REASK_INSTRUCTION}\n\n"
        f"Target schema:\n{schema_json}\n\n"
        f"Raw model output:\n{text}\n\n"
        "Return fixed JSON now."
    )


async def parse_with_schema(
    text: str,
    schema: type[T],
    reask: Reask | None = None,
) -> T:
    """Recover a *schema* instance from *text*.

    With *reask*, one follow-up request is made when parsing or
    validation fails; its failure propagates as StructuredOutputError
    carrying the re-asked text. There is never a second re-ask.
    """
    try:
        return validate_structured(text, schema)
    except StructuredOutputError as e:
        if reask is None:
            raise
        logger.info("structured_reask model=%s reason=%s", reask.model, e)

    request = CanonicalRequest(
        model=reask.model,
        messages=(Message("user", build_reask_prompt(text, schema)),),
        temperature=0.0,
        json_mode=True,
    )
    fixed = await reask.transport.complete(request)
    return validate_structured(fixed, schema)
