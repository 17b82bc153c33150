"""Outbound guardrail redaction.

Scans assembled prompt text for secrets, PII, risky shell commands,
and paste/exfiltration URLs, replacing each hit with a typed
``[REDACTED:<kind>]`` marker before the text leaves the process.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum

from promptline.config import GuardrailConfig
from promptline.guardrails.patterns import (
    EXFIL_URL_RE,
    PII_RE,
    RISK_COMMAND_RE,
    SECRET_RE,
)

logger = logging.getLogger(__name__)


class RedactionKind(StrEnum):
    SECRET = "secret"
    PII = "pii"
    RISK_CMD = "riskCmd"
    EXFIL_URL = "exfilUrl"


_CATEGORIES: list[tuple[RedactionKind, list[re.Pattern], str]] = [
    (RedactionKind.SECRET, SECRET_RE, "Secrets were redacted."),
    (RedactionKind.PII, PII_RE, "PII-like patterns were redacted."),
    (RedactionKind.RISK_CMD, RISK_COMMAND_RE, "Potentially dangerous commands detected."),
    (RedactionKind.EXFIL_URL, EXFIL_URL_RE, "Potential exfiltration URLs detected."),
]


@dataclass(frozen=True)
class Redaction:
    kind: RedactionKind
    matched_text: str
    start_offset: int
    end_offset: int


@dataclass(frozen=True)
class GuardResult:
    text: str
    redactions: list[Redaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def kinds(self) -> set[RedactionKind]:
        return {r.kind for r in self.redactions}


def enabled_kinds(config: GuardrailConfig | None) -> set[RedactionKind]:
    """Map guardrail toggles to the active redaction kinds."""
    if config is None:
        return set(RedactionKind)
    toggles = {
        RedactionKind.SECRET: config.secrets,
        RedactionKind.PII: config.pii,
        RedactionKind.RISK_CMD: config.risk_commands,
        RedactionKind.EXFIL_URL: config.exfil_urls,
    }
    return {kind for kind, on in toggles.items() if on}


def marker(kind: RedactionKind) -> str:
    return f"[REDACTED:{kind.value}]"


def _merge_spans(redactions: list[Redaction]) -> list[tuple[int, int, RedactionKind]]:
    """Collapse overlapping hits so splicing never leaves a partial match."""
    spans: list[tuple[int, int, RedactionKind]] = []
    for r in sorted(redactions, key=lambda r: (r.start_offset, -r.end_offset)):
        if spans and r.start_offset < spans[-1][1]:
            start, end, kind = spans[-1]
            spans[-1] = (start, max(end, r.end_offset), kind)
        else:
            spans.append((r.start_offset, r.end_offset, r.kind))
    return spans


def redact(
    text: str,
    categories: set[RedactionKind] | None = None,
) -> GuardResult:
    """Redact sensitive substrings from *text*.

    Never raises; text with no hits is returned unchanged.
    """
    text = text or ""
    active = set(RedactionKind) if categories is None else set(categories)

    redactions: list[Redaction] = []
    for kind, patterns, _ in _CATEGORIES:
        if kind not in active:
            continue
        for pattern in patterns:
            for match in pattern.finditer(text):
                if match.end() > match.start():
                    redactions.append(
                        Redaction(kind, match.group(0), match.start(), match.end())
                    )

    safe = text
    # Back to front so earlier offsets stay valid.
    for start, end, kind in sorted(_merge_spans(redactions), key=lambda s: s[0], reverse=True):
        safe = safe[:start] + marker(kind) + safe[end:]
    # A hit can also appear where its pattern did not match, e.g. without a
    # word boundary. Replace those copies too, longest first.
    leftovers: dict[str, RedactionKind] = {}
    for r in redactions:
        leftovers.setdefault(r.matched_text, r.kind)
    for matched in sorted(leftovers, key=len, reverse=True):
        if matched in safe:
            safe = re.sub(re.escape(matched), marker(leftovers[matched]), safe)

    hit_kinds = {r.kind for r in redactions}
    warnings = [warning for kind, _, warning in _CATEGORIES if kind in hit_kinds]
    if redactions:
        logger.info(
            "guardrail_redaction hits=%d kinds=%s",
            len(redactions), ",".join(sorted(k.value for k in hit_kinds)),
        )
    return GuardResult(text=safe, redactions=redactions, warnings=warnings)
