"""Detection patterns for outbound guardrails.

Patterns that are obviously sensitive or destructive; each category is
applied independently and reported under its own redaction kind.
"""

from __future__ import annotations

import re

SECRET_PATTERNS = [
    # Full PEM private key blocks, then stray headers without a body.
    r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"
    r"[\s\S]+?-----END (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----",
    r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----",
    r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b",                    # AWS access key id
    r"\bgh[pousr]_[A-Za-z0-9]{36,}\b",                   # GitHub tokens
    r"\bsk-(?:ant-|proj-)?[A-Za-z0-9_-]{20,}",           # OpenAI / Anthropic keys
    r"\bAIza[0-9A-Za-z_-]{35}\b",                        # Google API key
    r"\bxox[abposr]-[A-Za-z0-9-]{10,}\b",                # Slack tokens
    r"\b[A-Za-z0-9_-]{20,}\.[A-Za-z0-9_-]{20,}\.[A-Za-z0-9_-]{20,}\b",  # JWT-shaped
]

PII_PATTERNS = [
    r"\b\d{3}-\d{2}-\d{4}\b",                            # SSN-shaped
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",  # email
]

RISK_COMMAND_PATTERNS = [
    r"\brm\s+(?:-[a-zA-Z]*r[a-zA-Z]*|--recursive)(?:\s+-[a-zA-Z]+)*\s+(?:/|~)(?:\*)?(?=\s|$)",
    r"\bchmod\s+(?:-R\s+)?0?777\b",
    r"\b(?:npm|yarn|pnpm)\s+publish\b",
    r"\btwine\s+upload\b",
    r"\bgit\s+push\b(?:\s+(?:-f|--force)\b)?",
    r"\bmkfs(?:\.\w+)?\b",
    r"\bdd\s+if=",
]

EXFIL_HOSTS = [
    "pastebin.com",
    "paste.ee",
    "privnote.com",
    "transfer.sh",
    "ipfs.io",
    "hastebin.com",
    "ghostbin.com",
    "0x0.st",
]

EXFIL_URL_PATTERNS = [
    r"\bhttps?://(?:[\w-]+\.)*(?:"
    + "|".join(re.escape(host) for host in EXFIL_HOSTS)
    + r")(?::\d+)?(?:[/?#][^\s)>'\"]*)?",
]

SECRET_RE = [re.compile(p) for p in SECRET_PATTERNS]
PII_RE = [re.compile(p) for p in PII_PATTERNS]
RISK_COMMAND_RE = [re.compile(p, re.IGNORECASE) for p in RISK_COMMAND_PATTERNS]
EXFIL_URL_RE = [re.compile(p, re.IGNORECASE) for p in EXFIL_URL_PATTERNS]
