"""
redact.py

Responsibility: Scrub credentials from text before it is logged or posted to GitHub.
"""

from __future__ import annotations

import re

_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"x-access-token:[^@\s]+@"), "x-access-token:[REDACTED]@"),
    (re.compile(r"(https?://[^:/@\s]+):[^@\s]+@"), r"\1:[REDACTED]@"),
    (re.compile(r"(https?://)[^:/@\s]+@"), r"\1[REDACTED]@"),
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{12,}"), "gh*_REDACTED"),
    (re.compile(r"github_pat_[A-Za-z0-9_]{20,}"), "github_pat_REDACTED"),
    (re.compile(r"\b(Bearer|Token|Basic)\s+(?=[A-Za-z0-9\-._~+/]*\d)[A-Za-z0-9\-._~+/]{8,}=*"), r"\1 [REDACTED]"),
]


def redact_secrets(value: str) -> str:
    if not value:
        return value
    out = value
    for pattern, replacement in _RULES:
        out = pattern.sub(replacement, out)
    return out


def sanitize_name(name: str) -> str:
    """Make a package name safe for use in a git branch name."""
    return re.sub(r"[^a-zA-Z0-9._-]", "-", name)
