"""Verification-code extraction from a message subject and body.

A message is relevant when its subject or body mentions one of
:data:`KEYWORDS` (case-insensitive).  For relevant messages the body is
scanned with :data:`CODE_PATTERNS` in order and the first occurrence of
the first pattern that matches anything is taken as the code.
"""

from __future__ import annotations

import re

from .models import VerificationResult

KEYWORDS: tuple[str, ...] = ("openai", "verification", "verify", "confirm")

# ASCII-only \b and \d: "482913입니다" matches, fullwidth digits never do.
CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b\d{6}\b", re.ASCII),
    re.compile(r"\b\d{4}\b", re.ASCII),
    re.compile(r"\b[A-Z]{2,4}\d{3,6}\b", re.ASCII),
)


def is_relevant(subject: str, body: str) -> bool:
    """Return True if subject or body mentions any keyword."""
    haystack = f"{subject}\n{body}".lower()
    return any(keyword in haystack for keyword in KEYWORDS)


def find_code(body: str) -> str | None:
    for pattern in CODE_PATTERNS:
        match = pattern.search(body)
        if match is not None:
            return match.group(0)
    return None


def extract_verification_code(
    subject: str | None,
    body: str | None,
) -> VerificationResult | None:
    """Classify a message and pull out its verification code.

    Returns ``None`` when subject or body is empty, or when the message
    does not mention any keyword.  Otherwise returns a
    :class:`VerificationResult` whose ``code`` may be ``None``.
    """
    if not subject or not body:
        return None
    if not is_relevant(subject, body):
        return None
    return VerificationResult(code=find_code(body))
