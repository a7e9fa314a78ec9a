"""Guardrail enforcement for assistant LLM output."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MEDICAL_DISCLAIMER = (
    "SehatScan provides health insights, not medical diagnoses. "
    "Always consult a qualified healthcare professional for medical decisions."
)

REDACTION_NOTE = "[Removed: contains prohibited health guidance]"

# Detected as plain substrings of the lowercased reply.
PROHIBITED_PATTERNS: dict[str, tuple[str, ...]] = {
    "making medical diagnoses": (
        "you have been diagnosed",
        "you are suffering from",
        "you have a condition",
        "i diagnose",
    ),
    "prescribing treatments": (
        "take this medication",
        "stop taking your medication",
        "i prescribe",
        "increase your dose",
    ),
    "making disease predictions": (
        "you will develop",
        "you are at high risk of dying",
        "guaranteed to cure",
    ),
}


@dataclass
class GuardrailCheck:
    """Result of checking a reply against the prohibited patterns."""

    passed: bool
    flags: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)


def check_guardrails(content: str) -> GuardrailCheck:
    """Flag every prohibited phrase present in ``content``."""
    flags: list[str] = []
    phrases: list[str] = []
    content_lower = content.lower()

    for action, patterns in PROHIBITED_PATTERNS.items():
        for pattern in patterns:
            if pattern in content_lower:
                flags.append(f"prohibited_pattern_detected: {action} ('{pattern}')")
                phrases.append(pattern)

    if flags:
        logger.warning("Guardrail flags on assistant reply: %s", flags)

    return GuardrailCheck(passed=not phrases, flags=flags, phrases=phrases)


def sanitize_content(content: str, guardrail_check: GuardrailCheck) -> str:
    """Replace each sentence containing a flagged phrase with a redaction note."""
    if guardrail_check.passed:
        return content

    sanitized = content
    for phrase in guardrail_check.phrases:
        pattern = re.compile(
            r"[^.!?\n]*" + re.escape(phrase) + r"[^.!?\n]*[.!?]?",
            re.IGNORECASE,
        )
        sanitized = pattern.sub(REDACTION_NOTE, sanitized)
    return sanitized


def enforce_disclaimer(content: str, disclaimer: str = MEDICAL_DISCLAIMER) -> tuple[str, bool]:
    """Append ``disclaimer`` unless the reply already carries it.

    Returns: (possibly modified content, whether it was appended)
    """
    def _norm(s: str) -> str:
        return " ".join(s.lower().split())

    if _norm(disclaimer) in _norm(content):
        return content, False
    return f"{content}\n\n---\n{disclaimer}", True
