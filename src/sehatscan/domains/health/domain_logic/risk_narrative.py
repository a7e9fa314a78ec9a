"""Best-effort extraction from risk assessment markdown.

Both extractors return nothing rather than raising when the narrative
does not follow the expected layout.
"""

from __future__ import annotations

import re

_RISK_LEVEL = re.compile(
    r"overall risk level[:\s]*\*{0,2}\s*(low|moderate|elevated|high)",
    re.IGNORECASE,
)

_CONCERN_SECTIONS = (
    re.compile(r"immediate concerns.*?\n([\s\S]*?)(?=\n##|\n---|\n\*\*|\Z)", re.IGNORECASE),
    re.compile(r"moderate concerns.*?\n([\s\S]*?)(?=\n##|\n---|\n\*\*|\Z)", re.IGNORECASE),
)

_BULLET = re.compile(r"[-*]\s+(.+)")

# Bullets that state the absence of a concern
_EMPTY_MARKERS = ("no immediate", "none identified")


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def extract_risk_level(narrative: str | None) -> str | None:
    """``Low``, ``Moderate``, ``Elevated`` or ``High``; None if not stated."""
    if not isinstance(narrative, str):
        return None
    match = _RISK_LEVEL.search(narrative)
    return match.group(1).capitalize() if match else None


def extract_key_concerns(narrative: str | None, max_items: int = 3) -> list[str]:
    """Up to ``max_items`` bullets from the immediate, then moderate, concerns sections."""
    if not isinstance(narrative, str) or max_items <= 0:
        return []

    concerns: list[str] = []
    for section in _CONCERN_SECTIONS:
        match = section.search(narrative)
        if not match:
            continue
        for bullet in _BULLET.findall(match.group(1)):
            text = bullet.strip()
            lowered = text.lower()
            if not text or any(marker in lowered for marker in _EMPTY_MARKERS):
                continue
            concerns.append(truncate(text, 60))
            if len(concerns) >= max_items:
                return concerns
    return concerns
