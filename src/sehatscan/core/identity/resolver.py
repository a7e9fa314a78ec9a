"""Caller identity resolution.

The server acts for a single configured owner. Anything that cannot
produce an identity raises ``IdentityError``; callers treat every such
failure the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Raised when the caller's identity cannot be established."""


@dataclass(frozen=True)
class Identity:
    owner_id: str
    display_name: str = ""
    member_since: str = ""  # ISO 8601 date


class IdentityResolver(Protocol):
    def resolve_caller(self) -> Identity: ...


class StaticIdentityResolver:
    """Resolves every call to the owner named in configuration."""

    def __init__(self, owner_id: str, display_name: str = "", member_since: str = "") -> None:
        self._owner_id = owner_id.strip()
        self._display_name = display_name
        self._member_since = member_since

    def resolve_caller(self) -> Identity:
        if not self._owner_id:
            raise IdentityError("No owner configured (set SEHAT_OWNER_ID)")
        return Identity(
            owner_id=self._owner_id,
            display_name=self._display_name,
            member_since=self._member_since,
        )


def resolve_or_none(resolver: IdentityResolver) -> Identity | None:
    """The caller's identity, or None if it cannot be established.

    Provider-specific failure detail is logged, never returned.
    """
    try:
        return resolver.resolve_caller()
    except Exception as exc:
        logger.warning("Caller identity could not be resolved: %s", exc)
        return None
