"""MCP tool for the conversational health assistant."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from sehatscan.core.identity.resolver import resolve_or_none
from sehatscan.core.results.outcome import AUTH_REQUIRED_MESSAGE, RequestOutcome
from sehatscan.domains.health.domain_logic.digest import DigestProfile

if TYPE_CHECKING:
    from sehatscan.core.identity.resolver import IdentityResolver
    from sehatscan.domains.health.domain_logic.assistant import HealthAssistant

logger = logging.getLogger(__name__)


def register_assistant_tools(
    mcp: FastMCP,
    identity: IdentityResolver,
    assistant: HealthAssistant,
) -> None:
    """Register the health assistant tool on the MCP server."""

    @mcp.tool
    async def ask_health_assistant(
        ctx: Context,
        question: str,
        history: list[dict[str, Any]] | None = None,
    ) -> str:
        """Ask a question about your own health data.

        The assistant sees a compact summary of your analyses. It explains
        results and trends but does not diagnose or prescribe.

        Args:
            question: Your question.
            history: Earlier turns as ``{"role": "user"|"assistant", "content": ...}``;
                only the last 10 are used.
        """
        caller = resolve_or_none(identity)
        if caller is None:
            outcome = RequestOutcome.fail(AUTH_REQUIRED_MESSAGE, "auth")
        else:
            profile = DigestProfile(name=caller.display_name, member_since=caller.member_since)
            outcome = await assistant.ask(caller.owner_id, question, history, profile)
        return json.dumps(outcome.to_dict())
