"""MCP tool over the PHI-free audit trail.

Only operation names, outcomes, error kinds, timings and the LLM
disclosure flag are shown; inputs and owner ids exist only as hashes.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from sehatscan.core.results.outcome import RequestOutcome

if TYPE_CHECKING:
    from sehatscan.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 20

_SHOWN_FIELDS = (
    "timestamp",
    "action",
    "operation",
    "status",
    "error_kind",
    "llm_provider",
    "duration_ms",
)


def _public_view(event: dict[str, Any]) -> dict[str, Any]:
    view = {name: event.get(name) for name in _SHOWN_FIELDS}
    view["llm_disclosed"] = bool(event.get("llm_disclosed"))
    return view


def register_audit_tools(mcp: FastMCP, audit_logger: AuditLogger) -> None:
    """Register the audit summary tool on the MCP server."""

    @mcp.tool
    async def audit_summary(ctx: Context, days: int = 30) -> str:
        """What this server did with your data recently: requests and their
        outcomes, failures by kind, and every time health data went to an
        external LLM.

        Args:
            days: Look-back window in days (default 30).
        """
        if days < 1:
            return json.dumps(RequestOutcome.fail("days must be at least 1", "validation").to_dict())

        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        outcome = RequestOutcome.ok({
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "llm_disclosures": audit_logger.count_disclosures(since=since),
            "failures_by_kind": audit_logger.count_failures(since=since),
            "recent_events": [
                _public_view(e)
                for e in audit_logger.get_events(since=since, limit=RECENT_EVENT_LIMIT)
            ],
            "note": (
                "No health data is stored in the audit trail; it records requests, "
                "their outcomes, and whether data was sent to an external LLM."
            ),
        })
        return json.dumps(outcome.to_dict(), indent=2)
