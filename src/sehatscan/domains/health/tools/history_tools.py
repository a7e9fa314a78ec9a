"""MCP tools over the caller's saved analyses: digest, listing, stats, deletion, trends."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from sehatscan.core.identity.resolver import resolve_or_none
from sehatscan.core.results.outcome import AUTH_REQUIRED_MESSAGE, RequestOutcome
from sehatscan.core.storage.database import DatabaseError
from sehatscan.core.storage.repository import RepositoryError
from sehatscan.domains.health.domain_logic.digest import DigestProfile

if TYPE_CHECKING:
    from sehatscan.core.identity.resolver import IdentityResolver
    from sehatscan.domains.health.domain_logic.health_aggregator import HealthAggregator
    from sehatscan.domains.health.domain_logic.history import AnalysisHistory

logger = logging.getLogger(__name__)

_AUTH_FAILURE = json.dumps(RequestOutcome.fail(AUTH_REQUIRED_MESSAGE, "auth").to_dict())


def register_history_tools(
    mcp: FastMCP,
    identity: IdentityResolver,
    history: AnalysisHistory,
    aggregator: HealthAggregator,
) -> None:
    """Register history and digest tools on the MCP server."""

    @mcp.tool
    async def health_summary(ctx: Context, include_details: bool = False) -> str:
        """Compact summary of all your analyses: latest lab values, abnormal
        findings, trends, and the latest face and risk results.

        Args:
            include_details: Also return the structured digest.
        """
        caller = resolve_or_none(identity)
        if caller is None:
            return _AUTH_FAILURE

        profile = DigestProfile(name=caller.display_name, member_since=caller.member_since)
        try:
            data = {"summary": aggregator.summarize(caller.owner_id, profile)}
            if include_details:
                data["digest"] = aggregator.build_digest(caller.owner_id).to_dict()
        except (RepositoryError, DatabaseError, sqlite3.Error):
            logger.exception("Failed to build health summary")
            outcome = RequestOutcome.fail("Failed to load your health data", "database")
        else:
            outcome = RequestOutcome.ok(data)
        return json.dumps(outcome.to_dict())

    @mcp.tool
    async def list_analyses(
        ctx: Context,
        page: int = 1,
        limit: int = 10,
        kind: str | None = None,
    ) -> str:
        """List your saved analyses, newest first.

        Args:
            page: Page number, starting at 1.
            limit: Analyses per page (1-100).
            kind: Only ``face``, ``report`` or ``risk`` analyses.
        """
        caller = resolve_or_none(identity)
        if caller is None:
            return _AUTH_FAILURE
        outcome = history.list_analyses(caller.owner_id, page=page, limit=limit, kind=kind)
        return json.dumps(outcome.to_dict())

    @mcp.tool
    async def user_stats(ctx: Context) -> str:
        """Count your saved analyses, in total and per kind."""
        caller = resolve_or_none(identity)
        if caller is None:
            return _AUTH_FAILURE
        return json.dumps(history.user_stats(caller.owner_id).to_dict())

    @mcp.tool
    async def delete_analysis(ctx: Context, analysis_id: str) -> str:
        """Permanently delete one of your saved analyses.

        Args:
            analysis_id: Id of the analysis to delete.
        """
        caller = resolve_or_none(identity)
        if caller is None:
            return _AUTH_FAILURE
        outcome = history.delete_analysis(caller.owner_id, analysis_id)
        if outcome.success:
            logger.info("Deleted analysis %s via tool", analysis_id)
        return json.dumps(outcome.to_dict())

    @mcp.tool
    async def metric_trend(ctx: Context, metric_name: str, limit: int = 20) -> str:
        """Show every saved reading of one lab metric (e.g. "Glucose") and its direction.

        Args:
            metric_name: Metric name, case-insensitive.
            limit: Maximum readings to return (1-100).
        """
        caller = resolve_or_none(identity)
        if caller is None:
            return _AUTH_FAILURE
        outcome = history.metric_history(caller.owner_id, metric_name, limit=limit)
        return json.dumps(outcome.to_dict())
