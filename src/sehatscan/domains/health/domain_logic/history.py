"""Owner-scoped analysis history: listing, stats, deletion and metric series.

Every operation returns a ``RequestOutcome``; store failures map to the
``database`` error kind with a generic message.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from sehatscan.core.audit.logger import AuditLogger
from sehatscan.core.results.outcome import RequestOutcome
from sehatscan.core.storage.cache import Cache, analyses_key, cached, invalidate_owner, stats_key
from sehatscan.core.storage.database import DatabaseError
from sehatscan.core.storage.models import ANALYSIS_KINDS, Analysis, StoredMetricReading
from sehatscan.core.storage.repository import AnalysisRepository, RepositoryError
from sehatscan.domains.health.domain_logic.digest import (
    MetricObservation,
    compute_trends,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

_STORE_ERRORS = (RepositoryError, DatabaseError, sqlite3.Error)

FETCH_FAILED_MESSAGE = "Failed to fetch analyses"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


def analysis_to_dict(analysis: Analysis) -> dict[str, Any]:
    """Listing shape: envelope plus variant fields, without the raw payload."""
    return {
        "id": analysis.id,
        "kind": analysis.kind,
        "createdAt": analysis.created_at,
        **analysis.details(),
    }


def reading_to_dict(reading: StoredMetricReading) -> dict[str, str]:
    return {
        "analysisId": reading.analysis_id,
        "name": reading.name,
        "value": reading.value,
        "unit": reading.unit,
        "status": reading.status,
        "observedAt": reading.observed_at,
    }


class AnalysisHistory:
    """History queries and deletion for the dashboard and MCP tools.

    The default first page and the per-owner stats are cached; both are
    dropped whenever the owner's history changes.
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        cache: Cache | None = None,
        *,
        stats_ttl_s: float = 5 * 60,
        analyses_ttl_s: float = 2 * 60,
        audit: AuditLogger | None = None,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._stats_ttl_s = stats_ttl_s
        self._analyses_ttl_s = analyses_ttl_s
        self._audit = audit

    def list_analyses(
        self,
        owner_id: str,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        kind: str | None = None,
    ) -> RequestOutcome:
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            return RequestOutcome.fail("Invalid pagination parameters", "validation")
        if kind is not None and kind not in ANALYSIS_KINDS:
            return RequestOutcome.fail("Invalid analysis type", "validation")

        def load() -> dict[str, Any]:
            result = self._repo.list_analyses_page(owner_id, page=page, limit=limit, kind=kind)
            return {
                "analyses": [analysis_to_dict(a) for a in result.analyses],
                "pagination": {
                    "page": result.page,
                    "limit": limit,
                    "total": result.total,
                    "totalPages": result.total_pages,
                },
            }

        try:
            if page == 1 and limit == DEFAULT_PAGE_SIZE and kind is None:
                data = cached(self._cache, analyses_key(owner_id), self._analyses_ttl_s, load)
            else:
                data = load()
        except _STORE_ERRORS:
            logger.exception("Failed to list analyses")
            return RequestOutcome.fail(FETCH_FAILED_MESSAGE, "database")
        return RequestOutcome.ok(data)

    def user_stats(self, owner_id: str) -> RequestOutcome:
        def load() -> dict[str, Any]:
            by_kind = {k: self._repo.count_analyses(owner_id, k) for k in ANALYSIS_KINDS}
            return {"totalAnalyses": sum(by_kind.values()), "byKind": by_kind}

        try:
            data = cached(self._cache, stats_key(owner_id), self._stats_ttl_s, load)
        except _STORE_ERRORS:
            logger.exception("Failed to count analyses")
            return RequestOutcome.fail(FETCH_FAILED_MESSAGE, "database")
        return RequestOutcome.ok(data)

    def delete_analysis(self, owner_id: str, analysis_id: str) -> RequestOutcome:
        if not analysis_id or not analysis_id.strip():
            return RequestOutcome.fail("Analysis id is required", "validation")

        try:
            deleted = self._repo.delete_analysis(analysis_id.strip(), owner_id)
        except _STORE_ERRORS:
            logger.exception("Failed to delete analysis")
            return RequestOutcome.fail("Failed to delete analysis. Please try again.", "database")

        if not deleted:
            return RequestOutcome.fail("Analysis not found", "not_found")

        invalidate_owner(self._cache, owner_id)
        if self._audit is not None:
            self._audit.log_data_delete(owner_id=owner_id, analysis_id=analysis_id, count=1)
        return RequestOutcome.ok({"deleted": True, "analysisId": analysis_id})

    def metric_history(self, owner_id: str, name: str, *, limit: int = 20) -> RequestOutcome:
        """Readings of one lab metric, newest first, with the overall direction."""
        if not name or not name.strip():
            return RequestOutcome.fail("Metric name is required", "validation")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            return RequestOutcome.fail("Invalid limit", "validation")

        try:
            readings = self._repo.get_metric_history(owner_id, name, limit=limit)
        except _STORE_ERRORS:
            logger.exception("Failed to load metric history")
            return RequestOutcome.fail("Failed to load metric history", "database")

        trends = compute_trends([
            MetricObservation(
                name=r.name,
                value=r.value,
                unit=r.unit,
                status=r.status or "normal",
                observed_at=parse_timestamp(r.observed_at),
            )
            for r in readings
        ])
        return RequestOutcome.ok({
            "name": readings[0].name if readings else name.strip(),
            "readings": [reading_to_dict(r) for r in readings],
            "direction": trends[0].direction if trends else None,
        })
