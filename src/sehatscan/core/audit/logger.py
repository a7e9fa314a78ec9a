"""Audit logger — PHI-free trail of analyses, deletions and LLM disclosures.

Every orchestrated request, assistant question and deletion is recorded
in ``audit_log``. Nothing identifying is stored in the clear:

* ``input_hash`` — SHA-256 of the canonical JSON request summary.
* ``owner_hash`` — SHA-256 of the owner id.
* ``llm_disclosed`` — whether health data was sent to an external LLM.

An audit write never fails the operation being audited.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sehatscan.core.storage.database import DatabaseError, HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 of canonical JSON, or "" if ``data`` is not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


def _hash_owner(owner_id: str | None) -> str:
    if not owner_id:
        return ""
    return hashlib.sha256(owner_id.encode()).hexdigest()


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'analysis_request' | 'assistant_query' | 'data_delete'
    operation: str = ""                  # 'analyze_face' | 'analyze_report' | ...
    input_hash: str = ""
    owner_hash: str = ""
    llm_provider: str | None = None
    llm_disclosed: bool = False
    analysis_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'degraded' | 'failure'
    error_kind: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_request(
            "analyze_face",
            {"filename": "me.jpg", "size": 48213},
            owner_id="user-1",
            status="success",
            analysis_id="...",
            duration_ms=812.4,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert ``event``; returns its id, or "" when the write was lost."""
        row = {
            "id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": event.action,
            "operation": event.operation or None,
            "input_hash": event.input_hash or None,
            "owner_hash": event.owner_hash or None,
            "llm_provider": event.llm_provider,
            "llm_disclosed": int(event.llm_disclosed),
            "analysis_id": event.analysis_id,
            "duration_ms": event.duration_ms,
            "status": event.status,
            "error_kind": event.error_kind,
            "metadata_json": (
                json.dumps(event.metadata, separators=(",", ":"), default=str)
                if event.metadata
                else None
            ),
        }
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO audit_log ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
        except (sqlite3.Error, DatabaseError):
            logger.exception("Audit write failed; %s event lost", event.action)
            return ""
        return row["id"]

    def log_request(
        self,
        operation: str,
        request_summary: Any = None,
        *,
        owner_id: str | None = None,
        status: str = "success",
        error_kind: str | None = None,
        analysis_id: str | None = None,
        duration_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log one orchestrated analysis request.

        Args:
            operation: Public operation name, e.g. ``analyze_face``.
            request_summary: Non-content description of the input (hashed).
            owner_id: Caller, if authenticated (hashed).
            status: ``success``, ``degraded`` or ``failure``.
            error_kind: Error taxonomy value on failure.
            analysis_id: Id of the persisted analysis, if any.
            duration_ms: Wall time of the request.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action="analysis_request",
            operation=operation,
            input_hash=_hash_input(request_summary) if request_summary else "",
            owner_hash=_hash_owner(owner_id),
            analysis_id=analysis_id,
            duration_ms=duration_ms,
            status=status,
            error_kind=error_kind,
            metadata=metadata or {},
        ))

    def log_assistant_call(
        self,
        *,
        owner_id: str | None,
        question: str,
        llm_provider: str | None,
        llm_disclosed: bool,
        status: str = "success",
        error_kind: str | None = None,
        duration_ms: float | None = None,
    ) -> str:
        """Log an assistant question. The question text is hashed, never stored."""
        return self.log_event(AuditEvent(
            action="assistant_query",
            operation="ask_health_assistant",
            input_hash=_hash_input(question),
            owner_hash=_hash_owner(owner_id),
            llm_provider=llm_provider,
            llm_disclosed=llm_disclosed,
            duration_ms=duration_ms,
            status=status,
            error_kind=error_kind,
        ))

    def log_data_delete(
        self,
        *,
        owner_id: str | None,
        analysis_id: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion event."""
        return self.log_event(AuditEvent(
            action="data_delete",
            operation="delete_analysis",
            owner_hash=_hash_owner(owner_id),
            analysis_id=analysis_id,
            metadata={**(metadata or {}), "records_deleted": count},
        ))


    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    @staticmethod
    def _where(**filters: Any) -> tuple[str, list[Any]]:
        """WHERE clause over equality filters plus an optional ``since`` lower bound."""
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in filters.items():
            if value is None:
                continue
            if column == "since":
                clauses.append("timestamp >= ?")
            else:
                clauses.append(f"{column} = ?")
            params.append(value)
        return (" WHERE " + " AND ".join(clauses) if clauses else ""), params

    def get_events(
        self,
        *,
        action: str | None = None,
        operation: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Events matching every given filter, newest first."""
        where, params = self._where(action=action or None, operation=operation or None, since=since)
        rows = self._db.connection.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def _count(self, **filters: Any) -> int:
        where, params = self._where(**filters)
        return self._db.connection.execute(f"SELECT COUNT(*) FROM audit_log{where}", params).fetchone()[0]

    def count_events(self, *, since: str | None = None) -> int:
        return self._count(since=since)

    def count_disclosures(self, *, since: str | None = None) -> int:
        """How many assistant calls sent health data to an external LLM."""
        return self._count(llm_disclosed=1, since=since)

    def count_failures(self, *, since: str | None = None) -> dict[str, int]:
        """Failed requests grouped by error kind."""
        where, params = self._where(status="failure", since=since)
        rows = self._db.connection.execute(
            f"SELECT error_kind, COUNT(*) AS n FROM audit_log{where} "
            "AND error_kind IS NOT NULL GROUP BY error_kind",
            params,
        ).fetchall()
        return {row["error_kind"]: row["n"] for row in rows}
