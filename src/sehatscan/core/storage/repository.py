"""Analysis repository — owner-scoped CRUD for the encrypted analysis store.

The repository mediates between the tagged ``Analysis`` variants and the
SQLite database, using FieldEncryptor for raw payloads and detail fields.
Every read and delete is scoped by ``owner_id``: a lookup never returns
another owner's record.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any

from sehatscan.core.storage.database import DatabaseError, HealthDatabase
from sehatscan.core.storage.encryption import EncryptionError, FieldEncryptor
from sehatscan.core.storage.models import (
    ANALYSIS_KINDS,
    Analysis,
    AnalysisPage,
    ReportAnalysis,
    StoredMetricReading,
    build_analysis,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class AnalysisRepository:
    """Owner-scoped repository for persisted analyses.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = AnalysisRepository(db, FieldEncryptor(key="..."))

        analysis_id = repo.create_analysis(analysis)
        history = repo.list_analyses(owner_id, kind="report")
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_analysis(self, analysis: Analysis) -> str:
        """Persist an analysis and return its id.

        ``analysis.id`` and ``analysis.created_at`` are assigned here when
        empty. Report metrics are denormalized into ``analysis_metrics``.

        Raises:
            RepositoryError: If the record cannot be encrypted or written.
        """
        if analysis.kind not in ANALYSIS_KINDS:
            raise RepositoryError(f"Invalid analysis kind: {analysis.kind!r}")
        if not analysis.owner_id:
            raise RepositoryError("Analysis owner_id must not be empty")

        aid = analysis.id or self._new_id()
        created_at = analysis.created_at or self._now_iso()

        try:
            payload_enc = self._enc.encrypt(analysis.raw_payload or {})
            details_enc = self._enc.encrypt(analysis.details())
        except EncryptionError as exc:
            raise RepositoryError(f"Failed to encrypt analysis: {exc}") from exc

        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """INSERT INTO analyses
                       (id, owner_id, kind, payload_enc, details_enc, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (aid, analysis.owner_id, analysis.kind, payload_enc, details_enc, created_at),
                )
                if isinstance(analysis, ReportAnalysis):
                    for metric in analysis.structured_metrics:
                        conn.execute(
                            """INSERT INTO analysis_metrics
                               (id, analysis_id, owner_id, name, name_key, value, unit, status, observed_at)
                               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                            (
                                self._new_id(),
                                aid,
                                analysis.owner_id,
                                metric.name,
                                metric.name.strip().lower(),
                                metric.value,
                                metric.unit,
                                metric.status,
                                created_at,
                            ),
                        )
        except DatabaseError as exc:
            raise RepositoryError(str(exc)) from exc

        analysis.id = aid
        analysis.created_at = created_at
        logger.info("Saved %s analysis %s", analysis.kind, aid)
        return aid

    def delete_analysis(self, analysis_id: str, owner_id: str) -> bool:
        """Delete one analysis owned by ``owner_id``.

        Returns:
            True if a matching record was found and deleted.
        """
        try:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM analyses WHERE id = ? AND owner_id = ?",
                    (analysis_id, owner_id),
                )
                deleted = cursor.rowcount > 0
        except DatabaseError as exc:
            raise RepositoryError(str(exc)) from exc

        if deleted:
            logger.info("Deleted analysis %s", analysis_id)
        return deleted

    def reencrypt_all(self) -> int:
        """Re-encrypt every stored payload under the primary key.

        A no-op unless retired keys are configured. Returns the number of
        rows rewritten.
        """
        if not self._enc.rotating:
            return 0
        try:
            with self._db.transaction() as conn:
                rows = conn.execute("SELECT id, payload_enc, details_enc FROM analyses").fetchall()
                for row in rows:
                    conn.execute(
                        "UPDATE analyses SET payload_enc = ?, details_enc = ? WHERE id = ?",
                        (
                            self._enc.rotate(row["payload_enc"]),
                            self._enc.rotate(row["details_enc"]),
                            row["id"],
                        ),
                    )
        except EncryptionError as exc:
            raise RepositoryError(f"Key rotation failed: {exc}") from exc
        except DatabaseError as exc:
            raise RepositoryError(str(exc)) from exc

        logger.info("Re-encrypted %d analyses under the primary key", len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_analysis(self, analysis_id: str, owner_id: str) -> Analysis | None:
        """Fetch an analysis by id, only if it belongs to ``owner_id``."""
        row = self._db.connection.execute(
            "SELECT * FROM analyses WHERE id = ? AND owner_id = ?",
            (analysis_id, owner_id),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_analysis(row)

    def list_analyses(self, owner_id: str, kind: str | None = None) -> list[Analysis]:
        """All analyses of an owner, newest first, optionally filtered by kind."""
        query = "SELECT * FROM analyses WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if kind is not None:
            self._check_kind(kind)
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at DESC, rowid DESC"

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_analysis(row) for row in rows]

    def list_analyses_page(
        self,
        owner_id: str,
        *,
        page: int = 1,
        limit: int = 10,
        kind: str | None = None,
    ) -> AnalysisPage:
        """One page of an owner's history, newest first."""
        if page < 1 or limit < 1:
            raise RepositoryError("page and limit must be positive")

        conditions = ["owner_id = ?"]
        params: list[Any] = [owner_id]
        if kind is not None:
            self._check_kind(kind)
            conditions.append("kind = ?")
            params.append(kind)
        where = " AND ".join(conditions)

        conn = self._db.connection
        total = conn.execute(f"SELECT COUNT(*) FROM analyses WHERE {where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM analyses WHERE {where} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            [*params, limit, (page - 1) * limit],
        ).fetchall()

        return AnalysisPage(
            analyses=[self._row_to_analysis(row) for row in rows],
            total=total,
            page=page,
            total_pages=max(1, math.ceil(total / limit)),
        )

    def count_analyses(self, owner_id: str, kind: str | None = None) -> int:
        """Number of analyses stored for an owner."""
        if kind is None:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM analyses WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        else:
            self._check_kind(kind)
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM analyses WHERE owner_id = ? AND kind = ?",
                (owner_id, kind),
            ).fetchone()
        return row[0]

    def count_all(self) -> int:
        """Number of analyses stored across all owners."""
        return self._db.connection.execute("SELECT COUNT(*) FROM analyses").fetchone()[0]

    def get_metric_history(
        self,
        owner_id: str,
        name: str,
        *,
        limit: int = 20,
    ) -> list[StoredMetricReading]:
        """Readings of one lab metric (case-insensitive name), newest first."""
        rows = self._db.connection.execute(
            """SELECT id, analysis_id, name, value, unit, status, observed_at
               FROM analysis_metrics WHERE owner_id = ? AND name_key = ?
               ORDER BY observed_at DESC, rowid DESC LIMIT ?""",
            (owner_id, name.strip().lower(), limit),
        ).fetchall()

        return [
            StoredMetricReading(
                id=row["id"],
                analysis_id=row["analysis_id"],
                name=row["name"],
                value=row["value"] or "",
                unit=row["unit"] or "",
                status=row["status"] or "",
                observed_at=row["observed_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in ANALYSIS_KINDS:
            raise RepositoryError(
                f"Invalid analysis kind: {kind!r}. Valid: {ANALYSIS_KINDS}"
            )

    def _row_to_analysis(self, row: Any) -> Analysis:
        """Convert a database row to the matching Analysis variant."""
        try:
            raw_payload = self._enc.decrypt(row["payload_enc"]) or {}
            details = self._enc.decrypt(row["details_enc"] or "") or {}
        except EncryptionError as exc:
            raise RepositoryError(f"Failed to decrypt analysis {row['id']}: {exc}") from exc

        return build_analysis(
            kind=row["kind"],
            owner_id=row["owner_id"],
            raw_payload=raw_payload,
            details=details,
            id=row["id"],
            created_at=row["created_at"],
        )
