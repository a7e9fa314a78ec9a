"""SQLite store for analyses, metric rows, cache entries and the audit trail.

The schema is built from an ordered list of migrations. A fresh or older
database is brought up to ``SCHEMA_VERSION`` on ``initialize()``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_ANALYSIS_TABLES = """
-- One row per persisted inference outcome
CREATE TABLE IF NOT EXISTS analyses (
    id           TEXT PRIMARY KEY,
    owner_id     TEXT NOT NULL,
    kind         TEXT NOT NULL CHECK (kind IN ('face', 'report', 'risk')),
    payload_enc  TEXT NOT NULL,  -- Fernet token of the raw inference payload
    details_enc  TEXT,           -- Fernet token of the variant fields
    created_at   TEXT NOT NULL
);

-- Plaintext copy of report metrics so a metric series needs no decryption
CREATE TABLE IF NOT EXISTS analysis_metrics (
    id           TEXT PRIMARY KEY,
    analysis_id  TEXT NOT NULL REFERENCES analyses(id) ON DELETE CASCADE,
    owner_id     TEXT NOT NULL,
    name         TEXT NOT NULL,
    name_key     TEXT NOT NULL,  -- lowercased, trimmed name
    value        TEXT,
    unit         TEXT,
    status       TEXT,
    observed_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cache_entries (
    key          TEXT PRIMARY KEY,
    value_json   TEXT NOT NULL,
    expires_at   REAL NOT NULL   -- epoch seconds
);

CREATE INDEX IF NOT EXISTS idx_analyses_owner_ts   ON analyses(owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_analyses_owner_kind ON analyses(owner_id, kind);
CREATE INDEX IF NOT EXISTS idx_metrics_owner_name  ON analysis_metrics(owner_id, name_key);
CREATE INDEX IF NOT EXISTS idx_metrics_analysis    ON analysis_metrics(analysis_id);
"""

_AUDIT_TABLE = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    operation       TEXT,
    input_hash      TEXT,
    owner_hash      TEXT,
    llm_provider    TEXT,
    llm_disclosed   INTEGER DEFAULT 0,
    analysis_id     TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_kind      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_operation ON audit_log(operation);
"""

# (version, description, DDL), applied in order
_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "analyses, metric rows and cache", _ANALYSIS_TABLES),
    (2, "audit log", _AUDIT_TABLE),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when the store is unusable or a transaction fails."""


class HealthDatabase:
    """Owns the single SQLite connection shared by the repository, cache and audit log.

    Usage::

        with HealthDatabase("~/.sehatscan/health.db") as db:
            db.connection.execute(...)

    ``":memory:"`` gives a throwaway store (tests, no encryption key).
    """

    def __init__(self, db_path: str = MEMORY) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        if self._db_path == MEMORY:
            return sqlite3.connect(MEMORY)
        path = Path(self._db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(str(path))

    def initialize(self) -> None:
        """Open the connection and migrate the schema. No-op when already open."""
        if self._conn is not None:
            return

        conn = self._connect()
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        self._conn = conn

        self._migrate()
        logger.info("Analysis database ready: %s (schema v%d)", self._db_path, SCHEMA_VERSION)

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_VERSION_TABLE)
        found = self.get_schema_version()

        pending = [m for m in _MIGRATIONS if m[0] > found]
        for version, description, ddl in pending:
            conn.executescript(ddl)
            logger.info("Applied schema migration v%d: %s", version, description)

        if pending:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            conn.commit()

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on clean exit; roll back on any error.

        ``sqlite3`` errors are re-raised as ``DatabaseError``; anything else
        propagates unchanged.
        """
        conn = self.connection
        try:
            yield conn
        except sqlite3.Error as exc:
            conn.rollback()
            raise DatabaseError(f"Transaction failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        try:
            conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Transaction failed: {exc}") from exc

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("Analysis database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
