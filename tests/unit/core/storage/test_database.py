"""Tests for HealthDatabase — schema, migrations, transactions, lifecycle."""

from __future__ import annotations

import sqlite3

import pytest

from sehatscan.core.storage.database import SCHEMA_VERSION, DatabaseError, HealthDatabase


class TestLifecycle:
    def test_double_initialize_keeps_connection(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        conn = db.connection
        db.initialize()
        assert db.connection is conn
        db.close()

    def test_connection_before_init_raises(self):
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = HealthDatabase(":memory:").connection

    def test_context_manager_closes(self):
        with HealthDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION
        with pytest.raises(DatabaseError):
            _ = db.connection

    def test_file_database_creates_parents(self, tmp_path):
        db_path = tmp_path / "a" / "b" / "health.db"
        with HealthDatabase(str(db_path)) as db:
            assert db.get_schema_version() == SCHEMA_VERSION
        assert db_path.exists()

    def test_reopening_file_does_not_duplicate_version(self, tmp_path):
        db_path = str(tmp_path / "health.db")
        with HealthDatabase(db_path):
            pass
        with HealthDatabase(db_path) as db:
            count = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert count == 1


class TestSchema:
    def test_tables_created(self, health_db):
        tables = {
            row[0]
            for row in health_db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
        }
        assert {"analyses", "analysis_metrics", "cache_entries", "audit_log", "schema_version"} <= tables

    def test_indexes_created(self, health_db):
        indexes = {
            row[0]
            for row in health_db.connection.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }
        assert {
            "idx_analyses_owner_ts",
            "idx_analyses_owner_kind",
            "idx_metrics_owner_name",
            "idx_audit_operation",
        } <= indexes

    def test_foreign_keys_enabled(self, health_db):
        assert health_db.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_kind_is_constrained(self, health_db):
        with pytest.raises(sqlite3.IntegrityError):
            health_db.connection.execute(
                "INSERT INTO analyses (id, owner_id, kind, payload_enc, created_at) "
                "VALUES ('1', 'u', 'xray', '', '2026-01-01')"
            )

    def test_deleting_analysis_cascades_to_metrics(self, health_db):
        conn = health_db.connection
        conn.execute(
            "INSERT INTO analyses (id, owner_id, kind, payload_enc, created_at) "
            "VALUES ('a1', 'u', 'report', '', '2026-01-01')"
        )
        conn.execute(
            "INSERT INTO analysis_metrics (id, analysis_id, owner_id, name, name_key, observed_at) "
            "VALUES ('m1', 'a1', 'u', 'Glucose', 'glucose', '2026-01-01')"
        )
        conn.execute("DELETE FROM analyses WHERE id = 'a1'")
        assert conn.execute("SELECT COUNT(*) FROM analysis_metrics").fetchone()[0] == 0


class TestTransaction:
    def test_commits_on_success(self, health_db):
        with health_db.transaction() as conn:
            conn.execute("INSERT INTO cache_entries VALUES ('k', '1', 0)")
        assert health_db.connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0] == 1

    def test_sqlite_error_rolls_back_and_wraps(self, health_db):
        with pytest.raises(DatabaseError, match="Transaction failed"):
            with health_db.transaction() as conn:
                conn.execute("INSERT INTO cache_entries VALUES ('k', '1', 0)")
                conn.execute("INSERT INTO cache_entries VALUES ('k', '2', 0)")
        assert health_db.connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0] == 0

    def test_other_errors_roll_back_and_propagate(self, health_db):
        with pytest.raises(KeyError):
            with health_db.transaction() as conn:
                conn.execute("INSERT INTO cache_entries VALUES ('k', '1', 0)")
                raise KeyError("boom")
        assert health_db.connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0] == 0
