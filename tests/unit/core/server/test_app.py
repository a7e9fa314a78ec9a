"""Tests for the startup maintenance done by create_app."""

from __future__ import annotations

from sehatscan.core.server.app import create_app
from sehatscan.core.storage.database import HealthDatabase
from sehatscan.core.storage.encryption import FieldEncryptor
from sehatscan.core.storage.models import FaceAnalysis
from sehatscan.core.storage.repository import AnalysisRepository


def _face() -> FaceAnalysis:
    return FaceAnalysis(id="", owner_id="owner-1", raw_payload={"observations": "clear"})


def test_startup_reencrypts_under_new_key(tmp_path, monkeypatch):
    db_path = str(tmp_path / "health.db")
    old_key, new_key = FieldEncryptor.generate_key(), FieldEncryptor.generate_key()
    with HealthDatabase(db_path) as db:
        AnalysisRepository(db, FieldEncryptor(old_key)).create_analysis(_face())

    monkeypatch.setenv("DB_PATH", db_path)
    monkeypatch.setenv("ENCRYPTION_KEY", new_key)
    monkeypatch.setenv("ENCRYPTION_PREVIOUS_KEYS", old_key)
    create_app()

    with HealthDatabase(db_path) as db:
        [stored] = AnalysisRepository(db, FieldEncryptor(new_key)).list_analyses("owner-1")
    assert stored.raw_payload == {"observations": "clear"}


def test_startup_purges_expired_cache_entries(health_db, ttl_cache):
    # The fake clock sits in 1970, so this entry is long expired in real time.
    ttl_cache.set_with_ttl("stale", "v", ttl_s=60)

    create_app(database_override=health_db)

    rows = health_db.connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
    assert rows == 0
