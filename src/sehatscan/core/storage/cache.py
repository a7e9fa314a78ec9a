"""TTL-bound memoization layer backed by the ``cache_entries`` table.

The cache is purely an optimization: ``cached()`` and ``invalidate_owner()``
treat a missing cache (``None``) or a failing cache as a miss, so every
caller still gets a freshly computed value.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from sehatscan.core.storage.database import DatabaseError, HealthDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheError(Exception):
    """Raised when a cache read or write fails."""


class Cache(Protocol):
    """Key-value store with per-entry expiry."""

    def get(self, key: str) -> Any | None: ...

    def set_with_ttl(self, key: str, value: Any, ttl_s: float) -> None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Cache keys
# ---------------------------------------------------------------------------

def stats_key(owner_id: str) -> str:
    return f"stats:{owner_id}"


def analyses_key(owner_id: str) -> str:
    return f"analyses:{owner_id}"


def health_summary_key(owner_id: str) -> str:
    return f"health_summary:{owner_id}"


def owner_keys(owner_id: str) -> tuple[str, ...]:
    """Every cache key derived from one owner's analysis history."""
    return (stats_key(owner_id), analyses_key(owner_id), health_summary_key(owner_id))


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------

class SQLiteTTLCache:
    """JSON values with an absolute expiry timestamp.

    Expired rows are treated as absent on read and removed lazily.

    Usage::

        cache = SQLiteTTLCache(db)
        cache.set_with_ttl("stats:u1", {"totalAnalyses": 3}, ttl_s=300)
        cache.get("stats:u1")  # {"totalAnalyses": 3}
    """

    def __init__(
        self,
        database: HealthDatabase,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = database
        self._clock = clock

    def get(self, key: str) -> Any | None:
        try:
            row = self._db.connection.execute(
                "SELECT value_json, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
        except (sqlite3.Error, DatabaseError) as exc:
            raise CacheError(f"Cache read failed for {key!r}: {exc}") from exc

        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            self.delete(key)
            return None
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            self.delete(key)
            return None

    def set_with_ttl(self, key: str, value: Any, ttl_s: float) -> None:
        try:
            value_json = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise CacheError(f"Cache value for {key!r} is not JSON-serializable") from exc

        expires_at = self._clock() + ttl_s
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """INSERT INTO cache_entries (key, value_json, expires_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                           value_json = excluded.value_json,
                           expires_at = excluded.expires_at""",
                    (key, value_json, expires_at),
                )
        except DatabaseError as exc:
            raise CacheError(f"Cache write failed for {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._db.transaction() as conn:
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        except DatabaseError as exc:
            raise CacheError(f"Cache delete failed for {key!r}: {exc}") from exc

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number of rows removed."""
        try:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
                )
                return cursor.rowcount
        except DatabaseError as exc:
            raise CacheError(f"Cache purge failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Read-through helpers
# ---------------------------------------------------------------------------

def cached(
    cache: Cache | None,
    key: str,
    ttl_s: float,
    compute: Callable[[], T],
) -> T:
    """Return the cached value for ``key`` or compute and store it.

    Errors from ``compute`` propagate; cache errors only cost a recompute.
    """
    if cache is not None:
        try:
            hit = cache.get(key)
        except Exception:
            logger.warning("Cache read failed for %s, recomputing", key, exc_info=True)
            hit = None
        if hit is not None:
            return hit

    value = compute()

    if cache is not None:
        try:
            cache.set_with_ttl(key, value, ttl_s)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
    return value


def invalidate_owner(cache: Cache | None, owner_id: str) -> None:
    """Best-effort delete of every cache entry derived from ``owner_id``'s history."""
    if cache is None:
        return
    for key in owner_keys(owner_id):
        try:
            cache.delete(key)
        except Exception:
            logger.warning("Cache invalidation failed for %s", key, exc_info=True)
