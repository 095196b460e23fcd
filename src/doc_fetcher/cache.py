"""TTL-based cache for robots.txt policies.

Uses SQLite for persistence across runs. Entries are keyed by domain and
expire after a configurable TTL (24 hours by default). An empty body is a
valid entry: it records a 404 so the site is not asked again until expiry.
"""

import sqlite3
import time
from pathlib import Path

from loguru import logger

_DEFAULT_TTL_SECONDS = 24 * 3600

# Purge expired entries every N writes
_PURGE_INTERVAL = 50

_PRAGMAS = ("journal_mode = WAL", "synchronous = NORMAL", "busy_timeout = 5000")

_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS robots_cache (
        domain TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        content TEXT NOT NULL,
        fetched_at REAL NOT NULL,
        expires_at REAL NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_robots_cache_expires ON robots_cache(expires_at)",
)


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    for pragma in _PRAGMAS:
        conn.execute(f"PRAGMA {pragma}")
    for statement in _SCHEMA:
        conn.execute(statement)
    conn.commit()
    return conn


class RobotsCache:
    """SQLite-backed TTL cache of raw robots.txt bodies."""

    def __init__(self, db_path: Path, ttl_seconds: float = _DEFAULT_TTL_SECONDS):
        self._db_path = db_path
        self._ttl = ttl_seconds
        self._writes = 0
        self._conn = _connect(db_path)
        logger.debug(f"RobotsCache initialized at {db_path}")

    def get(self, domain: str) -> str | None:
        """Cached robots.txt body for *domain*, or None if missing or expired."""
        row = self._conn.execute(
            "SELECT content, fetched_at FROM robots_cache "
            "WHERE domain = ? AND expires_at > ?",
            (domain, time.time()),
        ).fetchone()

        if row:
            age_hours = (time.time() - row["fetched_at"]) / 3600
            logger.debug(f"Using cached robots.txt for {domain} ({age_hours:.1f}h old)")
            return row["content"]

        logger.debug(f"Robots cache MISS: {domain}")
        return None

    def fetched_at(self, domain: str) -> float | None:
        row = self._conn.execute(
            "SELECT fetched_at FROM robots_cache WHERE domain = ?", (domain,)
        ).fetchone()
        return row["fetched_at"] if row else None

    def set(self, domain: str, content: str, url: str = "") -> None:
        """Store a robots.txt body for *domain*."""
        now = time.time()
        self._conn.execute(
            """INSERT OR REPLACE INTO robots_cache
               (domain, url, content, fetched_at, expires_at)
               VALUES (?, ?, ?, ?, ?)""",
            (domain, url, content, now, now + self._ttl),
        )
        self._conn.commit()
        logger.debug(f"Cached robots.txt for {domain} TTL={self._ttl:.0f}s")

        self._writes += 1
        if self._writes % _PURGE_INTERVAL == 0:
            self.purge_expired()

    def purge_expired(self) -> int:
        """Remove expired entries."""
        cursor = self._conn.execute(
            "DELETE FROM robots_cache WHERE expires_at <= ?",
            (time.time(),),
        )
        if cursor.rowcount > 0:
            self._conn.commit()
            logger.debug(f"Purged {cursor.rowcount} expired robots entries")
        return cursor.rowcount

    def clear(self, domain: str | None = None) -> int:
        """Clear cache entries. If domain specified, only clear that domain."""
        if domain:
            cursor = self._conn.execute(
                "DELETE FROM robots_cache WHERE domain = ?", (domain,)
            )
        else:
            cursor = self._conn.execute("DELETE FROM robots_cache")
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        """Close database connection."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Error closing robots cache: {e}")
