"""
cache/store.py -- SQLite-backed response cache for upstream metadata lookups.

Cache-aside storage for the gateway: entries are keyed by the full request
URL (query string included) and hold the decoded JSON payload. Expiry is
purely time based with one fixed TTL (default 1 hour). Shared by the CLI and
API so both benefit from cached results.

Usage:
    cache = ResponseCache()
    data = cache.get("https://api.jikan.moe/v4/anime/1/full")   # dict or None
    cache.set("https://api.jikan.moe/v4/anime/1/full", data)
    cache.purge_expired()                # call periodically to trim old entries

Concurrent writes to the same key are last-write-wins (INSERT OR REPLACE).
All methods are blocking and thread-safe. Async callers run them through
asyncio.to_thread (see core/gateway.py).
"""

import json
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional, Union

_DEFAULT_DB = Path(__file__).parent / "anivault_cache.db"
_DEFAULT_TTL = 60 * 60  # 1 hour in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS response_cache (
    url         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL
);
"""


class ResponseCache:
    def __init__(
        self,
        db_path: Union[Path, str] = _DEFAULT_DB,
        ttl: int = _DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        # One connection shared by the event loop's worker threads and sync
        # routes; every statement + commit runs under this lock.
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, url: str) -> Optional[Any]:
        """Return the cached payload for url if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM response_cache WHERE url = ?",
                (url,),
            ).fetchone()
            if row is None:
                return None
            data, cached_at = row
            if self._clock() - cached_at >= self.ttl:
                self._conn.execute("DELETE FROM response_cache WHERE url = ?", (url,))
                self._conn.commit()
                return None
        return json.loads(data)

    def set(self, url: str, data: Any) -> None:
        """Store data for url, replacing any existing entry."""
        payload = json.dumps(data)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO response_cache (url, data, cached_at) VALUES (?, ?, ?)",
                (url, payload, self._clock()),
            )
            self._conn.commit()

    def delete(self, url: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM response_cache WHERE url = ?", (url,))
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        with self._lock:
            cutoff = self._clock() - self.ttl
            cursor = self._conn.execute("DELETE FROM response_cache WHERE cached_at <= ?", (cutoff,))
            self._conn.commit()
            return cursor.rowcount

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM response_cache")
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
