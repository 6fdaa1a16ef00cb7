"""Durable single-host store backed by SQLite."""

from __future__ import annotations

import asyncio
import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional, Set

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
)
"""


class SqliteStore:
    """:class:`~quotecache.store.base.KeyValueStore` persisted to ``path``.

    Every operation opens its own connection on a worker thread via
    :func:`asyncio.to_thread`, so several processes on one host can share the
    file. Expired rows read as absent and are purged lazily.
    """

    def __init__(self, path: Path, *, clock: Callable[[], float] = time.time, timeout: float = 5.0) -> None:
        self.path = Path(path)
        self._clock = clock
        self._timeout = timeout
        self._initialised = False

    def _connect(self) -> sqlite3.Connection:
        if not self._initialised:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=self._timeout)
        if not self._initialised:
            with conn:
                conn.execute(_SCHEMA)
            self._initialised = True
        return conn

    def _get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value, expires_at FROM kv WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at is not None and expires_at <= self._clock():
                with conn:
                    conn.execute("DELETE FROM kv WHERE key = ? AND expires_at <= ?", (key, self._clock()))
                return None
            return value
        finally:
            conn.close()

    def _set(self, key: str, value: str, ttl_seconds: Optional[float]) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
                    (key, value, expires_at),
                )
        finally:
            conn.close()

    def _delete(self, key: str) -> bool:
        now = self._clock()
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                    (key, now),
                )
                removed = cursor.rowcount > 0
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return removed
        finally:
            conn.close()

    def _keys(self, prefix: str) -> Set[str]:
        now = self._clock()
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? AND (expires_at IS NULL OR expires_at > ?)",
                (len(prefix), prefix, now),
            ).fetchall()
            return {row[0] for row in rows}
        finally:
            conn.close()

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[float] = None) -> None:
        await asyncio.to_thread(self._set, key, value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def keys(self, prefix: str) -> Set[str]:
        return await asyncio.to_thread(self._keys, prefix)

    async def close(self) -> None:
        return None
