"""Shared key-value cache with per-entry TTL.

Used for both the embedding cache and the whole-response cache. Writes are a
single set-with-expiry, so an entry is either fully present or absent.
Callers treat every failure here as a miss.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from carefinder.errors import CacheError
from carefinder.logging import get_logger

_logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at);
"""


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CacheStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


class MemoryCache(CacheStore):
    """Process-local cache, for tests and single-worker deployments."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: float) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for k in keys:
            del self._entries[k]
        return len(keys)

    async def ping(self) -> bool:
        return True


class SqliteCache(CacheStore):
    def __init__(self, db_path: Path, clock=time.time):
        self.db_path = db_path
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA synchronous=NORMAL;")
        await self._conn.execute("PRAGMA busy_timeout=30000;")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        purged = await self.purge_expired()
        if purged:
            _logger.info("Purged %d expired cache entries", purged)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise CacheError("Cache not connected", operation="connect")
        return self._conn

    async def get(self, key: str) -> str | None:
        try:
            rows = await self.conn.execute_fetchall(
                "SELECT value FROM cache_entries WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            )
        except aiosqlite.Error as e:
            raise CacheError(f"Cache read failed: {e}", operation="get", cause=e) from e
        return rows[0][0] if rows else None

    async def set(self, key: str, value: str, ttl: float) -> None:
        try:
            await self.conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._clock() + ttl),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise CacheError(f"Cache write failed: {e}", operation="set", cause=e) from e

    async def delete(self, key: str) -> bool:
        try:
            cursor = await self.conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise CacheError(f"Cache delete failed: {e}", operation="delete", cause=e) from e
        return cursor.rowcount > 0

    async def delete_prefix(self, prefix: str) -> int:
        try:
            cursor = await self.conn.execute(
                "DELETE FROM cache_entries WHERE key LIKE ? ESCAPE '\\'",
                (_escape_like(prefix) + "%",),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise CacheError(f"Cache delete failed: {e}", operation="delete", cause=e) from e
        return cursor.rowcount

    async def purge_expired(self) -> int:
        cursor = await self.conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),))
        await self.conn.commit()
        return cursor.rowcount

    async def ping(self) -> bool:
        try:
            await self.conn.execute_fetchall("SELECT 1")
            return True
        except (aiosqlite.Error, CacheError):
            return False
