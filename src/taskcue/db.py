"""SQLite-backed store for taskcue."""

from __future__ import annotations

import time

import aiosqlite

SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Plain values: task records, results, heartbeats
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
);

-- Sorted sets: the priority ordering
CREATE TABLE IF NOT EXISTS zsets (
    key TEXT NOT NULL,
    member TEXT NOT NULL,
    score REAL NOT NULL,
    seq INTEGER NOT NULL,
    PRIMARY KEY (key, member)
);

-- Sets: dependency tracking
CREATE TABLE IF NOT EXISTS sets (
    key TEXT NOT NULL,
    member TEXT NOT NULL,
    PRIMARY KEY (key, member)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_zsets_order ON zsets(key, score, seq);
CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """
    Initialize database connection and schema.

    Args:
        db_path: Path to SQLite file or ":memory:" for in-memory.

    Returns:
        Open database connection.
    """
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    # Enable WAL mode for better concurrency
    await conn.execute("PRAGMA journal_mode=WAL")

    # Check if schema exists
    async with conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ) as cursor:
        exists = await cursor.fetchone()

    if not exists:
        # Fresh database - create schema
        await conn.executescript(SCHEMA)
        await conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        await conn.commit()

    return conn


class SqliteStore:
    """
    Store implementation on top of a single aiosqlite connection.

    Every mutating call commits before returning, so a second process
    opening the same file sees the change.

    Example:
        store = await SqliteStore.open("taskcue.db")
        queue = TaskQueue(store)
        ...
        await store.close()
    """

    def __init__(self, conn: aiosqlite.Connection, db_path: str = ":memory:") -> None:
        self.conn = conn
        self.db_path = db_path

    @classmethod
    async def open(cls, db_path: str = ":memory:") -> SqliteStore:
        conn = await init_db(db_path)
        return cls(conn, db_path)

    # --- Sorted sets ---

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self.conn.execute(
            """
            INSERT INTO zsets (key, member, score, seq)
            VALUES (?, ?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM zsets))
            ON CONFLICT(key, member) DO UPDATE SET score = excluded.score
            """,
            (key, member, score),
        )
        await self.conn.commit()

    async def zrem(self, key: str, member: str) -> None:
        await self.conn.execute("DELETE FROM zsets WHERE key = ? AND member = ?", (key, member))
        await self.conn.commit()

    async def zrange(self, key: str) -> list[str]:
        async with self.conn.execute(
            "SELECT member FROM zsets WHERE key = ? ORDER BY score, seq", (key,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [row["member"] for row in rows]

    async def zcard(self, key: str) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM zsets WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return row[0]

    # --- Sets ---

    async def sadd(self, key: str, *members: str) -> None:
        await self.conn.executemany(
            "INSERT OR IGNORE INTO sets (key, member) VALUES (?, ?)",
            [(key, m) for m in members],
        )
        await self.conn.commit()

    async def srem(self, key: str, *members: str) -> None:
        await self.conn.executemany(
            "DELETE FROM sets WHERE key = ? AND member = ?",
            [(key, m) for m in members],
        )
        await self.conn.commit()

    async def smembers(self, key: str) -> set[str]:
        async with self.conn.execute("SELECT member FROM sets WHERE key = ?", (key,)) as cursor:
            rows = await cursor.fetchall()
            return {row["member"] for row in rows}

    async def scard(self, key: str) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM sets WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return row[0]

    # --- Values ---

    async def get(self, key: str) -> str | None:
        async with self.conn.execute(
            "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        if row["expires_at"] is not None and row["expires_at"] <= time.time():
            await self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            await self.conn.commit()
            return None
        return row["value"]

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        await self.conn.execute(
            "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at),
        )
        await self.conn.commit()

    async def delete(self, *keys: str) -> None:
        for table in ("kv", "zsets", "sets"):
            await self.conn.executemany(f"DELETE FROM {table} WHERE key = ?", [(k,) for k in keys])
        await self.conn.commit()

    async def purge_expired(self) -> int:
        """Delete expired values. Returns how many were removed."""
        cursor = await self.conn.execute(
            "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (time.time(),)
        )
        await self.conn.commit()
        return cursor.rowcount

    async def close(self) -> None:
        await self.conn.close()
