# solana_token_cache_bundle/token_cache/database.py
"""
Durable (secondary) cache tier on SQLite via aiosqlite.

Two logical tables, `basic_tokens` and `enriched_tokens`, share one layout:

    key_name   TEXT UNIQUE   -- logical key, upserted
    data       TEXT          -- JSON payload
    created_at REAL          -- unix seconds of the last write
    expires_at REAL NULL     -- unix seconds, NULL = never expires

Rows whose `expires_at` has passed are invisible to reads and are physically
removed only by `cleanup_expired()`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import aiosqlite

from solana_token_cache_bundle.common.constants import TABLES

logger = logging.getLogger("TokenCache")


def _check_table(table: str) -> str:
    # Table names are interpolated into SQL; only the known ones are allowed.
    if table not in TABLES:
        raise ValueError(f"unknown cache table {table!r}")
    return table


async def _ensure_core_schema(db: aiosqlite.Connection) -> None:
    for table in TABLES:
        await db.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                key_name TEXT UNIQUE NOT NULL,
                data TEXT,
                created_at REAL NOT NULL,
                expires_at REAL
            );
        """)
        await db.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_expires_at ON {table}(expires_at);")
    await db.commit()


class SqliteStore:
    """Shared aiosqlite connection with lazy connect and explicit close."""

    def __init__(self, path: str, *, clock: Callable[[], float] = time.time):
        self._path = path
        self._clock = clock
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    async def connect(self) -> aiosqlite.Connection:
        async with self._lock:
            if self._conn is None:
                if self._path != ":memory:":
                    parent = os.path.dirname(os.path.abspath(self._path))
                    os.makedirs(parent, exist_ok=True)
                conn = await aiosqlite.connect(self._path)
                # Pragmatic pragmas for better concurrency
                await conn.execute("PRAGMA journal_mode=WAL;")
                await conn.execute("PRAGMA busy_timeout=30000;")
                await conn.execute("PRAGMA synchronous=NORMAL;")
                conn.row_factory = aiosqlite.Row
                await _ensure_core_schema(conn)
                self._conn = conn
                logger.info("Connected to SQLite cache at %s", self._path)
            return self._conn

    async def close(self) -> None:
        """Close the shared connection. Safe to call multiple times."""
        async with self._lock:
            if self._conn is not None:
                try:
                    await self._conn.close()
                finally:
                    self._conn = None
                logger.info("SQLite cache connection closed")

    async def get(self, table: str, key: str) -> Any:
        db = await self.connect()
        async with db.execute(
            f"SELECT data FROM {_check_table(table)} "
            "WHERE key_name = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self._clock()),
        ) as cur:
            row = await cur.fetchone()
        return json.loads(row["data"]) if row else None

    async def upsert(self, table: str, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        now = self._clock()
        expires_at = None if ttl_seconds is None else now + float(ttl_seconds)
        db = await self.connect()
        await db.execute(
            f"INSERT INTO {_check_table(table)} (key_name, data, created_at, expires_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(key_name) DO UPDATE SET "
            "data = excluded.data, created_at = excluded.created_at, expires_at = excluded.expires_at",
            (key, json.dumps(value), now, expires_at),
        )
        await db.commit()

    async def exists(self, table: str, key: str) -> bool:
        db = await self.connect()
        async with db.execute(
            f"SELECT 1 FROM {_check_table(table)} "
            "WHERE key_name = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self._clock()),
        ) as cur:
            return (await cur.fetchone()) is not None

    async def ttl(self, table: str, key: str) -> Optional[int]:
        """None when the row is missing or expired, -1 when it never expires, else seconds left."""
        now = self._clock()
        db = await self.connect()
        async with db.execute(
            f"SELECT expires_at FROM {_check_table(table)} "
            "WHERE key_name = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, now),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        if row["expires_at"] is None:
            return -1
        return int(row["expires_at"] - now)

    async def delete(self, table: str, key: str) -> None:
        db = await self.connect()
        await db.execute(f"DELETE FROM {_check_table(table)} WHERE key_name = ?", (key,))
        await db.commit()

    async def cleanup_expired(self) -> Dict[str, int]:
        """Delete rows whose expiry has passed, in every table. Returns rows removed per table."""
        db = await self.connect()
        now = self._clock()
        removed: Dict[str, int] = {}
        for table in TABLES:
            cur = await db.execute(
                f"DELETE FROM {table} WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            removed[table] = cur.rowcount if cur.rowcount is not None and cur.rowcount >= 0 else 0
            await cur.close()
        await db.commit()
        for table, n in removed.items():
            logger.info("Cleaned %d expired %s records", n, table)
        return removed

    async def count_rows(self, table: str) -> int:
        db = await self.connect()
        async with db.execute(f"SELECT COUNT(*) AS n FROM {_check_table(table)}") as cur:
            row = await cur.fetchone()
        return int(row["n"]) if row else 0
