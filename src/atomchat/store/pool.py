"""
Shared connection pool for TurnStore.

One ``aiosqlite.Connection`` is kept per resolved database path, together with
a write lock. Every ``TurnStore`` bound to the same pool and path shares both,
so write transactions issued by concurrent handlers in one process never
interleave on the shared connection.

Stores created without a pool open a private connection instead; separate
connections to the same file are serialised by SQLite itself
(``BEGIN IMMEDIATE`` plus the busy timeout).

Usage::

    pool = StorePool()
    store_a = TurnStore(config, pool=pool)
    store_b = TurnStore(config, pool=pool)   # same path, same connection

    await store_a.initialize()
    await store_b.initialize()
    ...
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("atomchat.store.pool")


async def open_connection(
    db_path: str, *, wal_mode: bool, connection_timeout: float
) -> aiosqlite.Connection:
    """
    Open a connection in autocommit mode with the pragmas the store relies on.

    Transactions are always explicit (``BEGIN IMMEDIATE``) so the connection is
    opened with ``isolation_level=None``.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout, isolation_level=None)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


class StorePool:
    """
    Process-scoped registry of open connections and their write locks.

    Only safe to use from a single asyncio event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._open_lock = asyncio.Lock()

    @staticmethod
    def _resolve(db_path: str) -> str:
        return str(Path(db_path).expanduser().resolve())

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> tuple[aiosqlite.Connection, asyncio.Lock]:
        """
        Return the shared connection and write lock for *db_path*, opening it if needed.

        Concurrent callers for the same path receive the same objects.
        """
        resolved = self._resolve(db_path)
        if resolved in self._connections:
            return self._connections[resolved], self._write_locks[resolved]

        async with self._open_lock:
            if resolved not in self._connections:
                conn = await open_connection(
                    resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
                )
                self._connections[resolved] = conn
                self._write_locks[resolved] = asyncio.Lock()
                _logger.debug("pool_connection_opened", db_path=resolved)
        return self._connections[resolved], self._write_locks[resolved]

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for resolved in list(self._connections):
            conn = self._connections.pop(resolved)
            self._write_locks.pop(resolved, None)
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    @staticmethod
    def default() -> StorePool:
        """
        Return the process-level default pool, created lazily.

        Tests should create their own ``StorePool()`` for isolation.
        """
        global _default_pool
        if _default_pool is None:
            _default_pool = StorePool()
        return _default_pool


_default_pool: StorePool | None = None
