"""Append-only SQLite-backed turn store with session and leaderboard records."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from atomchat.models.config import StoreConfig
from atomchat.models.turn import (
    TERMINAL_STATUSES,
    LeaderboardEntry,
    SessionRecord,
    Turn,
    TurnStatus,
    now_ms,
)
from atomchat.store.pool import open_connection

if TYPE_CHECKING:
    from atomchat.store.pool import StorePool

# ── Exceptions ─────────────────────────────────────────────────────────────────


class StoreError(Exception):
    """Base class for store errors."""


class TurnNotFoundError(StoreError):
    """Raised when a turn_id does not exist in the store."""

    def __init__(self, turn_id: str) -> None:
        super().__init__(f"Turn not found: {turn_id!r}")
        self.turn_id = turn_id


class DuplicateIDError(StoreError):
    """Raised when attempting to insert a turn with an existing ID."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


class TurnStateError(StoreError):
    """Raised when a status transition would leave a terminal state or skip processing."""

    def __init__(self, turn_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Turn {turn_id!r} cannot move from {current!r} to {requested!r}"
        )
        self.turn_id = turn_id
        self.current = current
        self.requested = requested


# ── TurnStore ──────────────────────────────────────────────────────────────────


class TurnStore:
    """
    SQLite-backed store laid out as per-user documents.

    - ``sessions``: one rollup row per user, only ever upserted with an atomic
      increment.
    - ``turns``: the append-only message log. The single permitted mutation is
      ``resolve_turn()``, a conditional ``processing → completed|error`` update.
    - ``leaderboard``: one score row per user, updated inside an immediate
      transaction.

    Every write holds the store's write lock. With a ``StorePool`` the lock is
    shared by all stores on the same path, so a transaction opened by one
    handler can never absorb statements issued by another on the shared
    connection.

    Usage::

        store = TurnStore(StoreConfig())
        await store.initialize()
        try:
            await store.append_turn(turn)
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._write_lock: asyncio.Lock = asyncio.Lock()
        self._logger = structlog.get_logger("atomchat.store")

    async def initialize(self) -> None:
        """
        Open (or borrow) a connection and apply the schema idempotently.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._pool is not None:
            conn, self._write_lock = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )

        schema = (Path(__file__).parent / "schema.sql").read_text()
        async with self._write_lock:
            await conn.executescript(schema)

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Close a private connection. Pool-owned connections are left to the pool."""
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    async def __aenter__(self) -> TurnStore:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock across ``BEGIN IMMEDIATE`` … ``COMMIT``; roll back on error."""
        conn = self._conn_or_raise()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    # ── Turn Methods ───────────────────────────────────────────────────────────

    async def append_turn(self, turn: Turn) -> Turn:
        """
        Append a turn to its session's log.

        Returns:
            A copy of the turn carrying its store-assigned ``seq``.

        Raises:
            DuplicateIDError: If a turn with this ID already exists.
        """
        conn = self._conn_or_raise()
        try:
            async with self._write_lock:
                cursor = await conn.execute(
                    """
                    INSERT INTO turns
                        (id, session_id, content, modality, is_user, status,
                         created_at, was_image)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        turn.id,
                        turn.session_id,
                        turn.content,
                        turn.modality,
                        int(turn.is_user),
                        turn.status,
                        turn.created_at,
                        int(turn.was_image),
                    ),
                )
                seq = cursor.lastrowid
                await cursor.close()
        except aiosqlite.IntegrityError as exc:
            raise DuplicateIDError(turn.id) from exc
        return turn.model_copy(update={"seq": seq})

    async def resolve_turn(self, turn_id: str, status: TurnStatus, content: str) -> Turn:
        """
        Move a ``processing`` turn to a terminal status and set its content.

        The update is conditional on the current status, so a turn can be
        resolved at most once and never leaves ``completed``/``error``. The
        resolved row is returned by the same statement that writes it.

        Raises:
            ValueError: If ``status`` is not terminal.
            TurnNotFoundError: If the turn does not exist.
            TurnStateError: If the turn is not currently ``processing``.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"resolve_turn requires a terminal status, got {status!r}")
        conn = self._conn_or_raise()
        async with self._write_lock:
            cursor = await conn.execute(
                "UPDATE turns SET status = ?, content = ?"
                " WHERE id = ? AND status = 'processing' RETURNING *",
                (status, content, turn_id),
            )
            row = await cursor.fetchone()
            await cursor.close()
        if row is not None:
            return self._row_to_turn(row)
        current = await self.get_turn(turn_id)
        raise TurnStateError(turn_id, current.status, status)

    async def get_turn(self, turn_id: str) -> Turn:
        """
        Fetch a single turn by ID.

        Raises:
            TurnNotFoundError: If no turn with this ID exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM turns WHERE id = ?", (turn_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise TurnNotFoundError(turn_id)
        return self._row_to_turn(row)

    async def list_turns(self, session_id: str) -> list[Turn]:
        """Fetch every turn of a session, oldest first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM turns WHERE session_id = ? ORDER BY created_at ASC, seq ASC",
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_turn(r) for r in rows]

    async def list_recent_turns(
        self,
        session_id: str,
        *,
        limit: int,
        before: Turn | None = None,
        exclude_images: bool = False,
        exclude_processing: bool = True,
    ) -> list[Turn]:
        """
        Fetch the most recent turns of a session, **newest first**.

        Filters are applied before ``limit``, so excluded turns never take up
        window slots.

        Args:
            session_id: The session to query.
            limit: Maximum number of turns to return.
            before: Only return turns ordered strictly before this turn.
            exclude_images: Drop turns flagged ``was_image``.
            exclude_processing: Drop unresolved assistant placeholders.

        Returns:
            Up to ``limit`` turns ordered by (created_at, seq) DESC.
        """
        if limit <= 0:
            return []
        conn = self._conn_or_raise()
        conditions = ["session_id = ?"]
        params: list[Any] = [session_id]
        if before is not None:
            conditions.append("(created_at < ? OR (created_at = ? AND seq < ?))")
            params.extend([before.created_at, before.created_at, before.seq])
        if exclude_images:
            conditions.append("was_image = 0")
        if exclude_processing:
            conditions.append("status != 'processing'")
        params.append(limit)

        async with conn.execute(
            f"SELECT * FROM turns WHERE {' AND '.join(conditions)}"
            " ORDER BY created_at DESC, seq DESC LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_turn(r) for r in rows]

    async def count_turns(self, session_id: str) -> int:
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT COUNT(*) FROM turns WHERE session_id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    # ── Session Methods ────────────────────────────────────────────────────────

    async def increment_session(self, user_id: str, delta: int, at: int | None = None) -> None:
        """
        Upsert the session rollup: set ``last_interaction`` and add ``delta`` turns.

        The increment happens inside SQLite (``total_turns = total_turns + ?``),
        never as a read-then-write in Python.
        """
        conn = self._conn_or_raise()
        timestamp = now_ms() if at is None else at
        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO sessions (user_id, last_interaction, total_turns)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    last_interaction = excluded.last_interaction,
                    total_turns = sessions.total_turns + excluded.total_turns
                """,
                (user_id, timestamp, delta),
            )

    async def get_session(self, user_id: str) -> SessionRecord | None:
        """Fetch a session rollup. Returns None if the session was never created."""
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM sessions WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return SessionRecord(
            user_id=row["user_id"],
            last_interaction=row["last_interaction"],
            total_turns=row["total_turns"],
        )

    # ── Leaderboard Methods ────────────────────────────────────────────────────

    async def award_points(self, user_id: str, points: int, display_name: str) -> LeaderboardEntry:
        """
        Add ``points`` to a user's leaderboard row in one immediate transaction.

        The current score is read and the new score written while SQLite's
        write lock is held, so concurrent awards for the same user are never
        lost.

        Returns:
            The leaderboard entry as written.
        """
        timestamp = now_ms()
        async with self._transaction() as conn:
            async with conn.execute(
                "SELECT points FROM leaderboard WHERE user_id = ?", (user_id,)
            ) as cursor:
                row = await cursor.fetchone()
            current = row["points"] if row is not None else 0
            new_points = current + points
            await conn.execute(
                """
                INSERT INTO leaderboard (user_id, points, display_name, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    points = excluded.points,
                    display_name = excluded.display_name,
                    last_updated = excluded.last_updated
                """,
                (user_id, new_points, display_name, timestamp),
            )
        self._logger.debug(
            "leaderboard_updated", user_id=user_id, points=new_points, delta=points
        )
        return LeaderboardEntry(
            user_id=user_id,
            points=new_points,
            display_name=display_name,
            last_updated=timestamp,
        )

    async def get_leaderboard_entry(self, user_id: str) -> LeaderboardEntry | None:
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM leaderboard WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return LeaderboardEntry(
            user_id=row["user_id"],
            points=row["points"],
            display_name=row["display_name"],
            last_updated=row["last_updated"],
        )

    # ── Deletion Methods ───────────────────────────────────────────────────────

    async def delete_turns(self, session_id: str, batch_size: int | None = None) -> int:
        """
        Delete every turn of a session in committed batches.

        Each batch enumerates up to ``batch_size`` turn IDs and deletes them in
        one transaction. Safe to re-run after a partial failure.

        Returns:
            Number of turns deleted.
        """
        size = batch_size or self._config.delete_batch_size
        conn = self._conn_or_raise()
        deleted = 0
        while True:
            async with conn.execute(
                "SELECT id FROM turns WHERE session_id = ? LIMIT ?", (session_id, size)
            ) as cursor:
                rows = await cursor.fetchall()
            if not rows:
                break
            ids = [r["id"] for r in rows]
            placeholders = ",".join("?" * len(ids))
            async with self._transaction() as tx:
                await tx.execute(f"DELETE FROM turns WHERE id IN ({placeholders})", ids)
            deleted += len(ids)
            self._logger.debug("turn_batch_deleted", session_id=session_id, count=len(ids))
        return deleted

    async def delete_session(self, user_id: str) -> bool:
        """Delete the session rollup row. Returns True if a row existed."""
        return await self._delete_one("DELETE FROM sessions WHERE user_id = ?", user_id)

    async def delete_leaderboard_entry(self, user_id: str) -> bool:
        """Delete the leaderboard row. Returns True if a row existed."""
        return await self._delete_one("DELETE FROM leaderboard WHERE user_id = ?", user_id)

    async def _delete_one(self, sql: str, key: str) -> bool:
        conn = self._conn_or_raise()
        async with self._write_lock:
            cursor = await conn.execute(sql, (key,))
            removed = cursor.rowcount
            await cursor.close()
        return removed > 0

    # ── Private Helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_turn(row: aiosqlite.Row) -> Turn:
        return Turn(
            id=row["id"],
            session_id=row["session_id"],
            content=row["content"],
            modality=row["modality"],
            is_user=bool(row["is_user"]),
            status=row["status"],
            created_at=row["created_at"],
            was_image=bool(row["was_image"]),
            seq=row["seq"],
        )
