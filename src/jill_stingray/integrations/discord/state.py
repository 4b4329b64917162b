from __future__ import annotations

import asyncio
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from ...core.sqlite_utils import connect_sqlite, store_errors
from ...core.time_utils import now_iso

STATE_SCHEMA_VERSION = 1
DANGERU_MAX_POSTS = 100


@dataclass(frozen=True)
class DangeruPost:
    post_id: int
    guild_id: str
    trip: str
    content: str
    time_label: str
    author_id: str
    author_name: Optional[str]
    created_at: str


@dataclass(frozen=True)
class DangeruBoard:
    guild_id: str
    channel_id: str
    message_id: Optional[str]
    owner_id: Optional[str]


class DiscordStateStore:
    """Handler-owned rows: custom roles and the anonymous board."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="discord-state"
        )
        self._connection: Optional[sqlite3.Connection] = None

    async def initialize(self) -> None:
        await self._run(self._connection_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    async def get_custom_role(self, guild_id: str, user_id: str) -> Optional[str]:
        return await self._run(self._get_custom_role_sync, guild_id, user_id)

    async def set_custom_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        await self._run(self._set_custom_role_sync, guild_id, user_id, role_id)

    async def delete_custom_role(self, guild_id: str, user_id: str) -> bool:
        return await self._run(self._delete_custom_role_sync, guild_id, user_id)

    async def add_post(
        self,
        guild_id: str,
        *,
        trip: str,
        content: str,
        time_label: str,
        author_id: str,
        author_name: Optional[str] = None,
    ) -> bool:
        """Store a post; returns True when the trip had already posted."""

        return await self._run(
            self._add_post_sync,
            guild_id,
            trip,
            content,
            time_label,
            author_id,
            author_name,
        )

    async def list_posts(
        self, guild_id: str, *, offset: int = 0, limit: int = DANGERU_MAX_POSTS
    ) -> list[DangeruPost]:
        return await self._run(self._list_posts_sync, guild_id, offset, limit)

    async def count_posts(self, guild_id: str) -> int:
        return await self._run(self._count_posts_sync, guild_id)

    async def posts_by_trip(self, guild_id: str, trip: str) -> list[DangeruPost]:
        return await self._run(self._posts_by_trip_sync, guild_id, trip)

    async def wipe_posts(self, guild_id: str) -> int:
        return await self._run(self._wipe_posts_sync, guild_id)

    async def get_board(self, guild_id: str) -> Optional[DangeruBoard]:
        return await self._run(self._get_board_sync, guild_id)

    async def set_board(
        self,
        guild_id: str,
        *,
        channel_id: str,
        message_id: Optional[str],
        owner_id: Optional[str] = None,
    ) -> None:
        await self._run(
            self._set_board_sync, guild_id, channel_id, message_id, owner_id
        )

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            with store_errors("state"):
                conn = connect_sqlite(self._db_path)
                self._ensure_schema(conn)
            self._connection = conn
        return self._connection

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS state_schema_info (
                    version INTEGER NOT NULL
                )
                """
            )
            row = conn.execute(
                "SELECT version FROM state_schema_info ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO state_schema_info(version) VALUES (?)",
                    (STATE_SCHEMA_VERSION,),
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS custom_roles (
                    guild_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    role_id TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (guild_id, user_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dangeru_posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    guild_id TEXT NOT NULL,
                    trip TEXT NOT NULL,
                    content TEXT NOT NULL,
                    time_label TEXT NOT NULL,
                    author_id TEXT NOT NULL,
                    author_name TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_dangeru_posts_guild
                    ON dangeru_posts(guild_id, id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dangeru_boards (
                    guild_id TEXT PRIMARY KEY,
                    channel_id TEXT NOT NULL,
                    message_id TEXT,
                    owner_id TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _get_custom_role_sync(self, guild_id: str, user_id: str) -> Optional[str]:
        conn = self._connection_sync()
        with store_errors("state"):
            row = conn.execute(
                "SELECT role_id FROM custom_roles WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            ).fetchone()
        return str(row["role_id"]) if row is not None else None

    def _set_custom_role_sync(self, guild_id: str, user_id: str, role_id: str) -> None:
        conn = self._connection_sync()
        with store_errors("state"), conn:
            conn.execute(
                """
                INSERT INTO custom_roles (guild_id, user_id, role_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id, user_id) DO UPDATE SET
                    role_id = excluded.role_id,
                    updated_at = excluded.updated_at
                """,
                (guild_id, user_id, role_id, now_iso()),
            )

    def _delete_custom_role_sync(self, guild_id: str, user_id: str) -> bool:
        conn = self._connection_sync()
        with store_errors("state"), conn:
            cursor = conn.execute(
                "DELETE FROM custom_roles WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            )
            return cursor.rowcount > 0

    def _add_post_sync(
        self,
        guild_id: str,
        trip: str,
        content: str,
        time_label: str,
        author_id: str,
        author_name: Optional[str],
    ) -> bool:
        conn = self._connection_sync()
        with store_errors("state"), conn:
            returning = (
                conn.execute(
                    "SELECT 1 FROM dangeru_posts WHERE guild_id = ? AND trip = ? LIMIT 1",
                    (guild_id, trip),
                ).fetchone()
                is not None
            )
            conn.execute(
                """
                INSERT INTO dangeru_posts (
                    guild_id, trip, content, time_label, author_id, author_name,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (guild_id, trip, content, time_label, author_id, author_name, now_iso()),
            )
            conn.execute(
                """
                DELETE FROM dangeru_posts
                 WHERE guild_id = ?
                   AND id NOT IN (
                        SELECT id FROM dangeru_posts
                         WHERE guild_id = ?
                         ORDER BY id DESC
                         LIMIT ?
                   )
                """,
                (guild_id, guild_id, DANGERU_MAX_POSTS),
            )
        return returning

    def _list_posts_sync(
        self, guild_id: str, offset: int, limit: int
    ) -> list[DangeruPost]:
        conn = self._connection_sync()
        with store_errors("state"):
            rows = conn.execute(
                """
                SELECT * FROM dangeru_posts
                 WHERE guild_id = ?
                 ORDER BY id DESC
                 LIMIT ? OFFSET ?
                """,
                (guild_id, limit, max(offset, 0)),
            ).fetchall()
        return [_row_to_post(row) for row in rows]

    def _count_posts_sync(self, guild_id: str) -> int:
        conn = self._connection_sync()
        with store_errors("state"):
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM dangeru_posts WHERE guild_id = ?",
                (guild_id,),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def _posts_by_trip_sync(self, guild_id: str, trip: str) -> list[DangeruPost]:
        conn = self._connection_sync()
        with store_errors("state"):
            rows = conn.execute(
                """
                SELECT * FROM dangeru_posts
                 WHERE guild_id = ? AND trip = ?
                 ORDER BY id DESC
                """,
                (guild_id, trip),
            ).fetchall()
        return [_row_to_post(row) for row in rows]

    def _wipe_posts_sync(self, guild_id: str) -> int:
        conn = self._connection_sync()
        with store_errors("state"), conn:
            cursor = conn.execute(
                "DELETE FROM dangeru_posts WHERE guild_id = ?", (guild_id,)
            )
            return cursor.rowcount

    def _get_board_sync(self, guild_id: str) -> Optional[DangeruBoard]:
        conn = self._connection_sync()
        with store_errors("state"):
            row = conn.execute(
                "SELECT * FROM dangeru_boards WHERE guild_id = ?", (guild_id,)
            ).fetchone()
        if row is None:
            return None
        return DangeruBoard(
            guild_id=str(row["guild_id"]),
            channel_id=str(row["channel_id"]),
            message_id=row["message_id"],
            owner_id=row["owner_id"],
        )

    def _set_board_sync(
        self,
        guild_id: str,
        channel_id: str,
        message_id: Optional[str],
        owner_id: Optional[str],
    ) -> None:
        conn = self._connection_sync()
        with store_errors("state"), conn:
            conn.execute(
                """
                INSERT INTO dangeru_boards (
                    guild_id, channel_id, message_id, owner_id, updated_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    channel_id = excluded.channel_id,
                    message_id = excluded.message_id,
                    owner_id = COALESCE(excluded.owner_id, dangeru_boards.owner_id),
                    updated_at = excluded.updated_at
                """,
                (guild_id, channel_id, message_id, owner_id, now_iso()),
            )


def _row_to_post(row: sqlite3.Row) -> DangeruPost:
    return DangeruPost(
        post_id=int(row["id"]),
        guild_id=str(row["guild_id"]),
        trip=str(row["trip"]),
        content=str(row["content"]),
        time_label=str(row["time_label"]),
        author_id=str(row["author_id"]),
        author_name=row["author_name"],
        created_at=str(row["created_at"]),
    )
