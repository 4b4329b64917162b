"""Single-owner state for multi-step confirmation flows.

Sessions are keyed by the invoking user's id; each user holds at most one
session, and starting a new flow replaces whatever was there before.
Nothing expires on a timer: a session lives until a terminal step deletes
it or, for the in-memory backend, until the process restarts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from ..core.logging_utils import log_event
from ..core.sqlite_utils import connect_sqlite, store_errors
from ..core.time_utils import now_iso

STEP_AWAITING_CONFIRMATION = "awaiting_confirmation"


class FlowKind(str, Enum):
    ROLE_CREATE = "role-create"
    ROLE_OVERWRITE = "role-overwrite"
    BULK_ASSIGN = "bulk-assign"
    AUDIT_SESSION = "audit-session"
    GHOST_SESSION = "ghost-session"

    @classmethod
    def parse(cls, value: Any) -> Optional["FlowKind"]:
        try:
            return cls(str(value))
        except ValueError:
            return None


@dataclass(frozen=True)
class Session:
    owner_id: str
    flow_kind: FlowKind
    step: str = STEP_AWAITING_CONFIRMATION
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)

    def advance(self, step: str, **payload: Any) -> "Session":
        merged = dict(self.payload)
        merged.update(payload)
        return replace(self, step=step, payload=merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "flow_kind": self.flow_kind.value,
            "step": self.step,
            "payload": self.payload,
            "created_at": self.created_at,
        }


class SessionStore(Protocol):
    async def get(self, owner_id: str) -> Optional[Session]: ...

    async def put(self, session: Session) -> Optional[Session]:
        """Store `session`; returns the session it replaced, if any."""
        ...

    async def delete(self, owner_id: str) -> bool: ...

    async def close(self) -> None: ...


class InMemorySessionStore:
    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def get(self, owner_id: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(owner_id)

    async def put(self, session: Session) -> Optional[Session]:
        async with self._lock:
            previous = self._sessions.get(session.owner_id)
            self._sessions[session.owner_id] = session
        if previous is not None:
            log_event(
                self._logger,
                logging.INFO,
                "gateway.session.replaced",
                owner_id=session.owner_id,
                previous_flow=previous.flow_kind.value,
                flow=session.flow_kind.value,
            )
        return previous

    async def delete(self, owner_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(owner_id, None) is not None

    async def close(self) -> None:
        async with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


class SqliteSessionStore:
    """Sessions that survive a restart, one row per owner."""

    def __init__(
        self, db_path: Path, *, logger: Optional[logging.Logger] = None
    ) -> None:
        self._db_path = db_path
        self._logger = logger or logging.getLogger(__name__)
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="session-store"
        )
        self._connection: Optional[sqlite3.Connection] = None

    async def initialize(self) -> None:
        await self._run(self._connection_sync)

    async def get(self, owner_id: str) -> Optional[Session]:
        return await self._run(self._get_sync, owner_id)

    async def put(self, session: Session) -> Optional[Session]:
        previous = await self._run(self._put_sync, session)
        if previous is not None:
            log_event(
                self._logger,
                logging.INFO,
                "gateway.session.replaced",
                owner_id=session.owner_id,
                previous_flow=previous.flow_kind.value,
                flow=session.flow_kind.value,
            )
        return previous

    async def delete(self, owner_id: str) -> bool:
        return await self._run(self._delete_sync, owner_id)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            with store_errors("session"):
                conn = connect_sqlite(self._db_path)
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS pending_sessions (
                            owner_id TEXT PRIMARY KEY,
                            flow_kind TEXT NOT NULL,
                            step TEXT NOT NULL,
                            payload_json TEXT NOT NULL,
                            created_at TEXT NOT NULL
                        )
                        """
                    )
            self._connection = conn
        return self._connection

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _row_to_session(self, row: sqlite3.Row) -> Optional[Session]:
        flow_kind = FlowKind.parse(row["flow_kind"])
        if flow_kind is None:
            return None
        try:
            payload = json.loads(row["payload_json"] or "{}")
        except ValueError:
            payload = {}
        return Session(
            owner_id=str(row["owner_id"]),
            flow_kind=flow_kind,
            step=str(row["step"]),
            payload=payload if isinstance(payload, dict) else {},
            created_at=str(row["created_at"]),
        )

    def _get_sync(self, owner_id: str) -> Optional[Session]:
        conn = self._connection_sync()
        with store_errors("session"):
            row = conn.execute(
                "SELECT * FROM pending_sessions WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        return self._row_to_session(row) if row is not None else None

    def _put_sync(self, session: Session) -> Optional[Session]:
        conn = self._connection_sync()
        with store_errors("session"), conn:
            row = conn.execute(
                "SELECT * FROM pending_sessions WHERE owner_id = ?",
                (session.owner_id,),
            ).fetchone()
            conn.execute(
                """
                INSERT INTO pending_sessions (
                    owner_id, flow_kind, step, payload_json, created_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    flow_kind = excluded.flow_kind,
                    step = excluded.step,
                    payload_json = excluded.payload_json,
                    created_at = excluded.created_at
                """,
                (
                    session.owner_id,
                    session.flow_kind.value,
                    session.step,
                    json.dumps(session.payload, sort_keys=True),
                    session.created_at,
                ),
            )
        return self._row_to_session(row) if row is not None else None

    def _delete_sync(self, owner_id: str) -> bool:
        conn = self._connection_sync()
        with store_errors("session"), conn:
            cursor = conn.execute(
                "DELETE FROM pending_sessions WHERE owner_id = ?", (owner_id,)
            )
            return cursor.rowcount > 0


def build_session_store(
    backend: str,
    *,
    db_path: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> SessionStore:
    if backend == "sqlite":
        if db_path is None:
            raise ValueError("sqlite session backend requires a db_path")
        return SqliteSessionStore(db_path, logger=logger)
    if backend == "memory":
        return InMemorySessionStore(logger=logger)
    raise ValueError(f"unknown session backend: {backend!r}")
