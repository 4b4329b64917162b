from __future__ import annotations

import asyncio
import json
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from ..core.sqlite_utils import connect_sqlite, store_errors
from ..core.time_utils import now_iso
from .policy import CommandRule, WorkspacePolicy

POLICY_SCHEMA_VERSION = 1


def _decode_rules(raw: Optional[str]) -> dict[str, CommandRule]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    if not isinstance(payload, dict):
        return {}
    return {
        str(name): CommandRule.from_mapping(rule)
        for name, rule in payload.items()
        if isinstance(rule, dict)
    }


def _encode_rules(rules: Mapping[str, CommandRule]) -> str:
    return json.dumps(
        {name: rule.to_mapping() for name, rule in sorted(rules.items())},
        sort_keys=True,
    )


def _row_to_workspace(row: sqlite3.Row) -> WorkspacePolicy:
    return WorkspacePolicy(
        workspace_id=str(row["guild_id"]),
        bypass_role_id=row["bypass_role_id"],
        owner_id=row["owner_id"],
        command_rules=_decode_rules(row["command_rules"]),
    )


class SqlitePolicyStore:
    """`guild_settings` table: one row per workspace, rules as a JSON map."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="policy-store"
        )
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await self._run(self._ensure_initialized_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    async def get_workspace(self, workspace_id: str) -> Optional[WorkspacePolicy]:
        return await self._run(self._get_workspace_sync, workspace_id)

    async def list_workspaces(self) -> list[WorkspacePolicy]:
        return await self._run(self._list_workspaces_sync)

    async def seed_workspace(
        self,
        workspace_id: str,
        *,
        owner_id: Optional[str] = None,
        rules: Optional[Mapping[str, CommandRule]] = None,
    ) -> bool:
        """Insert the row if absent; returns True when a row was created."""

        return await self._run(
            self._seed_workspace_sync, workspace_id, owner_id, dict(rules or {})
        )

    async def put_command_rule(
        self, workspace_id: str, command_name: str, rule: CommandRule
    ) -> WorkspacePolicy:
        return await self._run(
            self._mutate_rules_sync, workspace_id, command_name, rule
        )

    async def clear_command_rule(
        self, workspace_id: str, command_name: str
    ) -> WorkspacePolicy:
        return await self._run(
            self._mutate_rules_sync, workspace_id, command_name, None
        )

    async def set_bypass_role(
        self, workspace_id: str, role_id: Optional[str]
    ) -> WorkspacePolicy:
        return await self._run(self._set_bypass_role_sync, workspace_id, role_id)

    async def set_owner(self, workspace_id: str, owner_id: Optional[str]) -> None:
        await self._run(self._set_owner_sync, workspace_id, owner_id)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            with store_errors("policy"):
                conn = connect_sqlite(self._db_path)
                self._ensure_schema(conn)
            self._connection = conn
        return self._connection

    def _ensure_initialized_sync(self) -> None:
        self._connection_sync()

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS policy_schema_info (
                    version INTEGER NOT NULL
                )
                """
            )
            row = conn.execute(
                "SELECT version FROM policy_schema_info ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO policy_schema_info(version) VALUES (?)",
                    (POLICY_SCHEMA_VERSION,),
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS guild_settings (
                    guild_id TEXT PRIMARY KEY,
                    bypass_role_id TEXT,
                    owner_id TEXT,
                    command_rules TEXT NOT NULL DEFAULT '{}',
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _fetch_row(
        self, conn: sqlite3.Connection, workspace_id: str
    ) -> Optional[sqlite3.Row]:
        return conn.execute(
            """
            SELECT guild_id, bypass_role_id, owner_id, command_rules
              FROM guild_settings
             WHERE guild_id = ?
            """,
            (workspace_id,),
        ).fetchone()

    def _get_workspace_sync(self, workspace_id: str) -> Optional[WorkspacePolicy]:
        conn = self._connection_sync()
        with store_errors("policy"):
            row = self._fetch_row(conn, workspace_id)
        return _row_to_workspace(row) if row is not None else None

    def _list_workspaces_sync(self) -> list[WorkspacePolicy]:
        conn = self._connection_sync()
        with store_errors("policy"):
            rows = conn.execute(
                """
                SELECT guild_id, bypass_role_id, owner_id, command_rules
                  FROM guild_settings
                 ORDER BY guild_id
                """
            ).fetchall()
        return [_row_to_workspace(row) for row in rows]

    def _seed_workspace_sync(
        self,
        workspace_id: str,
        owner_id: Optional[str],
        rules: dict[str, CommandRule],
    ) -> bool:
        conn = self._connection_sync()
        with store_errors("policy"), conn:
            cursor = conn.execute(
                """
                INSERT INTO guild_settings (
                    guild_id, owner_id, command_rules, updated_at
                ) VALUES (?, ?, ?, ?)
                ON CONFLICT(guild_id) DO NOTHING
                """,
                (workspace_id, owner_id, _encode_rules(rules), now_iso()),
            )
            return cursor.rowcount > 0

    def _ensure_row(self, conn: sqlite3.Connection, workspace_id: str) -> None:
        conn.execute(
            """
            INSERT INTO guild_settings (guild_id, command_rules, updated_at)
            VALUES (?, '{}', ?)
            ON CONFLICT(guild_id) DO NOTHING
            """,
            (workspace_id, now_iso()),
        )

    def _mutate_rules_sync(
        self,
        workspace_id: str,
        command_name: str,
        rule: Optional[CommandRule],
    ) -> WorkspacePolicy:
        conn = self._connection_sync()
        with store_errors("policy"), conn:
            self._ensure_row(conn, workspace_id)
            row = self._fetch_row(conn, workspace_id)
            rules = _decode_rules(row["command_rules"] if row is not None else None)
            if rule is None or rule.is_empty:
                rules.pop(command_name, None)
            else:
                rules[command_name] = rule
            conn.execute(
                """
                UPDATE guild_settings
                   SET command_rules = ?, updated_at = ?
                 WHERE guild_id = ?
                """,
                (_encode_rules(rules), now_iso(), workspace_id),
            )
            updated = self._fetch_row(conn, workspace_id)
        assert updated is not None
        return _row_to_workspace(updated)

    def _set_bypass_role_sync(
        self, workspace_id: str, role_id: Optional[str]
    ) -> WorkspacePolicy:
        conn = self._connection_sync()
        with store_errors("policy"), conn:
            self._ensure_row(conn, workspace_id)
            conn.execute(
                """
                UPDATE guild_settings
                   SET bypass_role_id = ?, updated_at = ?
                 WHERE guild_id = ?
                """,
                (role_id, now_iso(), workspace_id),
            )
            updated = self._fetch_row(conn, workspace_id)
        assert updated is not None
        return _row_to_workspace(updated)

    def _set_owner_sync(self, workspace_id: str, owner_id: Optional[str]) -> None:
        conn = self._connection_sync()
        with store_errors("policy"), conn:
            self._ensure_row(conn, workspace_id)
            conn.execute(
                """
                UPDATE guild_settings
                   SET owner_id = ?, updated_at = ?
                 WHERE guild_id = ?
                """,
                (owner_id, now_iso(), workspace_id),
            )
