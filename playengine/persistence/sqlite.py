"""SQLite implementation of the execution state store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import ActivityEntry, NodeExecutionState, Workstream
from .repository import ExecutionStateStore


class SQLiteExecutionStateStore(ExecutionStateStore):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS node_execution_state (
                workstream_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                play_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (workstream_id, node_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workstream_activity (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workstream_id TEXT NOT NULL,
                activity_type TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workstreams (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Store API
    async def load_node_execution_states(
        self, workstream_id: str, play_id: str
    ) -> list[NodeExecutionState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM node_execution_state WHERE workstream_id = ? AND play_id = ?",
            workstream_id,
            play_id,
        )
        return [NodeExecutionState.model_validate_json(r["data"]) for r in rows]

    async def upsert_node_execution_state(self, state: NodeExecutionState) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO node_execution_state (workstream_id, node_id, play_id, status, data)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (workstream_id, node_id)
            DO UPDATE SET play_id = excluded.play_id, status = excluded.status, data = excluded.data
            """,
            state.workstream_id,
            state.node_id,
            state.play_id,
            state.status.value,
            state.model_dump_json(),
        )

    async def append_activity(self, workstream_id: str, entry: ActivityEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workstream_activity (workstream_id, activity_type, data) VALUES (?, ?, ?)",
            workstream_id,
            entry.activity_type,
            entry.model_dump_json(),
        )

    async def list_activity(self, workstream_id: str) -> list[ActivityEntry]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workstream_activity WHERE workstream_id = ? ORDER BY id",
            workstream_id,
        )
        return [ActivityEntry.model_validate_json(r["data"]) for r in rows]

    async def load_workstream(self, workstream_id: str) -> Workstream | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workstreams WHERE id = ?",
            workstream_id,
        )
        if not row:
            return None
        return Workstream.model_validate(json.loads(row["data"]))

    async def save_workstream(self, workstream: Workstream) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workstreams (id, data) VALUES (?, ?)
            ON CONFLICT (id) DO UPDATE SET data = excluded.data
            """,
            workstream.id,
            workstream.model_dump_json(),
        )

    async def list_workstreams(self) -> list[Workstream]:
        rows = await asyncio.to_thread(self._fetchall, "SELECT data FROM workstreams")
        return [Workstream.model_validate(json.loads(r["data"])) for r in rows]
