"""PostgreSQL implementation of the execution state store."""

from __future__ import annotations

import asyncpg

from ..contracts import ActivityEntry, NodeExecutionState, Workstream
from .repository import ExecutionStateStore


class PostgresExecutionStateStore(ExecutionStateStore):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS node_execution_state (
                workstream_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                play_id TEXT NOT NULL,
                status TEXT NOT NULL,
                data JSONB NOT NULL,
                PRIMARY KEY (workstream_id, node_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workstream_activity (
                id SERIAL PRIMARY KEY,
                workstream_id TEXT NOT NULL,
                activity_type TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workstreams (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def load_node_execution_states(
        self, workstream_id: str, play_id: str
    ) -> list[NodeExecutionState]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data::text AS data FROM node_execution_state WHERE workstream_id = $1 AND play_id = $2",
                workstream_id,
                play_id,
            )
        finally:
            await conn.close()
        return [NodeExecutionState.model_validate_json(r["data"]) for r in rows]

    async def upsert_node_execution_state(self, state: NodeExecutionState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO node_execution_state (workstream_id, node_id, play_id, status, data)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (workstream_id, node_id)
                DO UPDATE SET play_id = EXCLUDED.play_id, status = EXCLUDED.status, data = EXCLUDED.data
                """,
                state.workstream_id,
                state.node_id,
                state.play_id,
                state.status.value,
                state.model_dump_json(),
            )
        finally:
            await conn.close()

    async def append_activity(self, workstream_id: str, entry: ActivityEntry) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workstream_activity (workstream_id, activity_type, data) VALUES ($1, $2, $3::jsonb)",
                workstream_id,
                entry.activity_type,
                entry.model_dump_json(),
            )
        finally:
            await conn.close()

    async def list_activity(self, workstream_id: str) -> list[ActivityEntry]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data::text AS data FROM workstream_activity WHERE workstream_id = $1 ORDER BY id",
                workstream_id,
            )
        finally:
            await conn.close()
        return [ActivityEntry.model_validate_json(r["data"]) for r in rows]

    async def load_workstream(self, workstream_id: str) -> Workstream | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data::text AS data FROM workstreams WHERE id = $1",
                workstream_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return Workstream.model_validate_json(row["data"])

    async def save_workstream(self, workstream: Workstream) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workstreams (id, data) VALUES ($1, $2::jsonb)
                ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
                """,
                workstream.id,
                workstream.model_dump_json(),
            )
        finally:
            await conn.close()
