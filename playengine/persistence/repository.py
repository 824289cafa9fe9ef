"""Store abstraction for engine execution state."""

from __future__ import annotations

from typing import Protocol

from ..contracts import ActivityEntry, NodeExecutionState, Workstream


class ExecutionStateStore(Protocol):
    """Protocol for execution state persistence backends."""

    async def load_node_execution_states(
        self, workstream_id: str, play_id: str
    ) -> list[NodeExecutionState]:
        """Return all node states of ``workstream_id`` for ``play_id``."""

    async def upsert_node_execution_state(self, state: NodeExecutionState) -> None:
        """Insert or replace the state keyed on (workstream_id, node_id)."""

    async def append_activity(self, workstream_id: str, entry: ActivityEntry) -> None:
        """Append an audit trail entry."""

    async def list_activity(self, workstream_id: str) -> list[ActivityEntry]:
        """Return the audit trail in insertion order."""

    async def load_workstream(self, workstream_id: str) -> Workstream | None:
        """Retrieve a workstream by id."""

    async def save_workstream(self, workstream: Workstream) -> None:
        """Persist the workstream record."""
