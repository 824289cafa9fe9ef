"""In-memory implementation of the execution state store."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Tuple

from ..contracts import ActivityEntry, NodeExecutionState, Workstream
from .repository import ExecutionStateStore


class InMemoryExecutionStateStore(ExecutionStateStore):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._states: Dict[Tuple[str, str], NodeExecutionState] = {}
        self._activity: Dict[str, List[ActivityEntry]] = defaultdict(list)
        self._workstreams: Dict[str, Workstream] = {}
        self.state_writes = 0
        self.workstream_writes = 0

    # ------------------------------------------------------------------
    async def load_node_execution_states(
        self, workstream_id: str, play_id: str
    ) -> list[NodeExecutionState]:
        return [
            state.model_copy(deep=True)
            for (ws_id, _), state in self._states.items()
            if ws_id == workstream_id and state.play_id == play_id
        ]

    async def upsert_node_execution_state(self, state: NodeExecutionState) -> None:
        self._states[(state.workstream_id, state.node_id)] = state.model_copy(deep=True)
        self.state_writes += 1

    async def append_activity(self, workstream_id: str, entry: ActivityEntry) -> None:
        self._activity[workstream_id].append(entry)

    async def list_activity(self, workstream_id: str) -> list[ActivityEntry]:
        return list(self._activity.get(workstream_id, ()))

    async def load_workstream(self, workstream_id: str) -> Workstream | None:
        ws = self._workstreams.get(workstream_id)
        return ws.model_copy(deep=True) if ws else None

    async def save_workstream(self, workstream: Workstream) -> None:
        self._workstreams[workstream.id] = workstream.model_copy(deep=True)
        self.workstream_writes += 1

    async def list_workstreams(self) -> list[Workstream]:
        return list(self._workstreams.values())
