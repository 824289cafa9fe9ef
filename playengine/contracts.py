"""Core data contracts for the play execution engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

_COMPARATOR_ALIASES = {
    "less_than": "<",
    "lt": "<",
    "greater_than": ">",
    "gt": ">",
    "equals": "=",
    "eq": "=",
    "==": "=",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Play definition


class EdgeCondition(BaseModel):
    """Guard expression on an edge: ``metric <op> value``.

    The workflow designer's ``{"field": ..., "value": ...}`` shape is accepted
    and read as an equality check.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    metric: str = Field(min_length=1)
    op: Literal["<", ">", "=", "between"] = "="
    value: Any = None
    value_max: Any = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "metric" not in data and "field" in data:
            data["metric"] = data.pop("field")
        for key in ("operator", "comparator"):
            if key in data and "op" not in data:
                data["op"] = data.pop(key)
        op = data.get("op")
        if isinstance(op, str):
            data["op"] = _COMPARATOR_ALIASES.get(op, op)
        value = data.get("value")
        if (
            data.get("op") == "between"
            and isinstance(value, (list, tuple))
            and len(value) == 2
            and data.get("value_max") is None
        ):
            data["value"], data["value_max"] = value
        return data

    @model_validator(mode="after")
    def _check_operands(self) -> "EdgeCondition":
        if self.op == "between":
            if not (is_number(self.value) and is_number(self.value_max)):
                raise ValueError("'between' requires numeric 'value' and 'value_max'")
            if self.value > self.value_max:
                raise ValueError("'between' lower bound exceeds upper bound")
        elif self.op in ("<", ">") and not is_number(self.value):
            raise ValueError(f"'{self.op}' requires a numeric 'value'")
        return self

    def describe(self) -> str:
        if self.op == "between":
            return f"{self.metric} between {self.value} and {self.value_max}"
        return f"{self.metric} {self.op} {self.value!r}"


class NodePosition(BaseModel):
    """Canvas coordinates; layout only."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class WorkflowNode(BaseModel):
    """One step of a play."""

    model_config = ConfigDict(frozen=True)

    id: str
    play_id: str
    step_type: str
    name: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    # output field -> workstream field written back on completion
    output_mapping: Dict[str, str] = Field(default_factory=dict)
    position: NodePosition = Field(default_factory=NodePosition)

    @property
    def label(self) -> str:
        return self.name or self.id


class WorkflowEdge(BaseModel):
    """Directed transition between two nodes, optionally guarded."""

    model_config = ConfigDict(frozen=True)

    id: str
    play_id: str
    from_node_id: str
    to_node_id: str
    condition: Optional[EdgeCondition] = None
    label: Optional[str] = None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None


class Play(BaseModel):
    """Immutable DAG definition of a reusable business process."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    # play-level settings readable by node inputs
    config: Dict[str, Any] = Field(default_factory=dict)
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Runtime inputs


class Workstream(BaseModel):
    """Running process instance. Unknown business fields are kept as extras."""

    model_config = ConfigDict(extra="allow")

    id: str
    play_id: Optional[str] = None
    name: Optional[str] = None
    stage: Optional[str] = None
    annual_value: Optional[float] = None
    tier: Optional[str] = None
    counterparty_id: Optional[str] = None
    owner_id: Optional[str] = None

    def field_values(self) -> Dict[str, Any]:
        return self.model_dump()

    def with_fields(self, **updates: Any) -> "Workstream":
        """Return a copy with ``updates`` applied."""
        return Workstream.model_validate({**self.model_dump(), **updates})


class CurrentUser(BaseModel):
    """Identity and role set supplied by the auth layer."""

    id: str
    email: Optional[str] = None
    roles: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _single_role(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("role"):
            data = dict(data)
            role = data.pop("role")
            data["roles"] = list(data.get("roles") or []) + [role]
        return data

    def has_role(self, role: str) -> bool:
        return role in self.roles


# ---------------------------------------------------------------------------
# Execution state


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PlayStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    FAILED = "failed"


class PendingAction(BaseModel):
    """Descriptor of the external input a blocked step is waiting for."""

    type: str
    node_id: Optional[str] = None
    description: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


class NodeExecutionState(BaseModel):
    """Persisted record, one per (workstream_id, node_id) reached."""

    workstream_id: str
    play_id: str
    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Dict[str, Any] = Field(default_factory=dict)
    pending_action: Optional[PendingAction] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    executed_by: Optional[str] = None
    # outgoing edge decisions, fixed when the node completes
    taken_edges: Optional[List[str]] = None
    undecided_edges: List[str] = Field(default_factory=list)
    condition_errors: Dict[str, str] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)


class ActivityEntry(BaseModel):
    """Append-only audit trail entry for a workstream."""

    workstream_id: str
    play_id: Optional[str] = None
    node_id: Optional[str] = None
    activity_type: str
    description: str = ""
    actor_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Outcomes


class Completed(BaseModel):
    kind: Literal["completed"] = "completed"
    output: Dict[str, Any] = Field(default_factory=dict)


class Blocked(BaseModel):
    kind: Literal["blocked"] = "blocked"
    pending_action: PendingAction


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    error: str
    error_type: Optional[str] = None


StepExecutionOutcome = Annotated[
    Union[Completed, Blocked, Failed], Field(discriminator="kind")
]


class PlayExecutionOutcome(BaseModel):
    """Result of one scheduler invocation for a workstream."""

    workstream_id: str
    play_id: str
    status: PlayStatus
    states: List[NodeExecutionState] = Field(default_factory=list)
    pending_actions: List[PendingAction] = Field(default_factory=list)
    dispatched: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    condition_errors: List[str] = Field(default_factory=list)
    stalled_node_ids: List[str] = Field(default_factory=list)
    workstream: Optional[Workstream] = None

    @property
    def success(self) -> bool:
        return self.status == PlayStatus.COMPLETED

    @property
    def requires_user_action(self) -> bool:
        return self.status == PlayStatus.AWAITING_INPUT and bool(self.pending_actions)

    @property
    def pending_action(self) -> Optional[PendingAction]:
        return self.pending_actions[0] if self.pending_actions else None

    def state_for(self, node_id: str) -> Optional[NodeExecutionState]:
        return next((s for s in self.states if s.node_id == node_id), None)
