"""Playengine: DAG execution engine for workstream plays."""

from .config import PlayEngineConfig, SchedulerConfig, load_config
from .contracts import (
    CurrentUser,
    EdgeCondition,
    NodeExecutionState,
    NodeStatus,
    PendingAction,
    Play,
    PlayExecutionOutcome,
    PlayStatus,
    WorkflowEdge,
    WorkflowNode,
    Workstream,
)
from .errors import (
    InvalidCondition,
    InvalidInput,
    InvalidResumption,
    MalformedPlay,
    PlayEngineError,
    PlayNotFound,
    UnknownStepType,
    WorkstreamNotFound,
)
from .execute import StepExecutor
from .graph import PlayGraph
from .loader import DirectoryPlaySource, InMemoryPlaySource, load_play_file
from .persistence import get_store
from .scheduler import PlayScheduler, compute_frontier
from .steps import StepRegistry, default_registry

__version__ = "0.1.0"
__all__ = [
    "CurrentUser",
    "DirectoryPlaySource",
    "EdgeCondition",
    "InMemoryPlaySource",
    "InvalidCondition",
    "InvalidInput",
    "InvalidResumption",
    "MalformedPlay",
    "NodeExecutionState",
    "NodeStatus",
    "PendingAction",
    "Play",
    "PlayEngineConfig",
    "PlayEngineError",
    "PlayExecutionOutcome",
    "PlayGraph",
    "PlayNotFound",
    "PlayScheduler",
    "PlayStatus",
    "SchedulerConfig",
    "StepExecutor",
    "StepRegistry",
    "UnknownStepType",
    "WorkflowEdge",
    "WorkflowNode",
    "Workstream",
    "WorkstreamNotFound",
    "compute_frontier",
    "default_registry",
    "get_store",
    "load_config",
    "load_play_file",
]
