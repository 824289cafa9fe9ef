"""Exception taxonomy for the play execution engine."""

from __future__ import annotations


class PlayEngineError(Exception):
    """Base class for all engine errors."""


class MalformedPlay(PlayEngineError):
    """A play definition violates a structural graph invariant."""

    def __init__(self, message: str, play_id: str | None = None) -> None:
        self.play_id = play_id
        prefix = f"Play {play_id}: " if play_id else ""
        super().__init__(f"{prefix}{message}")


class InvalidCondition(PlayEngineError):
    """An edge condition cannot be evaluated."""

    def __init__(self, message: str, edge_id: str | None = None) -> None:
        self.edge_id = edge_id
        super().__init__(message)


class UnknownStepType(PlayEngineError):
    """No step behaviour is registered for a node's ``step_type``."""

    def __init__(self, step_type: str) -> None:
        self.step_type = step_type
        super().__init__(f"No step behaviour registered for step type: {step_type}")


class InvalidResumption(PlayEngineError):
    """A resume response does not match the recorded pending action."""


class WorkstreamNotFound(PlayEngineError, LookupError):
    def __init__(self, workstream_id: str) -> None:
        self.workstream_id = workstream_id
        super().__init__(f"Workstream not found: {workstream_id}")


class PlayNotFound(PlayEngineError, LookupError):
    def __init__(self, play_id: str) -> None:
        self.play_id = play_id
        super().__init__(f"Play not found: {play_id}")


class InvalidInput(PlayEngineError):
    """A node config value bound to a runtime source cannot be resolved."""
