"""Registry mapping ``step_type`` tags to step behaviours."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from ..errors import UnknownStepType
from .base import StepBehavior

_STEP_TYPE = re.compile(r"^[a-z][a-z0-9_]*$")


class StepRegistry:
    """Validated, instance-scoped set of step behaviours.

    Keys must be lowercase snake_case tags. Lookups of unregistered tags raise
    :class:`UnknownStepType` at dispatch time, so a partially configured play
    can still be loaded.
    """

    def __init__(self, behaviors: Iterable[StepBehavior] = ()) -> None:
        self._behaviors: Dict[str, StepBehavior] = {}
        for behavior in behaviors:
            self.register(behavior)

    def register(
        self,
        behavior: StepBehavior,
        step_type: Optional[str] = None,
        replace: bool = False,
    ) -> None:
        key = step_type or behavior.step_type
        if not isinstance(key, str) or not _STEP_TYPE.match(key):
            raise ValueError(f"Invalid step type tag: {key!r}")
        if key in self._behaviors and not replace:
            raise ValueError(f"Step type already registered: {key}")
        self._behaviors[key] = behavior

    def get(self, step_type: str) -> StepBehavior:
        try:
            return self._behaviors[step_type]
        except KeyError:
            raise UnknownStepType(step_type) from None

    def has(self, step_type: str) -> bool:
        return step_type in self._behaviors

    def step_types(self) -> List[str]:
        return sorted(self._behaviors)

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._behaviors

    def __len__(self) -> int:
        return len(self._behaviors)


def default_registry(renderer=None, notifier=None) -> StepRegistry:
    """Registry with the built-in step behaviours.

    Args:
        renderer: Optional :class:`DocumentRenderer` for document generation.
            Without one, document steps wait for a manual upload.
        notifier: Optional :class:`Notifier`; defaults to logging only.
    """
    from .approval import ApprovalGate
    from .control import control_behaviors
    from .documents import DocumentGeneration, Notification
    from .tasks import Collection, ManualTask

    return StepRegistry(
        [
            ApprovalGate(),
            ManualTask(),
            Collection(),
            DocumentGeneration(renderer),
            Notification(notifier),
            *control_behaviors(),
        ]
    )
