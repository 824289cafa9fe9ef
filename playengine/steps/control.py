from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..constants import CONTROL_STEP_TYPES
from ..contracts import Completed, CurrentUser, Workstream
from .base import StepBehavior


class PassThrough(StepBehavior):
    """Control node (start, end, fork, join) that completes immediately."""

    def __init__(self, step_type: str) -> None:
        self.step_type = step_type

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Completed:
        return Completed(output={})


def control_behaviors() -> List[PassThrough]:
    return [PassThrough(step_type) for step_type in CONTROL_STEP_TYPES]
