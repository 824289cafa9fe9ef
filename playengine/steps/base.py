"""Calling contract for step behaviours ("bricks")."""

from __future__ import annotations

import abc
import re
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..contracts import CurrentUser, PendingAction, StepExecutionOutcome, Workstream
from ..errors import InvalidResumption, MalformedPlay

ConfigT = TypeVar("ConfigT", bound=BaseModel)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def interpolate(template: str, values: Mapping[str, Any]) -> str:
    """Replace ``{{field}}`` placeholders; unknown fields render empty."""

    def _sub(match: re.Match) -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)


class StepBehavior(metaclass=abc.ABCMeta):
    """Executable behaviour selected by a node's ``step_type``.

    ``execute`` receives the node config, the workstream and the acting user
    and returns ``Completed``, ``Blocked`` or ``Failed``. Behaviours that block
    must override ``resume`` to accept the awaited input.
    """

    step_type: str = ""

    @abc.abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> StepExecutionOutcome:
        raise NotImplementedError

    async def resume(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Dict[str, Any],
    ) -> StepExecutionOutcome:
        raise InvalidResumption(
            f"Step type '{self.step_type}' does not accept external input"
        )

    def _parse_config(self, model: Type[ConfigT], config: Mapping[str, Any]) -> ConfigT:
        try:
            return model.model_validate(config)
        except ValidationError as exc:
            raise MalformedPlay(f"invalid {self.step_type} config: {exc}") from exc

    def _expect_action(self, pending_action: PendingAction, action_type: str) -> None:
        if pending_action.type != action_type:
            raise InvalidResumption(
                f"Step type '{self.step_type}' awaits '{action_type}', "
                f"got '{pending_action.type}'"
            )

    def _require_role(
        self, current_user: Optional[CurrentUser], role: Optional[str]
    ) -> None:
        if role is None:
            return
        if current_user is None or not current_user.has_role(role):
            user_id = current_user.id if current_user else "anonymous"
            raise InvalidResumption(f"User {user_id} lacks required role '{role}'")
