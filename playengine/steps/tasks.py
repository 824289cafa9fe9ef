"""Human task steps: manual tasks and structured data collection."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..contracts import (
    Blocked,
    Completed,
    CurrentUser,
    PendingAction,
    Workstream,
    is_number,
    utcnow,
)
from ..errors import InvalidResumption
from .base import StepBehavior

MANUAL_TASK_ACTION = "manual_task"
COLLECTION_ACTION = "collection"


class ManualTaskConfig(BaseModel):
    title: Optional[str] = None
    instructions: str = ""
    assignee_role: Optional[str] = None


class ManualTask(StepBehavior):
    """Waits until a user marks the task as done."""

    step_type = "manual_task"

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Blocked:
        cfg = self._parse_config(ManualTaskConfig, config)
        return Blocked(
            pending_action=PendingAction(
                type=MANUAL_TASK_ACTION,
                description=cfg.title or "Manual task awaiting completion",
                details={
                    "instructions": cfg.instructions,
                    "assignee_role": cfg.assignee_role,
                },
            )
        )

    async def resume(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Dict[str, Any],
    ) -> Completed:
        cfg = self._parse_config(ManualTaskConfig, config)
        self._expect_action(pending_action, MANUAL_TASK_ACTION)
        if user_response.get("completed") is not True:
            raise InvalidResumption("Manual task response must set 'completed': true")
        self._require_role(current_user, cfg.assignee_role)
        return Completed(
            output={
                "completed_by": current_user.id if current_user else None,
                "completed_at": utcnow().isoformat(),
                "notes": user_response.get("notes", ""),
            }
        )


class CollectionField(BaseModel):
    name: str
    label: Optional[str] = None
    field_type: Literal["text", "number", "boolean", "date", "select"] = "text"
    required: bool = True
    options: List[str] = Field(default_factory=list)


class CollectionConfig(BaseModel):
    instructions: str = ""
    fields: List[CollectionField] = Field(default_factory=list)


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _field_error(field: CollectionField, value: Any) -> Optional[str]:
    label = field.label or field.name
    if field.field_type == "number" and not is_number(value):
        return f"{label} must be a number"
    if field.field_type == "boolean" and not isinstance(value, bool):
        return f"{label} must be true or false"
    if field.field_type == "select" and field.options and value not in field.options:
        return f"{label} must be one of {field.options}"
    if field.field_type in ("text", "date") and not isinstance(value, str):
        return f"{label} must be a string"
    return None


class Collection(StepBehavior):
    """Gathers field values, asking a user for whatever the workstream lacks."""

    step_type = "collection"

    async def execute(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
    ) -> Completed | Blocked:
        cfg = self._parse_config(CollectionConfig, config)
        known = workstream.field_values()
        missing = [f.name for f in cfg.fields if f.required and _is_blank(known.get(f.name))]
        if not missing:
            output = {f.name: known.get(f.name) for f in cfg.fields}
            output["collected_by"] = "system"
            return Completed(output=output)

        return Blocked(
            pending_action=PendingAction(
                type=COLLECTION_ACTION,
                description=cfg.instructions or f"Provide {', '.join(missing)}",
                details={
                    "missing_fields": missing,
                    "fields": [f.model_dump() for f in cfg.fields],
                },
            )
        )

    async def resume(
        self,
        config: Dict[str, Any],
        workstream: Workstream,
        current_user: Optional[CurrentUser],
        pending_action: PendingAction,
        user_response: Dict[str, Any],
    ) -> Completed:
        cfg = self._parse_config(CollectionConfig, config)
        self._expect_action(pending_action, COLLECTION_ACTION)

        known = workstream.field_values()
        output: Dict[str, Any] = {}
        errors: List[str] = []
        for field in cfg.fields:
            value = user_response.get(field.name, known.get(field.name))
            if _is_blank(value):
                if field.required:
                    errors.append(f"{field.label or field.name} is required")
                output[field.name] = None
                continue
            error = _field_error(field, value)
            if error:
                errors.append(error)
            output[field.name] = value

        if errors:
            raise InvalidResumption("; ".join(errors))
        output["collected_by"] = current_user.id if current_user else None
        return Completed(output=output)
