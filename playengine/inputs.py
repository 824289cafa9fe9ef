"""Resolution of node config values bound to runtime sources.

A top-level config value shaped like ``{"source": ..., ...}`` is replaced by
the value it points at before the step behaviour sees the config::

    config:
      assignee_id: {source: previous_output, field: triage.owner_id}
      due_at: {source: literal, default: 3, transform: days_from_now}
      subject: {source: template, template: "Review {{workstream.name}}"}

Any other value is passed through unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .contracts import CurrentUser, Workstream, utcnow
from .errors import InvalidInput

logger = logging.getLogger(__name__)

INPUT_SOURCES = (
    "literal",
    "play_config",
    "previous_output",
    "workstream",
    "context",
    "template",
)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


class InputSource(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    source: Literal[
        "literal", "play_config", "previous_output", "workstream", "context", "template"
    ]
    field: Optional[str] = None
    default: Any = None
    template: Optional[str] = None
    mapping: Optional[Dict[str, Any]] = None
    transform: Optional[
        Literal[
            "days_from_now",
            "to_uppercase",
            "to_lowercase",
            "to_number",
            "to_boolean",
            "to_array",
            "json_parse",
            "json_stringify",
        ]
    ] = None


@dataclass
class InputContext:
    """Everything an input binding can read from."""

    workstream: Workstream
    user: Optional[CurrentUser] = None
    # completed node id -> output, in topological order
    previous_outputs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    play_config: Mapping[str, Any] = field(default_factory=dict)
    execution: Mapping[str, Any] = field(default_factory=dict)

    def previous_output(self, path: str) -> Any:
        """Look up ``node_id.field`` or, failing that, the latest output holding ``path``."""
        head, _, rest = path.partition(".")
        if head in self.previous_outputs and rest:
            return lookup(self.previous_outputs[head], rest)
        for output in reversed(list(self.previous_outputs.values())):
            value = lookup(output, path)
            if value is not None:
                return value
        return None

    def scoped(self, path: str) -> Any:
        scope, _, rest = path.partition(".")
        if scope == "workstream":
            return lookup(self.workstream.field_values(), rest)
        if scope == "previous_output":
            return self.previous_output(rest)
        if scope == "play_config":
            return lookup(self.play_config, rest)
        if scope == "user":
            return lookup(self.user.model_dump() if self.user else None, rest)
        if scope == "execution":
            return lookup(self.execution, rest)
        return lookup(self.workstream.field_values(), path)


def lookup(data: Any, path: str) -> Any:
    """Follow a dotted ``path`` through nested mappings."""
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def is_input_source(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and isinstance(value.get("source"), str)
        and value["source"] in INPUT_SOURCES
    )


def render_template(template: str, context: InputContext) -> str:
    def _sub(match: re.Match) -> str:
        value = context.scoped(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)


def _read(source: InputSource, context: InputContext) -> Any:
    if source.source == "literal":
        return source.default
    if source.source == "template":
        if not source.template:
            return source.default
        return render_template(source.template, context)
    if not source.field:
        return source.default

    if source.source == "workstream":
        value = lookup(context.workstream.field_values(), source.field)
    elif source.source == "previous_output":
        value = context.previous_output(source.field)
    elif source.source == "play_config":
        value = lookup(context.play_config, source.field)
    elif source.field.startswith(("user.", "execution.")):
        value = context.scoped(source.field)
    else:
        value = None
    return source.default if value is None else value


def apply_transform(value: Any, transform: str) -> Any:
    if transform == "days_from_now":
        try:
            days = int(value)
        except (TypeError, ValueError):
            return None
        return (utcnow() + timedelta(days=days)).isoformat()
    if transform == "to_uppercase":
        return value.upper() if isinstance(value, str) else value
    if transform == "to_lowercase":
        return value.lower() if isinstance(value, str) else value
    if transform == "to_number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
    if transform == "to_boolean":
        if isinstance(value, bool):
            return value
        if value in ("true", "1"):
            return True
        if value in ("false", "0"):
            return False
        return bool(value)
    if transform == "to_array":
        if isinstance(value, list):
            return value
        return [value] if value else []
    if transform == "json_parse":
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value
    if transform == "json_stringify":
        return json.dumps(value, default=str)
    return value


def resolve_input(source: InputSource, context: InputContext) -> Any:
    value = _read(source, context)
    if value is None:
        return None
    if source.mapping is not None:
        value = source.mapping.get(str(value), value)
    if source.transform is not None:
        value = apply_transform(value, source.transform)
    return value


def resolve_inputs(config: Mapping[str, Any], context: InputContext) -> Dict[str, Any]:
    """Return a copy of ``config`` with every bound value resolved.

    Raises:
        InvalidInput: A binding names a known source but is malformed.
    """
    resolved: Dict[str, Any] = {}
    for name, value in config.items():
        if not is_input_source(value):
            resolved[name] = value
            continue
        try:
            source = InputSource.model_validate(dict(value))
        except ValidationError as exc:
            raise InvalidInput(f"Input '{name}' is malformed: {exc}") from exc
        resolved[name] = resolve_input(source, context)
        logger.debug(f"Resolved input {name} from {source.source}")
    return resolved
