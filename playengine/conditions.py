"""Evaluation of edge guard expressions."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from .contracts import EdgeCondition, Workstream, is_number
from .errors import InvalidCondition

_MISSING = object()


def _lookup_metric(
    metric: str, workstream: Workstream, upstream_output: Optional[Mapping[str, Any]]
) -> Any:
    if upstream_output and metric in upstream_output:
        return upstream_output[metric]
    fields = workstream.field_values()
    if metric in fields:
        return fields[metric]
    return _MISSING


def _compare(condition: EdgeCondition, actual: Any) -> bool:
    if condition.op == "=":
        if is_number(actual) and is_number(condition.value):
            return float(actual) == float(condition.value)
        return actual == condition.value

    if actual is None:
        return False
    if not is_number(actual):
        raise InvalidCondition(
            f"metric '{condition.metric}' is not numeric ({actual!r}) for '{condition.op}'"
        )
    if condition.op == "<":
        return actual < condition.value
    if condition.op == ">":
        return actual > condition.value
    return condition.value <= actual <= condition.value_max


def evaluate_condition(
    condition: EdgeCondition | Mapping[str, Any] | None,
    workstream: Workstream,
    upstream_output: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Return whether ``condition`` holds.

    Metrics resolve against the upstream node's output first and the
    workstream's fields second. A missing condition is always true.

    Raises:
        InvalidCondition: The expression is malformed, names an unknown metric
            or applies a numeric comparator to a non-numeric value.
    """
    if condition is None:
        return True
    if not isinstance(condition, EdgeCondition):
        try:
            condition = EdgeCondition.model_validate(condition)
        except ValueError as exc:
            raise InvalidCondition(f"malformed condition {condition!r}: {exc}") from exc

    actual = _lookup_metric(condition.metric, workstream, upstream_output)
    if actual is _MISSING:
        raise InvalidCondition(f"unknown metric '{condition.metric}'")
    return _compare(condition, actual)


def evaluate_rules(
    rules: Iterable[EdgeCondition | Mapping[str, Any]],
    workstream: Workstream,
    values: Optional[Mapping[str, Any]] = None,
    match: str = "all",
) -> bool:
    """Evaluate several conditions, combined with ``all`` or ``any``.

    An empty rule set never matches.
    """
    results = [evaluate_condition(rule, workstream, values) for rule in rules]
    if not results:
        return False
    return any(results) if match == "any" else all(results)
