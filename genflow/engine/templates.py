"""Reference resolution and condition evaluation for step inputs.

Strings in a step's input template may reference values from the run:

- ``${input.name}``: a workflow input
- ``${step_id}`` / ``${step_id.a.b}``: a completed step's output (or part of it)
- ``${item}`` / ``${index}``: the current element inside a loop template

A string that is exactly one reference resolves to the referenced value with
its type intact; references embedded in longer strings are interpolated as
text. Unresolvable references are left as written.
"""

import re
from typing import Any, Mapping

from ..models import ComparisonOperator, StepCondition, WorkflowRun

REFERENCE_PATTERN = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


def build_context(run: WorkflowRun, **extra: Any) -> dict[str, Any]:
    """Resolution context for a run: inputs plus completed step outputs."""
    context: dict[str, Any] = dict(run.step_outputs())
    context["input"] = run.inputs
    context.update(extra)
    return context


def get_path(value: Any, path: str, default: Any = None) -> Any:
    """
    Walk a dotted path through dicts and lists.

    Examples:
        get_path({"a": {"b": 1}}, "a.b") -> 1
        get_path({"assets": ["x", "y"]}, "assets.1") -> "y"
    """
    result = _lookup(value, path)
    return default if result is _MISSING else result


def _lookup(value: Any, path: str) -> Any:
    if not path:
        return value

    current = value
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        else:
            return _MISSING
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def resolve_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Resolve references in a template value (recursing into dicts and lists)."""
    if isinstance(value, dict):
        return {k: resolve_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, context) for v in value]
    if not isinstance(value, str):
        return value

    whole = REFERENCE_PATTERN.fullmatch(value)
    if whole:
        result = _lookup(context, whole.group(1).strip())
        return value if result is _MISSING else result

    def replace(match: re.Match) -> str:
        result = _lookup(context, match.group(1).strip())
        return match.group(0) if result is _MISSING else _stringify(result)

    return REFERENCE_PATTERN.sub(replace, value)


def resolve_inputs(inputs: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve every value of a step's input template."""
    return {key: resolve_value(value, context) for key, value in inputs.items()}


def evaluate_condition(condition: StepCondition, context: Mapping[str, Any]) -> bool:
    """
    Test a condition against the resolution context.

    ``condition.step`` names a context entry (a step id or ``input``) and
    ``condition.path`` walks into it.
    """
    source = context.get(condition.step, _MISSING)
    actual = _MISSING if source is _MISSING else _lookup(source, condition.path)
    expected = condition.value
    op = condition.operator

    if op == ComparisonOperator.EXISTS:
        return actual is not _MISSING and actual is not None
    if actual is _MISSING:
        return False

    if op == ComparisonOperator.TRUTHY:
        return bool(actual)
    if op == ComparisonOperator.EQUALS:
        return actual == expected
    if op == ComparisonOperator.NOT_EQUALS:
        return actual != expected
    if op == ComparisonOperator.CONTAINS:
        if isinstance(actual, str):
            return str(expected) in actual
        try:
            return expected in actual
        except TypeError:
            return False
    if op == ComparisonOperator.IN:
        try:
            return actual in expected
        except TypeError:
            return False

    try:
        if op == ComparisonOperator.GT:
            return actual > expected
        if op == ComparisonOperator.GTE:
            return actual >= expected
        if op == ComparisonOperator.LT:
            return actual < expected
        if op == ComparisonOperator.LTE:
            return actual <= expected
    except TypeError:
        return False

    raise ValueError(f"Unknown operator: {op}")
