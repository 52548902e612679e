"""Workflow graph validation and ordering."""

import heapq
from typing import Any, Optional

from ..catalog import ModelRegistry
from ..errors import WorkflowValidationError
from ..models import (
    GENERATION_CAPABILITIES,
    WorkflowDefinition,
    WorkflowRun,
)


def _topological_sort(definition: WorkflowDefinition) -> tuple[list[str], list[str]]:
    """
    Kahn's algorithm with ties broken by definition order.

    Returns:
        (ordered step ids, ids left over because of a cycle)
    """
    position = {step.id: i for i, step in enumerate(definition.steps)}
    in_degree = {step.id: 0 for step in definition.steps}
    graph: dict[str, list[str]] = {step.id: [] for step in definition.steps}

    for step in definition.steps:
        for dep in set(step.depends_on):
            if dep in graph:
                graph[dep].append(step.id)
                in_degree[step.id] += 1

    queue = [position[s] for s, degree in in_degree.items() if degree == 0]
    heapq.heapify(queue)
    result = []

    while queue:
        node = definition.steps[heapq.heappop(queue)].id
        result.append(node)

        for dependent in graph[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(queue, position[dependent])

    remaining = [s for s in position if s not in set(result)]
    return result, remaining


def validate_definition(
    definition: WorkflowDefinition,
    models: Optional[ModelRegistry] = None,
) -> None:
    """
    Check that a definition is a well-formed DAG.

    Args:
        definition: The workflow to check
        models: When given, model references are checked against it

    Raises:
        WorkflowValidationError: With every problem found
    """
    errors: list[str] = []

    if not definition.steps:
        errors.append("workflow has no steps")

    seen: set[str] = set()
    for step in definition.steps:
        if step.id in seen:
            errors.append(f"duplicate step id '{step.id}'")
        seen.add(step.id)

    for step in definition.steps:
        for dep in step.depends_on:
            if dep == step.id:
                errors.append(f"step '{step.id}' depends on itself")
            elif dep not in seen:
                errors.append(f"step '{step.id}' depends on unknown step '{dep}'")

        if step.condition and step.condition.step not in step.depends_on:
            errors.append(
                f"step '{step.id}' has a condition on '{step.condition.step}', "
                f"which is not one of its dependencies"
            )

        if step.is_generation:
            capability = GENERATION_CAPABILITIES[step.kind]
            if not step.model:
                errors.append(f"step '{step.id}' ({step.kind.value}) requires a model")
            elif models is not None:
                model = models.get(step.model)
                if model is None:
                    errors.append(f"step '{step.id}' references unknown model '{step.model}'")
                elif not model.supports(capability):
                    errors.append(
                        f"step '{step.id}': model '{step.model}' does not support "
                        f"'{capability.value}'"
                    )

    if not errors:
        _, remaining = _topological_sort(definition)
        if remaining:
            errors.append(f"circular dependency among steps: {', '.join(remaining)}")

    if errors:
        raise WorkflowValidationError(errors)


def execution_order(definition: WorkflowDefinition) -> list[str]:
    """
    Step ids in dependency order.

    Raises:
        WorkflowValidationError: If the graph has a cycle
    """
    order, remaining = _topological_sort(definition)
    if remaining:
        raise WorkflowValidationError(
            [f"circular dependency among steps: {', '.join(remaining)}"]
        )
    return order


def ready_steps(definition: WorkflowDefinition, run: WorkflowRun) -> list[str]:
    """
    The run's frontier: steps that can be dispatched now.

    A step is ready when it hasn't completed, been skipped or failed, isn't
    waiting on a human task, and every dependency is completed or skipped.
    """
    ready = []
    for step_id in execution_order(definition):
        state = run.state.get(step_id)
        if state is not None and (state.is_terminal or state.awaiting_task):
            continue

        step = definition.get_step(step_id)
        deps_settled = all(
            dep in run.state and run.state[dep].is_settled
            for dep in step.depends_on
        )
        if deps_settled:
            ready.append(step_id)
    return ready


def validate_inputs(definition: WorkflowDefinition, inputs: dict[str, Any]) -> dict[str, Any]:
    """
    Check caller inputs against the declared inputs and apply defaults.

    Undeclared inputs are passed through.

    Returns:
        The inputs with defaults filled in

    Raises:
        WorkflowValidationError: If required inputs are missing
    """
    resolved = dict(inputs)
    missing = []

    for name, field in definition.inputs.items():
        if resolved.get(name) is not None:
            continue
        if field.default is not None:
            resolved[name] = field.default
        elif field.required:
            missing.append(f"missing required input '{name}'")

    if missing:
        raise WorkflowValidationError(missing)
    return resolved
