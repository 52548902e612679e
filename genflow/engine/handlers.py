"""Step handlers - one handler per step kind, looked up in a table."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
import json
import logging
import math

from ..errors import StepExecutionError
from ..models import (
    Capability,
    GENERATION_CAPABILITIES,
    GenerationRequest,
    StepCondition,
    StepDefinition,
    StepKind,
    WorkflowDefinition,
    WorkflowRun,
)
from ..routing import ProviderRouter
from .templates import evaluate_condition, resolve_value

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """What a handler can see of the run it executes in."""

    run: WorkflowRun
    definition: WorkflowDefinition
    values: dict[str, Any] = field(default_factory=dict)
    """Resolution context (inputs plus completed step outputs)."""


@dataclass
class TaskRequest:
    """A human task a step wants created before the run can continue."""

    title: str
    description: Optional[str] = None
    task_type: str = "approval"
    prompt: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepOutcome:
    """Result of executing one step.

    Attributes:
        output: Step output, visible to later steps
        cost: Actual credits to commit
        provider_id: Provider that served a generation step
        attempted_providers: Providers invoked while serving it
        task: Set by handlers that suspend the run for a human
    """
    output: Any = None
    cost: float = 0.0
    provider_id: Optional[str] = None
    attempted_providers: list[str] = field(default_factory=list)
    task: Optional[TaskRequest] = None

    @property
    def suspends(self) -> bool:
        return self.task is not None


class StepHandler(ABC):
    """
    Base class for step handlers.

    A handler receives the step definition, its resolved inputs and the run
    context, and returns a StepOutcome. Raising marks the attempt as failed;
    the executor applies the step's retry policy.
    """

    billable: bool = False
    """Whether the executor reserves credits around this handler."""

    @abstractmethod
    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        pass


# -------------------------------------------------------------------------
# Generation
# -------------------------------------------------------------------------

class GenerationHandler(StepHandler):
    """Routes a generation step to a provider through the router."""

    billable = True

    def __init__(self, router: ProviderRouter, capability: Capability):
        self.router = router
        self.capability = capability

    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        request = GenerationRequest(
            prompt=_as_text(inputs.get("prompt", inputs.get("text", ""))),
            input_assets=_as_list(inputs.get("input_assets")),
            options=inputs.get("options") or {},
        )

        result = await self.router.route(step.model, self.capability, request)

        output: dict[str, Any] = {
            "assets": result.output.assets,
            "metadata": result.output.metadata,
            "provider": result.provider_id,
        }
        for key in ("text", "embedding"):
            if key in result.output.metadata:
                output[key] = result.output.metadata[key]

        return StepOutcome(
            output=output,
            cost=result.cost,
            provider_id=result.provider_id,
            attempted_providers=result.attempted_providers,
        )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


# -------------------------------------------------------------------------
# In-process steps
# -------------------------------------------------------------------------

class TransformHandler(StepHandler):
    """
    Data transforms, selected by ``config.operation``:

    - merge (default): ``{"merged": inputs}``
    - pick: ``config.fields`` taken from the inputs
    - json-parse: ``{"data": json.loads(inputs.text)}``
    - template: ``{"text": rendered config.template}``
    - cosine-similarity: ``{"score": cos(inputs.vector_a, inputs.vector_b)}``
    - passthrough: the inputs unchanged
    """

    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        operation = step.config.get("operation", "merge")

        if operation == "merge":
            output = {"merged": dict(inputs)}
        elif operation == "pick":
            fields = step.config.get("fields") or []
            output = {name: inputs.get(name) for name in fields}
        elif operation == "json-parse":
            try:
                output = {"data": json.loads(inputs.get("text") or "")}
            except json.JSONDecodeError as e:
                raise StepExecutionError(step.id, f"invalid JSON: {e}")
        elif operation == "template":
            values = {**ctx.values, **inputs}
            output = {"text": resolve_value(step.config.get("template", ""), values)}
        elif operation == "cosine-similarity":
            output = {
                "score": cosine_similarity(
                    inputs.get("vector_a") or [],
                    inputs.get("vector_b") or [],
                )
            }
        elif operation == "passthrough":
            output = dict(inputs)
        else:
            raise StepExecutionError(step.id, f"unknown transform operation '{operation}'")

        return StepOutcome(output=output)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class ConditionalBranchHandler(StepHandler):
    """Evaluates ``config.condition`` and returns ``{"result": bool}``."""

    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        raw = step.config.get("condition")
        if raw is None:
            raise StepExecutionError(step.id, "conditional-branch requires config.condition")

        try:
            condition = StepCondition.model_validate(raw)
        except ValueError as e:
            raise StepExecutionError(step.id, f"invalid condition: {e}")

        values = {**ctx.values, "inputs": inputs}
        return StepOutcome(output={"result": evaluate_condition(condition, values)})


class LoopHandler(StepHandler):
    """
    Maps ``config.template`` over ``inputs.items``.

    Each element is rendered with ``${item}`` and ``${index}`` bound; without
    a template the items are returned as-is.
    """

    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        items = inputs.get("items", step.config.get("items"))

        if isinstance(items, str):
            try:
                items = json.loads(items)
            except json.JSONDecodeError:
                pass

        if not isinstance(items, list):
            raise StepExecutionError(step.id, "loop items must be a list")

        template = step.config.get("template")
        results = []
        for index, item in enumerate(items):
            if template is None:
                results.append(item)
            else:
                results.append(resolve_value(template, {**ctx.values, "item": item, "index": index}))

        return StepOutcome(output={"items": results, "count": len(results)})


class HumanApprovalHandler(StepHandler):
    """Suspends the run until a person completes the step's task."""

    async def execute(
        self,
        step: StepDefinition,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        return StepOutcome(
            task=TaskRequest(
                title=step.config.get("title") or step.name or "Action Required",
                description=step.config.get("message") or step.config.get("description"),
                task_type=step.config.get("task_type", "approval"),
                prompt=inputs,
            )
        )


# -------------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------------

class HandlerRegistry:
    """Step kind -> handler table."""

    def __init__(self, handlers: Optional[dict[StepKind, StepHandler]] = None):
        self._handlers: dict[StepKind, StepHandler] = dict(handlers or {})

    def register(self, kind: StepKind | str, handler: StepHandler) -> None:
        self._handlers[StepKind(kind)] = handler
        logger.debug(f"Registered handler for {StepKind(kind).value}: {type(handler).__name__}")

    def get(self, kind: StepKind | str) -> Optional[StepHandler]:
        return self._handlers.get(StepKind(kind))

    def __getitem__(self, kind: StepKind | str) -> StepHandler:
        handler = self.get(kind)
        if handler is None:
            raise KeyError(f"No handler registered for step kind '{StepKind(kind).value}'")
        return handler

    def __contains__(self, kind: StepKind | str) -> bool:
        return self.get(kind) is not None

    def __len__(self) -> int:
        return len(self._handlers)


def default_handlers(router: ProviderRouter) -> HandlerRegistry:
    """Handler table covering every built-in step kind."""
    registry = HandlerRegistry()
    for kind, capability in GENERATION_CAPABILITIES.items():
        registry.register(kind, GenerationHandler(router, capability))
    registry.register(StepKind.DATA_TRANSFORM, TransformHandler())
    registry.register(StepKind.CONDITIONAL_BRANCH, ConditionalBranchHandler())
    registry.register(StepKind.LOOP_OVER_COLLECTION, LoopHandler())
    registry.register(StepKind.HUMAN_APPROVAL, HumanApprovalHandler())
    return registry
