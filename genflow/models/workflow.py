"""Workflow definition models - steps, conditions and retry policies."""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .enums import ComparisonOperator, StepKind, GENERATION_CAPABILITIES


class StepCondition(BaseModel):
    """
    Gate on a dependency's output.

    The step runs only if ``<step>.output.<path> <operator> <value>`` holds.
    """

    step: str
    """Id of the dependency whose output is tested."""

    path: str = ""
    """Dotted path into that output (empty = the whole output)."""

    operator: ComparisonOperator = ComparisonOperator.EQUALS

    value: Any = None
    """Expected value (unused by ``exists`` and ``truthy``)."""


class RetryPolicy(BaseModel):
    """Bounded retries with exponential backoff for a step."""

    max_attempts: int = 1
    """Total attempts, including the first."""

    backoff_seconds: float = 0.0
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 60.0

    @field_validator("max_attempts")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff_seconds <= 0:
            return 0.0
        delay = self.backoff_seconds * self.backoff_factor ** (attempt - 1)
        return min(delay, self.max_backoff_seconds)


class StepDefinition(BaseModel):
    """A single step in a workflow definition."""

    id: str
    """Unique within the definition."""

    kind: StepKind

    name: str = ""
    """Display name (also used as the human task title)."""

    model: Optional[str] = None
    """Model id; required for generation kinds."""

    inputs: dict[str, Any] = Field(default_factory=dict)
    """Input template. Strings may reference ``${input.x}`` or ``${step_id.path}``."""

    config: dict[str, Any] = Field(default_factory=dict)
    """Kind-specific configuration (transform operation, loop template, task message...)."""

    depends_on: list[str] = Field(default_factory=list)

    condition: Optional[StepCondition] = None

    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    estimated_cost: Optional[float] = None
    """Overrides the registry estimate used for credit reservation."""

    @property
    def is_generation(self) -> bool:
        return self.kind in GENERATION_CAPABILITIES


class InputField(BaseModel):
    """A caller-supplied workflow input."""

    required: bool = False
    default: Any = None
    description: str = ""


class WorkflowDefinition(BaseModel):
    """
    A DAG of typed steps.

    Definitions are validated with ``genflow.engine.graph.validate_definition``
    before a run is created.
    """

    id: str
    name: str = ""
    description: str = ""

    inputs: dict[str, InputField] = Field(default_factory=dict)
    """Declared inputs, checked when a run starts."""

    steps: list[StepDefinition] = Field(default_factory=list)

    outputs: dict[str, Any] = Field(default_factory=dict)
    """Final outputs, as templates over step outputs, built when the run completes."""

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]
