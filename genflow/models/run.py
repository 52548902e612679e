"""Workflow run model - the durable execution record of one workflow instance."""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .enums import RunStatus, StepStatus, TERMINAL_RUN_STATUSES


class StepState(BaseModel):
    """Execution state of one step within a run."""

    status: StepStatus = StepStatus.PENDING

    output: Any = None
    """Output produced by the step (or the human response)."""

    error: Optional[str] = None
    """Error message if the step failed."""

    attempts: int = 0
    """Dispatch attempts made so far."""

    credits_used: float = 0.0
    """Credits committed for this step."""

    provider_id: Optional[str] = None
    """Provider that served a generation step."""

    attempted_providers: list[str] = Field(default_factory=list)
    """Providers invoked for a generation step, across all attempts."""

    task_id: Optional[str] = None
    """Human task the step is waiting on."""

    skip_reason: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        """Completed or skipped - satisfies dependents."""
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)

    @property
    def is_terminal(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED)

    @property
    def awaiting_task(self) -> bool:
        return self.status == StepStatus.PENDING and self.task_id is not None


class RunError(BaseModel):
    """What made a run fail."""

    kind: str
    """Exception class name (e.g. "AllProvidersFailedError")."""

    message: str

    step_id: Optional[str] = None

    attempted_providers: list[str] = Field(default_factory=list)


class WorkflowRun(BaseModel):
    """
    Durable record for one instantiation of a workflow definition.

    The executor is stateless between calls; everything needed to resume a
    run lives here and is persisted after every transition.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))

    definition_id: str

    owner_id: str

    status: RunStatus = RunStatus.PENDING

    inputs: dict[str, Any] = Field(default_factory=dict)
    """Caller-supplied inputs (defaults applied)."""

    state: dict[str, StepState] = Field(default_factory=dict)
    """Per-step state, keyed by step id."""

    frontier: list[str] = Field(default_factory=list)
    """Steps eligible to execute at the last advance."""

    credits_used: float = 0.0
    """Committed credits."""

    credits_reserved: float = 0.0
    """Credits held by in-flight billed steps."""

    budget: Optional[float] = None
    """Credit cap for the run (None = unlimited)."""

    outputs: dict[str, Any] = Field(default_factory=dict)
    """Final outputs, built on completion."""

    error: Optional[RunError] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # State transitions

    def start(self) -> None:
        """Mark the run as running."""
        self.status = RunStatus.RUNNING
        if self.started_at is None:
            self.started_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def pause(self) -> None:
        """Mark the run as waiting on a human task."""
        self.status = RunStatus.PAUSED
        self.updated_at = datetime.utcnow()

    def resume(self) -> None:
        """Move a paused run back to running."""
        self.status = RunStatus.RUNNING
        self.updated_at = datetime.utcnow()

    def complete(self, outputs: Optional[dict[str, Any]] = None) -> None:
        """Mark the run as successfully completed."""
        self.status = RunStatus.COMPLETED
        self.frontier = []
        if outputs:
            self.outputs = outputs
        self.completed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def fail(self, error: RunError) -> None:
        """Mark the run as failed."""
        self.status = RunStatus.FAILED
        self.error = error
        self.completed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def cancel(self) -> None:
        """Mark the run as cancelled."""
        self.status = RunStatus.CANCELLED
        self.completed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    # Step state

    def step(self, step_id: str) -> StepState:
        """Get (creating if needed) the state of a step."""
        if step_id not in self.state:
            self.state[step_id] = StepState()
        return self.state[step_id]

    def step_outputs(self) -> dict[str, Any]:
        """Outputs of completed steps, keyed by step id."""
        return {
            step_id: s.output
            for step_id, s in self.state.items()
            if s.status == StepStatus.COMPLETED
        }

    def awaiting_steps(self) -> list[str]:
        """Steps currently waiting on a human task."""
        return [step_id for step_id, s in self.state.items() if s.awaiting_task]

    # Computed properties

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in (RunStatus.PENDING, RunStatus.RUNNING, RunStatus.PAUSED)

    @property
    def available_credits(self) -> Optional[float]:
        """Budget left after committed and reserved credits (None = unlimited)."""
        if self.budget is None:
            return None
        return self.budget - self.credits_used - self.credits_reserved

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at:
            end = self.completed_at or datetime.utcnow()
            return (end - self.started_at).total_seconds()
        return None
