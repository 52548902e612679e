"""Human task model - the external half of a human-approval step."""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .enums import TaskStatus


class WorkflowTask(BaseModel):
    """
    A request for a human response, created when a run reaches a
    human-approval step. Completing it is the only way to unpause the run.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))

    run_id: str

    step_id: str

    owner_id: str
    """Owner of the run; tasks are listed per owner."""

    status: TaskStatus = TaskStatus.PENDING

    task_type: str = "approval"
    """approval, input or review."""

    title: str = "Action Required"

    description: Optional[str] = None

    prompt: dict[str, Any] = Field(default_factory=dict)
    """Payload shown to the approver (the step's resolved inputs)."""

    response: Optional[Any] = None
    """Approver's response once completed."""

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def complete(self, response: Any) -> None:
        """Record the response."""
        self.status = TaskStatus.COMPLETED
        self.response = response
        self.completed_at = datetime.utcnow()

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    def summary(self) -> dict[str, Any]:
        """Compact view for task listings."""
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_id": self.step_id,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }
