"""Persistence contract for the workflow executor."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..models import RunStatus, TaskStatus, WorkflowRun, WorkflowTask


class WorkflowStore(ABC):
    """
    Durable state for runs and human tasks.

    The executor keeps nothing between calls; anything it needs to resume a
    run must round-trip through a store.
    """

    async def connect(self) -> None:
        """Open underlying resources (no-op by default)."""

    async def close(self) -> None:
        """Release underlying resources (no-op by default)."""

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    @abstractmethod
    async def load_run(self, run_id: str) -> WorkflowRun:
        """
        Load a run.

        Raises:
            RunNotFoundError: If no run has this id
        """
        pass

    @abstractmethod
    async def save_run(self, run: WorkflowRun) -> None:
        """Atomically write the whole run record."""
        pass

    @abstractmethod
    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        owner_id: Optional[str] = None,
    ) -> list[WorkflowRun]:
        pass

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_task(self, task: WorkflowTask) -> None:
        pass

    @abstractmethod
    async def load_task(self, task_id: str) -> WorkflowTask:
        """
        Load a task.

        Raises:
            TaskNotFoundError: If no task has this id
        """
        pass

    @abstractmethod
    async def complete_task(self, task_id: str, response: Any) -> bool:
        """
        Complete a task if it is still pending.

        Returns:
            False if the task was already completed
        """
        pass

    @abstractmethod
    async def find_task(self, run_id: str, step_id: str) -> Optional[WorkflowTask]:
        """The task created for a run's step, if any."""
        pass

    @abstractmethod
    async def list_tasks(
        self,
        owner_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> list[WorkflowTask]:
        pass
