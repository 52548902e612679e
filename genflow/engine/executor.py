"""Workflow executor - advances runs through their step graph."""

import asyncio
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
import logging

from ..catalog import ModelRegistry, WorkflowCatalog
from ..config import ExecutorSettings
from ..errors import (
    GenflowError,
    InsufficientCreditsError,
    RunBusyError,
    RunStateError,
    StepExecutionError,
    TaskAlreadyCompletedError,
    TaskNotFoundError,
)
from ..models import (
    RetryPolicy,
    RunError,
    RunStatus,
    StepDefinition,
    StepState,
    StepStatus,
    TaskStatus,
    WorkflowDefinition,
    WorkflowRun,
    WorkflowTask,
)
from ..storage import WorkflowStore
from .credits import CreditLedger
from .graph import ready_steps, validate_definition, validate_inputs
from .handlers import HandlerRegistry, StepContext, StepHandler, StepOutcome, TaskRequest
from .leases import RunLeaseManager
from .templates import build_context, evaluate_condition, resolve_inputs

logger = logging.getLogger(__name__)

RunListener = Callable[[str, WorkflowRun, dict[str, Any]], Awaitable[None]]


class WorkflowExecutor:
    """
    Executes workflow runs.

    Handles:
    - Starting runs from catalog definitions
    - Dependency-ordered, conditional step dispatch
    - Retries and credit metering for billed steps
    - Pausing for human tasks and resuming when they complete
    - Cooperative cancellation

    The executor holds no run state between calls. Every mutation happens
    under the run's lease and is saved to the store before the lease is
    released, so any executor sharing the store can pick a run up again.
    """

    def __init__(
        self,
        store: WorkflowStore,
        catalog: WorkflowCatalog,
        models: ModelRegistry,
        handlers: HandlerRegistry,
        leases: Optional[RunLeaseManager] = None,
        ledger: Optional[CreditLedger] = None,
        settings: Optional[ExecutorSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.catalog = catalog
        self.models = models
        self.handlers = handlers
        self.settings = settings or ExecutorSettings()
        self.leases = leases or RunLeaseManager(self.settings.lease_timeout_seconds)
        self.ledger = ledger or CreditLedger()
        self._sleep = sleep

        self._cancel_requests: set[str] = set()
        self._background: set[asyncio.Task] = set()
        self._listeners: list[RunListener] = []

    def add_listener(self, callback: RunListener) -> None:
        """Register a callback for run events (run_started, step_completed, ...)."""
        self._listeners.append(callback)

    async def _notify(self, event: str, run: WorkflowRun, **data: Any) -> None:
        for callback in self._listeners:
            try:
                await callback(event, run, data)
            except Exception as e:
                logger.error(f"Error in listener for {event}: {e}")

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def start_run(
        self,
        definition_id: str,
        owner_id: str,
        inputs: Optional[dict[str, Any]] = None,
        budget: Optional[float] = None,
        wait: bool = False,
    ) -> str:
        """
        Create a run and start advancing it.

        Args:
            definition_id: Workflow to instantiate
            owner_id: Owner of the run (and of its human tasks)
            inputs: Caller inputs; defaults are applied for missing ones
            budget: Credit cap for the run (None = unlimited)
            wait: Advance inline instead of in a background task

        Returns:
            The new run's id

        Raises:
            WorkflowNotFoundError: Unknown definition
            WorkflowValidationError: Invalid definition or inputs
        """
        definition = self.catalog.require(definition_id)
        validate_definition(definition, self.models)
        resolved = validate_inputs(definition, inputs or {})

        run = WorkflowRun(
            definition_id=definition.id,
            owner_id=owner_id,
            inputs=resolved,
            budget=budget,
        )
        for step in definition.steps:
            run.step(step.id)
        await self.store.save_run(run)

        run.start()
        await self.store.save_run(run)

        logger.info(f"Started run {run.id} of workflow {definition.id} for {owner_id}")
        await self._notify("run_started", run)

        if wait:
            await self.advance(run.id)
        else:
            self._spawn(run.id)

        return run.id

    def _spawn(self, run_id: str) -> None:
        task = asyncio.create_task(self._advance_in_background(run_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _advance_in_background(self, run_id: str) -> None:
        try:
            await self.advance(run_id)
        except RunBusyError:
            logger.debug(f"Run {run_id} is being advanced elsewhere")
        except Exception as e:
            logger.error(f"Error advancing run {run_id}: {e}\n{traceback.format_exc()}")

    async def drain(self) -> None:
        """Wait for all background advances to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def advance(self, run_id: str) -> WorkflowRun:
        """
        Execute ready steps until the run pauses, finishes or is cancelled.

        Safe to call at any time: terminal runs are returned unchanged and a
        paused run only moves if its task has been completed.

        Returns:
            The run as saved

        Raises:
            RunNotFoundError: Unknown run
            RunBusyError: The lease could not be taken in time
        """
        async with self.leases.acquire(run_id):
            run = await self.store.load_run(run_id)

            if run.is_terminal:
                return run

            if run_id in self._cancel_requests:
                logger.debug(f"Run {run_id} has a pending cancel; cancelling instead of advancing")
                await self._apply_cancel(run)
                return run

            definition = self.catalog.require(run.definition_id)

            if run.credits_reserved:
                logger.warning(
                    f"Releasing {run.credits_reserved:g} stale reserved credits on run {run.id}"
                )
                run.credits_reserved = 0.0
                await self.store.save_run(run)

            if run.status == RunStatus.PAUSED:
                if not await self._reconcile_tasks(run):
                    return run
            elif run.status == RunStatus.PENDING:
                run.start()
                await self.store.save_run(run)

            return await self._run_loop(run, definition)

    async def complete_task(self, task_id: str, response: Any) -> WorkflowRun:
        """
        Record a human response and continue the run.

        Args:
            task_id: Task to complete
            response: The approver's response; becomes the step output

        Returns:
            The run after advancing

        Raises:
            TaskNotFoundError: Unknown task
            TaskAlreadyCompletedError: The task was completed before
            RunStateError: The run is not paused (e.g. cancelled)
        """
        task = await self.store.load_task(task_id)

        async with self.leases.acquire(task.run_id):
            task = await self.store.load_task(task_id)
            if not task.is_pending:
                raise TaskAlreadyCompletedError(task_id)

            run = await self.store.load_run(task.run_id)
            if run.status != RunStatus.PAUSED or run.id in self._cancel_requests:
                raise RunStateError(run.id, run.status.value, "complete a task for")

            if not await self.store.complete_task(task_id, response):
                raise TaskAlreadyCompletedError(task_id)

            self._apply_response(run.step(task.step_id), response)
            run.resume()
            await self.store.save_run(run)

            logger.info(f"Task {task_id} completed; resuming run {run.id}")
            await self._notify("step_completed", run, step_id=task.step_id)

            definition = self.catalog.require(run.definition_id)
            return await self._run_loop(run, definition)

    async def cancel(self, run_id: str) -> WorkflowRun:
        """
        Cancel a running or paused run.

        The request stays pending until a lease holder acts on it. An advance
        in progress applies it before its next dispatch or retry; provider
        calls already in flight are not interrupted, so this may wait for
        the current step to return.

        Raises:
            RunNotFoundError: Unknown run
            RunStateError: The run is not running or paused
        """
        run = await self.store.load_run(run_id)
        if run.status not in (RunStatus.RUNNING, RunStatus.PAUSED):
            raise RunStateError(run_id, run.status.value, "cancel")

        self._cancel_requests.add(run_id)
        try:
            while True:
                try:
                    async with self.leases.acquire(run_id):
                        run = await self.store.load_run(run_id)
                        if run.status == RunStatus.CANCELLED:
                            return run
                        if run.is_terminal:
                            raise RunStateError(run_id, run.status.value, "cancel")

                        await self._apply_cancel(run)
                        return run
                except RunBusyError:
                    logger.info(f"Run {run_id} is mid-step; cancel waits for the step to return")
        finally:
            self._cancel_requests.discard(run_id)

    async def _apply_cancel(self, run: WorkflowRun) -> None:
        """Cancel a run. Caller holds the lease."""
        run.cancel()
        await self.store.save_run(run)

        logger.info(f"Cancelled run {run.id}")
        await self._notify("run_cancelled", run)

    async def resume_active_runs(self) -> list[str]:
        """
        Advance every stored run that is running or paused.

        Called at startup to pick up runs interrupted by a restart.

        Returns:
            Ids of the runs that were advanced
        """
        active: list[WorkflowRun] = []
        for status in (RunStatus.RUNNING, RunStatus.PAUSED):
            active.extend(await self.store.list_runs(status=status))

        resumed = []
        for run in active:
            try:
                await self.advance(run.id)
                resumed.append(run.id)
            except GenflowError as e:
                logger.error(f"Could not resume run {run.id}: {e}")

        if resumed:
            logger.info(f"Resumed {len(resumed)} active runs")
        return resumed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_run(self, run_id: str) -> WorkflowRun:
        return await self.store.load_run(run_id)

    async def get_run_status(self, run_id: str) -> dict[str, Any]:
        """Status, per-step state, credits, error and outputs of a run."""
        run = await self.store.load_run(run_id)
        return {
            "id": run.id,
            "definition_id": run.definition_id,
            "status": run.status.value,
            "state": {step_id: s.model_dump(mode="json") for step_id, s in run.state.items()},
            "frontier": list(run.frontier),
            "credits_used": run.credits_used,
            "error": run.error.model_dump() if run.error else None,
            "outputs": run.outputs,
        }

    async def list_pending_tasks(self, owner_id: str) -> list[WorkflowTask]:
        """Pending tasks of an owner whose runs are still waiting on them."""
        tasks = await self.store.list_tasks(owner_id=owner_id, status=TaskStatus.PENDING)

        pending = []
        runs: dict[str, WorkflowRun] = {}
        for task in tasks:
            if task.run_id not in runs:
                runs[task.run_id] = await self.store.load_run(task.run_id)
            if runs[task.run_id].status == RunStatus.PAUSED:
                pending.append(task)
        return pending

    # -------------------------------------------------------------------------
    # Step dispatch
    # -------------------------------------------------------------------------

    async def _run_loop(self, run: WorkflowRun, definition: WorkflowDefinition) -> WorkflowRun:
        """Dispatch ready steps one at a time. Caller holds the lease."""
        while run.status == RunStatus.RUNNING:
            if run.id in self._cancel_requests:
                logger.info(f"Run {run.id} has a pending cancel; stopping before the next step")
                await self._apply_cancel(run)
                break

            run.frontier = ready_steps(definition, run)

            if not run.frontier:
                await self._finish(run, definition)
                break

            await self.store.save_run(run)
            await self._execute_step(run, definition, definition.get_step(run.frontier[0]))

        return run

    async def _finish(self, run: WorkflowRun, definition: WorkflowDefinition) -> None:
        unsettled = [s.id for s in definition.steps if not run.step(s.id).is_settled]

        if unsettled:
            run.fail(RunError(
                kind="StuckWorkflowError",
                message=f"No runnable steps; unfinished: {', '.join(unsettled)}",
            ))
            await self.store.save_run(run)
            logger.error(f"Run {run.id} is stuck with unfinished steps {unsettled}")
            await self._notify("run_failed", run)
            return

        outputs = resolve_inputs(definition.outputs, build_context(run))
        run.complete(outputs)
        await self.store.save_run(run)

        logger.info(
            f"Run {run.id} completed ({run.credits_used:g} credits, "
            f"{run.duration_seconds or 0:.1f}s)"
        )
        await self._notify("run_completed", run)

    def _skip_reason(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        context: dict[str, Any],
    ) -> Optional[str]:
        if step.condition is not None:
            if not evaluate_condition(step.condition, context):
                return f"condition on '{step.condition.step}' not met"
            return None

        if step.depends_on and all(
            run.step(dep).status == StepStatus.SKIPPED for dep in step.depends_on
        ):
            return "all dependencies were skipped"
        return None

    def _retry_policy(self, step: StepDefinition) -> RetryPolicy:
        if "retry" in step.model_fields_set:
            return step.retry
        return RetryPolicy(
            max_attempts=self.settings.default_max_attempts,
            backoff_seconds=self.settings.default_backoff_seconds,
        )

    def _estimate_cost(self, step: StepDefinition, inputs: dict[str, Any]) -> float:
        if step.estimated_cost is not None:
            return step.estimated_cost
        model = self.models.get(step.model) if step.model else None
        if model is None:
            return 0.0
        return model.estimate_cost(options=inputs.get("options") or {})

    async def _execute_step(
        self,
        run: WorkflowRun,
        definition: WorkflowDefinition,
        step: StepDefinition,
    ) -> None:
        state = run.step(step.id)
        context = build_context(run)

        reason = self._skip_reason(run, step, context)
        if reason:
            state.status = StepStatus.SKIPPED
            state.skip_reason = reason
            state.completed_at = datetime.utcnow()
            run.updated_at = datetime.utcnow()
            await self.store.save_run(run)
            logger.info(f"Skipped step {step.id} of run {run.id}: {reason}")
            await self._notify("step_skipped", run, step_id=step.id)
            return

        handler = self.handlers.get(step.kind)
        if handler is None:
            await self._fail_step(
                run, step, state,
                StepExecutionError(step.id, f"no handler for step kind '{step.kind.value}'"),
                [],
            )
            return

        inputs = resolve_inputs(step.inputs, context)
        policy = self._retry_policy(step)
        step_ctx = StepContext(run=run, definition=definition, values=context)
        attempted: list[str] = []
        last_error: Optional[BaseException] = None

        if state.started_at is None:
            state.started_at = datetime.utcnow()

        for attempt in range(1, policy.max_attempts + 1):
            if run.id in self._cancel_requests:
                return

            state.attempts += 1
            try:
                outcome = await self._dispatch(run, step, handler, inputs, step_ctx)
            except InsufficientCreditsError as e:
                last_error = e
                logger.error(f"Step {step.id} of run {run.id} not dispatched: {e}")
                break
            except Exception as e:
                last_error = e
                attempted.extend(getattr(e, "attempted_providers", []))
                logger.error(
                    f"Error executing step {step.id} of run {run.id} "
                    f"(attempt {attempt}/{policy.max_attempts}): {e}\n"
                    f"{traceback.format_exc()}"
                )
                if attempt < policy.max_attempts:
                    await self.store.save_run(run)
                    delay = policy.delay_for(attempt)
                    if delay > 0:
                        await self._sleep(delay)
                continue

            await self._apply_outcome(run, step, state, outcome, attempted)
            return

        await self._fail_step(run, step, state, last_error, attempted)

    async def _dispatch(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        handler: StepHandler,
        inputs: dict[str, Any],
        ctx: StepContext,
    ) -> StepOutcome:
        if not handler.billable:
            return await handler.execute(step, inputs, ctx)

        estimate = self._estimate_cost(step, inputs)
        async with self.ledger.reserve(run, estimate, step.id) as reservation:
            await self.store.save_run(run)
            outcome = await handler.execute(step, inputs, ctx)
            reservation.commit(outcome.cost)
        return outcome

    async def _apply_outcome(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        state: StepState,
        outcome: StepOutcome,
        attempted: list[str],
    ) -> None:
        if outcome.suspends:
            await self._suspend(run, step, state, outcome.task)
            return

        state.status = StepStatus.COMPLETED
        state.output = outcome.output
        state.error = None
        state.provider_id = outcome.provider_id
        state.attempted_providers = attempted + outcome.attempted_providers
        state.completed_at = datetime.utcnow()
        run.updated_at = datetime.utcnow()
        await self.store.save_run(run)

        logger.info(
            f"Step {step.id} of run {run.id} completed"
            + (f" via {outcome.provider_id}" if outcome.provider_id else "")
        )
        await self._notify("step_completed", run, step_id=step.id)

    async def _fail_step(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        state: StepState,
        error: Optional[BaseException],
        attempted: list[str],
    ) -> None:
        message = str(error) if error else "step failed"

        state.status = StepStatus.FAILED
        state.error = message
        state.attempted_providers = attempted
        state.completed_at = datetime.utcnow()

        run.fail(RunError(
            kind=type(error).__name__ if error else "StepExecutionError",
            message=message,
            step_id=step.id,
            attempted_providers=attempted,
        ))
        await self.store.save_run(run)

        logger.error(f"Run {run.id} failed at step {step.id}: {message}")
        await self._notify("run_failed", run, step_id=step.id)

    async def _suspend(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        state: StepState,
        request: TaskRequest,
    ) -> None:
        task = await self.store.find_task(run.id, step.id)
        if task is None:
            task = WorkflowTask(
                run_id=run.id,
                step_id=step.id,
                owner_id=run.owner_id,
                task_type=request.task_type,
                title=request.title,
                description=request.description,
                prompt=request.prompt,
            )
            await self.store.create_task(task)

        state.task_id = task.id

        if not task.is_pending:
            self._apply_response(state, task.response)
            run.updated_at = datetime.utcnow()
            await self.store.save_run(run)
            return

        run.pause()
        await self.store.save_run(run)

        logger.info(f"Run {run.id} paused at step {step.id} awaiting task {task.id}")
        await self._notify("run_paused", run, step_id=step.id, task_id=task.id)

    async def _reconcile_tasks(self, run: WorkflowRun) -> bool:
        """
        Apply responses of tasks completed in the store but not on the run.

        Returns:
            True if nothing is awaited any more and the run was resumed
        """
        for step_id in run.awaiting_steps():
            state = run.step(step_id)
            try:
                task = await self.store.load_task(state.task_id)
            except TaskNotFoundError:
                logger.error(f"Run {run.id} awaits missing task {state.task_id}")
                continue
            if not task.is_pending:
                logger.info(f"Applying response of completed task {task.id} to run {run.id}")
                self._apply_response(state, task.response)

        if run.awaiting_steps():
            return False

        run.resume()
        await self.store.save_run(run)
        return True

    @staticmethod
    def _apply_response(state: StepState, response: Any) -> None:
        state.status = StepStatus.COMPLETED
        state.output = response
        state.completed_at = datetime.utcnow()
