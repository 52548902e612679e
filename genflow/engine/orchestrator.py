"""Orchestrator - wires the router and executor together and owns their lifecycle."""

from typing import Any, Awaitable, Callable, Optional
import logging

from ..catalog import ModelRegistry, WorkflowCatalog, load_models_from_yaml, load_workflows_from_yaml
from ..config import Settings
from ..models import WorkflowRun
from ..providers import ProviderRegistry, load_providers_from_yaml
from ..routing import BackoffPolicy, ProviderHealthTracker, ProviderRouter
from ..storage import SQLiteWorkflowStore, WorkflowStore
from .executor import WorkflowExecutor
from .handlers import HandlerRegistry, default_handlers
from .leases import RunLeaseManager

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Main entry point for running generation workflows.

    Manages:
    - Loading models, workflows and providers from configuration
    - The shared provider health tracker and router
    - Run and task operations for an API layer
    - Event callbacks for UI integration

    Usage:
        orchestrator = Orchestrator(load_settings("config/genflow.yaml"))
        await orchestrator.start()

        run_id = await orchestrator.start_run("product-shot", "user-1", {"product": "mug"})
        tasks = await orchestrator.list_pending_tasks("user-1")
        await orchestrator.complete_task(tasks[0]["id"], {"approved": True})

        await orchestrator.stop()

    Components passed to the constructor are used as-is instead of being
    built from settings.
    """

    EVENTS = (
        "run_started",
        "run_paused",
        "run_completed",
        "run_failed",
        "run_cancelled",
        "step_completed",
        "step_skipped",
    )

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[WorkflowStore] = None,
        models: Optional[ModelRegistry] = None,
        catalog: Optional[WorkflowCatalog] = None,
        providers: Optional[ProviderRegistry] = None,
        health: Optional[ProviderHealthTracker] = None,
        handlers: Optional[HandlerRegistry] = None,
    ):
        self.settings = settings or Settings()

        self.store = store or SQLiteWorkflowStore(self.settings.database_path)
        self.models = models
        self.catalog = catalog or WorkflowCatalog()
        self.providers = providers or ProviderRegistry()
        self.health = health or ProviderHealthTracker(
            BackoffPolicy.from_settings(self.settings.router)
        )
        self._handlers = handlers

        self.router: Optional[ProviderRouter] = None
        self.executor: Optional[WorkflowExecutor] = None

        self._running = False
        self._callbacks: dict[str, list[Callable]] = {event: [] for event in self.EVENTS}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, resume: bool = True) -> None:
        """
        Start the orchestrator.

        Args:
            resume: Advance runs left running or paused by a previous process
        """
        if self._running:
            logger.warning("Orchestrator already running")
            return

        logger.info("Starting orchestrator...")

        await self.store.connect()
        self._load_configuration()

        self.router = ProviderRouter(self.models, self.providers, self.health)
        self.executor = WorkflowExecutor(
            self.store,
            self.catalog,
            self.models,
            self._handlers or default_handlers(self.router),
            leases=RunLeaseManager(self.settings.executor.lease_timeout_seconds),
            settings=self.settings.executor,
        )
        self.executor.add_listener(self._handle_run_event)

        self._running = True

        if resume:
            await self.executor.resume_active_runs()

        logger.info(
            f"Orchestrator started ({len(self.models)} models, "
            f"{len(self.catalog)} workflows, {len(self.providers)} providers)"
        )

    def _load_configuration(self) -> None:
        if self.models is None:
            path = self.settings.models_path
            self.models = load_models_from_yaml(path) if path else ModelRegistry()

        if self.settings.workflows_path:
            load_workflows_from_yaml(self.settings.workflows_path, self.catalog)

        if self.settings.providers_path:
            load_providers_from_yaml(self.settings.providers_path, self.providers)

    async def stop(self) -> None:
        """Stop the orchestrator, waiting for background advances first."""
        if not self._running:
            return

        logger.info("Stopping orchestrator...")
        self._running = False

        await self.executor.drain()
        await self.providers.close_all()
        await self.store.close()

        logger.info("Orchestrator stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _require_started(self) -> WorkflowExecutor:
        if self.executor is None:
            raise RuntimeError("Orchestrator not started. Call start() first.")
        return self.executor

    # -------------------------------------------------------------------------
    # Run and task operations
    # -------------------------------------------------------------------------

    async def start_run(
        self,
        definition_id: str,
        owner_id: str,
        inputs: Optional[dict[str, Any]] = None,
        budget: Optional[float] = None,
        wait: bool = False,
    ) -> str:
        """Start a workflow run. Returns the run id."""
        return await self._require_started().start_run(
            definition_id, owner_id, inputs, budget=budget, wait=wait
        )

    async def get_run(self, run_id: str) -> WorkflowRun:
        return await self._require_started().get_run(run_id)

    async def get_run_status(self, run_id: str) -> dict[str, Any]:
        """Status, per-step state, credits, error and outputs of a run."""
        return await self._require_started().get_run_status(run_id)

    async def cancel_run(self, run_id: str) -> dict[str, Any]:
        """Cancel a run. Returns ``{"id", "status"}``."""
        run = await self._require_started().cancel(run_id)
        return {"id": run.id, "status": run.status.value}

    async def complete_task(self, task_id: str, response: Any) -> dict[str, Any]:
        """Complete a human task. Returns the run's ``{"id", "status"}`` afterwards."""
        run = await self._require_started().complete_task(task_id, response)
        return {"id": run.id, "status": run.status.value}

    async def list_pending_tasks(self, owner_id: str) -> list[dict[str, Any]]:
        """Summaries of the owner's tasks that are waiting for a response."""
        tasks = await self._require_started().list_pending_tasks(owner_id)
        return [task.summary() for task in tasks]

    async def recover(self) -> list[str]:
        """Advance every run left running or paused. Returns their ids."""
        return await self._require_started().resume_active_runs()

    async def drain(self) -> None:
        """Wait for background advances to finish."""
        await self._require_started().drain()

    # -------------------------------------------------------------------------
    # Providers and models
    # -------------------------------------------------------------------------

    def get_models(self) -> list[dict[str, Any]]:
        """Information about all registered models."""
        return [
            {
                "id": m.id,
                "name": m.name,
                "type": m.type.value,
                "providers": m.candidate_providers(),
                "base_cost": m.base_cost,
            }
            for m in self.models or []
        ]

    def get_provider_health(self) -> dict[str, dict[str, Any]]:
        """Tracked health of every provider the router has used."""
        return {
            pid: record.model_dump(mode="json")
            for pid, record in self.health.snapshot().items()
        }

    async def check_providers(self) -> dict[str, bool]:
        """Probe every registered provider and record the results."""
        router = self.router or ProviderRouter(self.models, self.providers, self.health)
        return {pid: await router.probe(pid) for pid in self.providers.get_ids()}

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: Callable[..., Awaitable[None]]) -> None:
        """Register an event callback."""
        if event in self._callbacks:
            self._callbacks[event].append(callback)

    def off(self, event: str, callback: Callable) -> None:
        """Unregister an event callback."""
        if event in self._callbacks and callback in self._callbacks[event]:
            self._callbacks[event].remove(callback)

    async def _emit(self, event: str, *args) -> None:
        """Emit an event to all registered callbacks."""
        for callback in self._callbacks.get(event, []):
            try:
                await callback(*args)
            except Exception as e:
                logger.error(f"Error in callback for event '{event}': {e}")

    async def _handle_run_event(self, event: str, run: WorkflowRun, data: dict[str, Any]) -> None:
        """Forward executor events to registered callbacks."""
        await self._emit(event, run, data)
