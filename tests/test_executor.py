"""Tests for the workflow executor."""

import asyncio

import pytest

from genflow.config import ExecutorSettings
from genflow.engine import WorkflowExecutor, default_handlers
from genflow.errors import (
    RunStateError,
    TaskAlreadyCompletedError,
    TaskNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from genflow.models import RunStatus, StepStatus, TaskStatus, WorkflowDefinition, WorkflowRun


APPROVAL_WORKFLOW = {
    "id": "approval",
    "inputs": {"product": {"required": True}},
    "steps": [
        {
            "id": "draft",
            "kind": "image-generation",
            "model": "img",
            "inputs": {"prompt": "${input.product} on white"},
        },
        {
            "id": "review",
            "kind": "human-approval",
            "name": "Review draft",
            "depends_on": ["draft"],
            "inputs": {"image": "${draft.assets.0}"},
            "config": {"message": "Approve the draft?"},
        },
        {
            "id": "final",
            "kind": "image-generation",
            "model": "img",
            "depends_on": ["review"],
            "condition": {"step": "review", "path": "approved", "value": True},
            "inputs": {"prompt": "final ${input.product}"},
        },
        {
            "id": "publish",
            "kind": "data-transform",
            "depends_on": ["final"],
            "config": {"operation": "pick", "fields": ["image"]},
            "inputs": {"image": "${final.assets.0}"},
        },
    ],
    "outputs": {"image": "${publish.image}", "draft": "${draft.assets.0}"},
}


def _register(catalog, data: dict) -> WorkflowDefinition:
    definition = WorkflowDefinition.model_validate(data)
    catalog.register(definition)
    return definition


@pytest.fixture
def approval(catalog):
    return _register(catalog, APPROVAL_WORKFLOW)


@pytest.fixture
def events(executor):
    """Events emitted by the executor, as (event, step_id) pairs."""
    received = []

    async def listener(event, run, data):
        received.append((event, data.get("step_id")))

    executor.add_listener(listener)
    return received


TWO_SHOT_WORKFLOW = {
    "id": "two-shot",
    "steps": [
        {"id": "first", "kind": "image-generation", "model": "img", "inputs": {"prompt": "one"}},
        {"id": "second", "kind": "image-generation", "model": "img", "depends_on": ["first"],
         "inputs": {"prompt": "two"}},
    ],
}


def _block(provider) -> tuple[asyncio.Event, asyncio.Event]:
    """Make a FakeProvider wait on a gate; returns (entered, gate)."""
    entered = asyncio.Event()
    gate = asyncio.Event()
    serve = provider._serve

    async def blocked(*args):
        entered.set()
        await gate.wait()
        return await serve(*args)

    provider._serve = blocked
    return entered, gate


def _short_lease_executor(store, catalog, models, router, sleep=None) -> WorkflowExecutor:
    kwargs = {"sleep": sleep} if sleep else {}
    return WorkflowExecutor(
        store, catalog, models, default_handlers(router),
        settings=ExecutorSettings(lease_timeout_seconds=0.05),
        **kwargs,
    )


async def _pending_task(executor, owner_id: str = "u1"):
    tasks = await executor.list_pending_tasks(owner_id)
    assert len(tasks) == 1
    return tasks[0]


class TestApprovalFlow:
    """End-to-end runs through a human approval."""

    @pytest.mark.asyncio
    async def test_pauses_at_approval(self, executor, approval, providers):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)

        run = await executor.get_run(run_id)
        assert run.status == RunStatus.PAUSED
        assert run.step("draft").status == StepStatus.COMPLETED
        assert run.step("draft").provider_id == "a"
        assert run.step("review").awaiting_task
        assert run.step("final").status == StepStatus.PENDING
        assert run.credits_used == 1.0
        assert run.credits_reserved == 0.0
        assert providers.get("a").calls == [("img", "image", "mug on white")]

        task = await _pending_task(executor)
        assert task.title == "Review draft"
        assert task.description == "Approve the draft?"
        assert task.prompt == {"image": "https://a.test/img/1"}
        assert task.id == run.step("review").task_id

    @pytest.mark.asyncio
    async def test_approve_completes(self, executor, approval, providers, events):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)

        run = await executor.complete_task(task.id, {"approved": True})

        assert run.status == RunStatus.COMPLETED
        assert run.step("review").output == {"approved": True}
        assert run.step("final").status == StepStatus.COMPLETED
        assert run.outputs == {"image": "https://a.test/img/2", "draft": "https://a.test/img/1"}
        assert run.credits_used == 2.0
        assert len(providers.get("a").calls) == 2
        assert await executor.list_pending_tasks("u1") == []

        stored = await executor.get_run(run_id)
        assert stored.status == RunStatus.COMPLETED
        assert events == [
            ("run_started", None),
            ("step_completed", "draft"),
            ("run_paused", "review"),
            ("step_completed", "review"),
            ("step_completed", "final"),
            ("step_completed", "publish"),
            ("run_completed", None),
        ]

    @pytest.mark.asyncio
    async def test_reject_skips_downstream(self, executor, approval, providers):
        """Test that a failed condition skips the step and everything only it feeds."""
        await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)

        run = await executor.complete_task(task.id, {"approved": False})

        assert run.status == RunStatus.COMPLETED
        assert run.step("final").status == StepStatus.SKIPPED
        assert run.step("publish").status == StepStatus.SKIPPED
        assert run.step("publish").skip_reason == "all dependencies were skipped"
        assert run.credits_used == 1.0
        assert len(providers.get("a").calls) == 1

    @pytest.mark.asyncio
    async def test_complete_twice_rejected(self, executor, approval):
        await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)

        await executor.complete_task(task.id, {"approved": False})

        with pytest.raises(TaskAlreadyCompletedError):
            await executor.complete_task(task.id, {"approved": True})

    @pytest.mark.asyncio
    async def test_concurrent_completions_apply_once(self, executor, approval, providers):
        """Test that only one of two racing responses is applied."""
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)

        results = await asyncio.gather(
            executor.complete_task(task.id, {"approved": True}),
            executor.complete_task(task.id, {"approved": False}),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], TaskAlreadyCompletedError)

        run = await executor.get_run(run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.step("review").output == {"approved": True}
        assert len(providers.get("a").calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_task(self, executor):
        with pytest.raises(TaskNotFoundError):
            await executor.complete_task("missing", {})

    @pytest.mark.asyncio
    async def test_pause_holds_independent_steps(self, executor, catalog):
        """Test that no other step is dispatched while a run is paused."""
        _register(catalog, {
            "id": "gate",
            "steps": [
                {"id": "review", "kind": "human-approval"},
                {"id": "side", "kind": "data-transform", "inputs": {"x": 1}},
            ],
        })

        run_id = await executor.start_run("gate", "u1", wait=True)
        run = await executor.get_run(run_id)
        assert run.status == RunStatus.PAUSED
        assert run.step("side").status == StepStatus.PENDING

        task = await _pending_task(executor)
        run = await executor.complete_task(task.id, "ok")

        assert run.status == RunStatus.COMPLETED
        assert run.step("side").output == {"merged": {"x": 1}}


class TestStartRun:
    """Tests for run creation."""

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, executor, store):
        with pytest.raises(WorkflowNotFoundError):
            await executor.start_run("nope", "u1")
        assert await store.list_runs() == []

    @pytest.mark.asyncio
    async def test_missing_input_rejected(self, executor, approval, store):
        with pytest.raises(WorkflowValidationError, match="product"):
            await executor.start_run("approval", "u1", {})
        assert await store.list_runs() == []

    @pytest.mark.asyncio
    async def test_invalid_definition_rejected(self, executor, catalog, store):
        """Test that a cyclic definition never produces a run."""
        _register(catalog, {
            "id": "loop",
            "steps": [
                {"id": "a", "kind": "data-transform", "depends_on": ["b"]},
                {"id": "b", "kind": "data-transform", "depends_on": ["a"]},
            ],
        })

        with pytest.raises(WorkflowValidationError, match="circular"):
            await executor.start_run("loop", "u1")
        assert await store.list_runs() == []

    @pytest.mark.asyncio
    async def test_background_advance(self, executor, approval):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"})
        await executor.drain()

        run = await executor.get_run(run_id)
        assert run.status == RunStatus.PAUSED

    @pytest.mark.asyncio
    async def test_status_view(self, executor, approval):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)

        status = await executor.get_run_status(run_id)

        assert status["status"] == "paused"
        assert status["state"]["draft"]["status"] == "completed"
        assert status["state"]["review"]["task_id"] is not None
        assert status["credits_used"] == 1.0
        assert status["error"] is None


class TestFailures:
    """Tests for step failures, retries and credits."""

    @pytest.mark.asyncio
    async def test_failed_step_blocks_dependents(self, executor, approval, providers):
        for provider_id in ("a", "b", "c"):
            providers.get(provider_id).fail_times = -1

        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        run = await executor.get_run(run_id)

        assert run.status == RunStatus.FAILED
        assert run.error.kind == "AllProvidersFailedError"
        assert run.error.step_id == "draft"
        assert run.error.attempted_providers == ["a", "b", "c"]
        assert run.step("draft").status == StepStatus.FAILED
        assert run.step("review").status == StepStatus.PENDING
        assert run.credits_used == 0.0
        assert run.credits_reserved == 0.0
        assert await executor.list_pending_tasks("u1") == []

    @pytest.mark.asyncio
    async def test_retry_with_backoff(self, executor, catalog, providers, sleeps):
        _register(catalog, {
            "id": "video",
            "steps": [{
                "id": "clip",
                "kind": "video-generation",
                "model": "vid",
                "inputs": {"prompt": "waves"},
                "retry": {"max_attempts": 3, "backoff_seconds": 1, "backoff_factor": 2},
            }],
        })
        providers.get("b").fail_times = 2

        run_id = await executor.start_run("video", "u1", wait=True)
        run = await executor.get_run(run_id)

        assert run.status == RunStatus.COMPLETED
        assert run.step("clip").attempts == 3
        assert run.step("clip").attempted_providers == ["b", "b", "b"]
        assert sleeps == [1, 2]
        assert run.credits_used == 3.0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, executor, catalog, providers, sleeps):
        _register(catalog, {
            "id": "video",
            "steps": [{
                "id": "clip",
                "kind": "video-generation",
                "model": "vid",
                "retry": {"max_attempts": 2},
            }],
        })
        providers.get("b").fail_times = -1

        run_id = await executor.start_run("video", "u1", wait=True)
        run = await executor.get_run(run_id)

        assert run.status == RunStatus.FAILED
        assert run.step("clip").attempts == 2
        assert len(providers.get("b").calls) == 2
        assert sleeps == []
        assert run.credits_used == 0.0

    @pytest.mark.asyncio
    async def test_default_retry_from_settings(self, store, catalog, models, router, providers):
        _register(catalog, {
            "id": "video",
            "steps": [{"id": "clip", "kind": "video-generation", "model": "vid"}],
        })
        providers.get("b").fail_times = 1
        executor = WorkflowExecutor(
            store, catalog, models, default_handlers(router),
            settings=ExecutorSettings(default_max_attempts=2),
        )

        run_id = await executor.start_run("video", "u1", wait=True)

        assert (await executor.get_run(run_id)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_insufficient_credits_not_retried(self, executor, approval, providers, sleeps):
        """Test that a budget rejection fails the step without calling a provider."""
        run_id = await executor.start_run(
            "approval", "u1", {"product": "mug"}, budget=0.5, wait=True
        )
        run = await executor.get_run(run_id)

        assert run.status == RunStatus.FAILED
        assert run.error.kind == "InsufficientCreditsError"
        assert run.step("draft").attempts == 1
        assert providers.get("a").calls == []
        assert run.credits_used == 0.0
        assert run.credits_reserved == 0.0
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_budget_covers_first_step_only(self, executor, approval):
        run_id = await executor.start_run(
            "approval", "u1", {"product": "mug"}, budget=1.5, wait=True
        )
        task = await _pending_task(executor)

        run = await executor.complete_task(task.id, {"approved": True})

        assert run.id == run_id
        assert run.status == RunStatus.FAILED
        assert run.error.step_id == "final"
        assert run.credits_used == 1.0


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_paused_run(self, executor, approval, events):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)

        run = await executor.cancel(run_id)

        assert run.status == RunStatus.CANCELLED
        assert ("run_cancelled", None) in events
        assert await executor.list_pending_tasks("u1") == []

        with pytest.raises(RunStateError):
            await executor.complete_task(task.id, {"approved": True})

        with pytest.raises(RunStateError):
            await executor.cancel(run_id)

    @pytest.mark.asyncio
    async def test_cancelled_run_not_advanced(self, executor, approval, providers):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        await executor.cancel(run_id)

        run = await executor.advance(run_id)

        assert run.status == RunStatus.CANCELLED
        assert len(providers.get("a").calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_mid_step_outlasting_lease(self, store, catalog, models, router, providers):
        """Test that a cancel issued during a long provider call stops the next step."""
        _register(catalog, TWO_SHOT_WORKFLOW)
        executor = _short_lease_executor(store, catalog, models, router)
        entered, gate = _block(providers.get("a"))

        run_id = await executor.start_run("two-shot", "u1")
        await entered.wait()
        cancelling = asyncio.create_task(executor.cancel(run_id))
        await asyncio.sleep(0.2)

        assert not cancelling.done()

        gate.set()
        run = await cancelling
        await executor.drain()

        assert run.status == RunStatus.CANCELLED
        assert len(providers.get("a").calls) == 1
        stored = await executor.get_run(run_id)
        assert stored.status == RunStatus.CANCELLED
        assert stored.step("first").status == StepStatus.COMPLETED
        assert stored.step("second").status == StepStatus.PENDING
        assert stored.credits_reserved == 0.0

    @pytest.mark.asyncio
    async def test_cancel_during_retry_backoff(self, store, catalog, models, router, providers):
        _register(catalog, {
            "id": "video",
            "steps": [{
                "id": "clip",
                "kind": "video-generation",
                "model": "vid",
                "retry": {"max_attempts": 3, "backoff_seconds": 5},
            }],
        })
        providers.get("b").fail_times = -1
        sleeping = asyncio.Event()
        gate = asyncio.Event()

        async def held_sleep(delay: float) -> None:
            sleeping.set()
            await gate.wait()

        executor = _short_lease_executor(store, catalog, models, router, sleep=held_sleep)
        events = []

        async def listener(event, run, data):
            events.append(event)

        executor.add_listener(listener)

        run_id = await executor.start_run("video", "u1")
        await sleeping.wait()
        cancelling = asyncio.create_task(executor.cancel(run_id))
        await asyncio.sleep(0.2)
        gate.set()
        run = await cancelling
        await executor.drain()

        assert run.status == RunStatus.CANCELLED
        assert len(providers.get("b").calls) == 1
        assert (await executor.get_run(run_id)).step("clip").attempts == 1
        assert events.count("run_cancelled") == 1
        assert "run_failed" not in events

    @pytest.mark.asyncio
    async def test_advance_applies_pending_cancel(self, executor, approval):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        executor._cancel_requests.add(run_id)

        run = await executor.advance(run_id)

        assert run.status == RunStatus.CANCELLED
        assert (await executor.get_run(run_id)).status == RunStatus.CANCELLED


class TestRecovery:
    """Tests for resuming runs from the store."""

    @pytest.mark.asyncio
    async def test_resume_running_run(self, executor, approval, store):
        """Test that a run left running by a previous process is picked up."""
        run = WorkflowRun(definition_id="approval", owner_id="u1", inputs={"product": "mug"})
        for step in approval.steps:
            run.step(step.id)
        run.start()
        await store.save_run(run)

        resumed = await executor.resume_active_runs()

        assert resumed == [run.id]
        assert (await executor.get_run(run.id)).status == RunStatus.PAUSED

    @pytest.mark.asyncio
    async def test_reconcile_completed_task(self, executor, approval, store):
        """Test that a task completed in the store but not on the run is applied."""
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        task = await _pending_task(executor)
        assert await store.complete_task(task.id, {"approved": True})

        run = await executor.advance(run_id)

        assert run.status == RunStatus.COMPLETED
        assert run.step("review").output == {"approved": True}
        assert (await store.load_task(task.id)).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_paused_run_stays_paused(self, executor, approval, providers):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)

        run = await executor.advance(run_id)

        assert run.status == RunStatus.PAUSED
        assert len(providers.get("a").calls) == 1

    @pytest.mark.asyncio
    async def test_stale_reservation_released(self, executor, approval, store):
        run_id = await executor.start_run("approval", "u1", {"product": "mug"}, wait=True)
        run = await store.load_run(run_id)
        run.credits_reserved = 5.0
        await store.save_run(run)

        run = await executor.advance(run_id)

        assert run.credits_reserved == 0.0

    @pytest.mark.asyncio
    async def test_reservation_saved_while_step_in_flight(self, executor, approval, providers, store):
        """Test that a crash mid-call leaves the hold in the store for recovery."""
        entered, gate = _block(providers.get("a"))

        run_id = await executor.start_run("approval", "u1", {"product": "mug"})
        await entered.wait()

        assert (await store.load_run(run_id)).credits_reserved == 1.0

        gate.set()
        await executor.drain()

        run = await store.load_run(run_id)
        assert run.status == RunStatus.PAUSED
        assert run.credits_reserved == 0.0
        assert run.credits_used == 1.0

    @pytest.mark.asyncio
    async def test_completed_runs_untouched(self, executor, catalog):
        _register(catalog, {"id": "noop", "steps": [{"id": "a", "kind": "data-transform"}]})
        run_id = await executor.start_run("noop", "u1", wait=True)

        assert (await executor.get_run(run_id)).status == RunStatus.COMPLETED
        assert await executor.resume_active_runs() == []


class TestDataFlow:
    """Tests for in-process steps chained together."""

    @pytest.mark.asyncio
    async def test_loop_then_similarity(self, executor, catalog):
        _register(catalog, {
            "id": "flow",
            "inputs": {"colors": {"default": ["red", "blue"]}},
            "steps": [
                {
                    "id": "variants",
                    "kind": "loop-over-collection",
                    "inputs": {"items": "${input.colors}"},
                    "config": {"template": "a ${item} mug"},
                },
                {
                    "id": "embed",
                    "kind": "embedding",
                    "model": "emb",
                    "depends_on": ["variants"],
                    "inputs": {"text": "${variants.items.0}"},
                },
                {
                    "id": "score",
                    "kind": "data-transform",
                    "depends_on": ["embed"],
                    "config": {"operation": "cosine-similarity"},
                    "inputs": {"vector_a": "${embed.embedding}", "vector_b": "${embed.embedding}"},
                },
                {
                    "id": "check",
                    "kind": "conditional-branch",
                    "depends_on": ["score"],
                    "config": {"condition": {"step": "score", "path": "score", "operator": "gt", "value": 0.99}},
                },
            ],
            "outputs": {"variants": "${variants.items}", "match": "${check.result}"},
        })

        run_id = await executor.start_run("flow", "u1", wait=True)
        run = await executor.get_run(run_id)

        assert run.status == RunStatus.COMPLETED
        assert run.outputs == {"variants": ["a red mug", "a blue mug"], "match": True}
        assert run.credits_used == pytest.approx(0.01)
