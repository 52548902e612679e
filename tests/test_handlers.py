"""Tests for step handlers."""

import pytest

from genflow.engine import StepContext, default_handlers
from genflow.engine.handlers import (
    ConditionalBranchHandler,
    HandlerRegistry,
    HumanApprovalHandler,
    LoopHandler,
    TransformHandler,
    cosine_similarity,
)
from genflow.errors import AllProvidersFailedError, StepExecutionError
from genflow.models import StepDefinition, StepKind, WorkflowDefinition, WorkflowRun


def _step(kind, **kwargs) -> StepDefinition:
    return StepDefinition(id=kwargs.pop("id", "s1"), kind=kind, **kwargs)


@pytest.fixture
def ctx():
    definition = WorkflowDefinition(id="wf")
    run = WorkflowRun(definition_id="wf", owner_id="u1", inputs={"product": "mug"})
    return StepContext(
        run=run,
        definition=definition,
        values={"input": run.inputs, "draft": {"score": 0.9}},
    )


class TestGenerationHandler:
    """Tests for generation through the router."""

    @pytest.mark.asyncio
    async def test_image_generation(self, router, providers, ctx):
        handler = default_handlers(router)[StepKind.IMAGE_GENERATION]
        step = _step("image-generation", model="img")

        outcome = await handler.execute(
            step, {"prompt": "a mug", "options": {"num_images": 2}}, ctx
        )

        assert handler.billable
        assert outcome.provider_id == "a"
        assert outcome.cost == 2.0
        assert outcome.attempted_providers == ["a"]
        assert outcome.output["assets"] == ["https://a.test/img/1"]
        assert outcome.output["provider"] == "a"
        assert providers.get("a").calls == [("img", "image", "a mug")]

    @pytest.mark.asyncio
    async def test_text_and_embedding_outputs(self, router, ctx):
        handlers = default_handlers(router)

        text = await handlers[StepKind.TEXT_GENERATION].execute(
            _step("text-generation", model="llm"), {"prompt": "write"}, ctx
        )
        embedding = await handlers[StepKind.EMBEDDING].execute(
            _step("embedding", model="emb"), {"text": "vectorize me"}, ctx
        )

        assert text.output["text"] == "generated text"
        assert embedding.output["embedding"] == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_router_errors_propagate(self, router, providers, ctx):
        providers.get("b").fail_times = -1
        handler = default_handlers(router)[StepKind.VIDEO_GENERATION]

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await handler.execute(_step("video-generation", model="vid"), {"prompt": "x"}, ctx)

        assert exc_info.value.attempted_providers == ["b"]


class TestTransformHandler:
    """Tests for data transforms."""

    @pytest.mark.asyncio
    async def test_merge_is_default(self, ctx):
        outcome = await TransformHandler().execute(_step("data-transform"), {"a": 1}, ctx)
        assert outcome.output == {"merged": {"a": 1}}
        assert not outcome.suspends

    @pytest.mark.asyncio
    async def test_pick(self, ctx):
        step = _step("data-transform", config={"operation": "pick", "fields": ["a", "c"]})
        outcome = await TransformHandler().execute(step, {"a": 1, "b": 2}, ctx)
        assert outcome.output == {"a": 1, "c": None}

    @pytest.mark.asyncio
    async def test_json_parse(self, ctx):
        step = _step("data-transform", config={"operation": "json-parse"})

        outcome = await TransformHandler().execute(step, {"text": '{"x": [1, 2]}'}, ctx)
        assert outcome.output == {"data": {"x": [1, 2]}}

        with pytest.raises(StepExecutionError, match="invalid JSON"):
            await TransformHandler().execute(step, {"text": "not json"}, ctx)

    @pytest.mark.asyncio
    async def test_template(self, ctx):
        step = _step(
            "data-transform",
            config={"operation": "template", "template": "${input.product} in ${color}"},
        )
        outcome = await TransformHandler().execute(step, {"color": "red"}, ctx)
        assert outcome.output == {"text": "mug in red"}

    @pytest.mark.asyncio
    async def test_cosine_similarity(self, ctx):
        step = _step("data-transform", config={"operation": "cosine-similarity"})
        outcome = await TransformHandler().execute(
            step, {"vector_a": [1, 0], "vector_b": [1, 0]}, ctx
        )
        assert outcome.output == {"score": pytest.approx(1.0)}

    @pytest.mark.asyncio
    async def test_unknown_operation(self, ctx):
        step = _step("data-transform", config={"operation": "explode"})
        with pytest.raises(StepExecutionError, match="unknown transform operation"):
            await TransformHandler().execute(step, {}, ctx)

    def test_cosine_edge_cases(self):
        assert cosine_similarity([], [1]) == 0.0
        assert cosine_similarity([1, 2], [1]) == 0.0
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)


class TestConditionalBranchHandler:
    """Tests for conditional branches."""

    @pytest.mark.asyncio
    async def test_evaluates_against_context(self, ctx):
        step = _step(
            "conditional-branch",
            config={"condition": {"step": "draft", "path": "score", "operator": "gte", "value": 0.8}},
        )
        outcome = await ConditionalBranchHandler().execute(step, {}, ctx)
        assert outcome.output == {"result": True}

    @pytest.mark.asyncio
    async def test_evaluates_against_inputs(self, ctx):
        step = _step(
            "conditional-branch",
            config={"condition": {"step": "inputs", "path": "flag", "operator": "truthy"}},
        )
        outcome = await ConditionalBranchHandler().execute(step, {"flag": 0}, ctx)
        assert outcome.output == {"result": False}

    @pytest.mark.asyncio
    async def test_requires_condition(self, ctx):
        with pytest.raises(StepExecutionError, match="requires config.condition"):
            await ConditionalBranchHandler().execute(_step("conditional-branch"), {}, ctx)

    @pytest.mark.asyncio
    async def test_invalid_condition(self, ctx):
        step = _step("conditional-branch", config={"condition": {"operator": "equals"}})
        with pytest.raises(StepExecutionError, match="invalid condition"):
            await ConditionalBranchHandler().execute(step, {}, ctx)


class TestLoopHandler:
    """Tests for loop-over-collection."""

    @pytest.mark.asyncio
    async def test_maps_template(self, ctx):
        step = _step(
            "loop-over-collection",
            config={"template": {"prompt": "${input.product} in ${item}", "n": "${index}"}},
        )
        outcome = await LoopHandler().execute(step, {"items": ["red", "blue"]}, ctx)

        assert outcome.output == {
            "items": [{"prompt": "mug in red", "n": 0}, {"prompt": "mug in blue", "n": 1}],
            "count": 2,
        }

    @pytest.mark.asyncio
    async def test_json_string_items(self, ctx):
        outcome = await LoopHandler().execute(_step("loop-over-collection"), {"items": "[1, 2]"}, ctx)
        assert outcome.output == {"items": [1, 2], "count": 2}

    @pytest.mark.asyncio
    async def test_items_from_config(self, ctx):
        step = _step("loop-over-collection", config={"items": ["x"]})
        outcome = await LoopHandler().execute(step, {}, ctx)
        assert outcome.output["count"] == 1

    @pytest.mark.asyncio
    async def test_non_list_rejected(self, ctx):
        with pytest.raises(StepExecutionError, match="must be a list"):
            await LoopHandler().execute(_step("loop-over-collection"), {"items": 5}, ctx)


class TestHumanApprovalHandler:
    """Tests for human approval."""

    @pytest.mark.asyncio
    async def test_requests_task(self, ctx):
        step = _step(
            "human-approval",
            name="Review draft",
            config={"message": "Approve?", "task_type": "review"},
        )
        outcome = await HumanApprovalHandler().execute(step, {"image": "u"}, ctx)

        assert outcome.suspends
        assert outcome.task.title == "Review draft"
        assert outcome.task.description == "Approve?"
        assert outcome.task.task_type == "review"
        assert outcome.task.prompt == {"image": "u"}

    @pytest.mark.asyncio
    async def test_default_title(self, ctx):
        outcome = await HumanApprovalHandler().execute(_step("human-approval"), {}, ctx)
        assert outcome.task.title == "Action Required"


class TestHandlerRegistry:
    """Tests for the handler table."""

    def test_default_covers_every_kind(self, router):
        handlers = default_handlers(router)

        assert len(handlers) == len(StepKind)
        for kind in StepKind:
            assert kind in handlers
        assert "human-approval" in handlers

    def test_missing_handler(self):
        handlers = HandlerRegistry()

        assert handlers.get("data-transform") is None
        with pytest.raises(KeyError):
            handlers["data-transform"]
