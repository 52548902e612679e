"""Shared fixtures: scripted providers, registries, stores and an executor."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from genflow.catalog import ModelRegistry, WorkflowCatalog
from genflow.config import ExecutorSettings
from genflow.engine import WorkflowExecutor, default_handlers
from genflow.errors import ProviderRequestError
from genflow.models import Capability, GenerationOutput, ModelSpec
from genflow.providers import Provider, ProviderRegistry
from genflow.routing import BackoffPolicy, ProviderHealthTracker, ProviderRouter
from genflow.storage import InMemoryWorkflowStore, SQLiteWorkflowStore


# -------------------------------------------------------------------------
# Test Providers
# -------------------------------------------------------------------------

class FakeProvider(Provider):
    """
    Provider that records its calls and fails on demand.

    fail_times: number of calls that fail before calls succeed (-1 = always)
    """

    display_name = "Fake"

    def __init__(
        self,
        provider_id: str,
        fail_times: int = 0,
        available: bool = True,
        text: str = "generated text",
        embedding: Optional[list[float]] = None,
    ):
        super().__init__()
        self.id = provider_id
        self.fail_times = fail_times
        self.available = available
        self.text = text
        self.embedding = embedding or [0.1, 0.2, 0.3]
        self.calls: list[tuple[str, Capability, str]] = []
        self.closed = False

    async def is_available(self) -> bool:
        return self.available

    async def _serve(self, model, capability, request) -> GenerationOutput:
        self.calls.append((model.id, capability, request.prompt))

        if self.fail_times != 0:
            if self.fail_times > 0:
                self.fail_times -= 1
            raise ProviderRequestError(self.id, "upstream error", status_code=503)

        metadata = {}
        if capability == Capability.TEXT:
            metadata["text"] = self.text
        if capability == Capability.EMBEDDING:
            metadata["embedding"] = self.embedding

        asset = f"https://{self.id}.test/{model.id}/{len(self.calls)}"
        return GenerationOutput(assets=[asset], metadata=metadata)

    async def generate_text(self, model, config, request):
        return await self._serve(model, Capability.TEXT, request)

    async def generate_image(self, model, config, request):
        return await self._serve(model, Capability.IMAGE, request)

    async def generate_video(self, model, config, request):
        return await self._serve(model, Capability.VIDEO, request)

    async def synthesize_speech(self, model, config, request):
        return await self._serve(model, Capability.SPEECH, request)

    async def embed(self, model, config, request):
        return await self._serve(model, Capability.EMBEDDING, request)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Controllable clock for the health tracker."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def fake_provider():
    """The FakeProvider class, for tests that build their own."""
    return FakeProvider


@pytest.fixture
def models():
    """A small registry covering every generation capability."""
    return ModelRegistry([
        ModelSpec(
            id="img",
            name="Image Model",
            type="image",
            base_cost=0.5,
            default_provider="a",
            fallback_order=["b", "c", "a"],
            providers={
                "a": {"endpoint": "img/a", "cost": 1.0},
                "b": {"endpoint": "img/b", "cost": 2.0},
                "c": {"endpoint": "img/c"},
            },
            price_multipliers={"num_images": {"2": 2, "4": 4}},
        ),
        ModelSpec(
            id="llm",
            type="text",
            base_cost=0.1,
            default_provider="a",
            fallback_order=["b"],
            providers={"a": {"endpoint": "llm/a"}, "b": {"endpoint": "llm/b"}},
        ),
        ModelSpec(
            id="vid",
            type="video",
            base_cost=3.0,
            default_provider="b",
            providers={"b": {"endpoint": "vid/b"}},
        ),
        ModelSpec(
            id="voice",
            type="speech",
            base_cost=0.2,
            default_provider="a",
            providers={"a": {"endpoint": "voice/a"}},
        ),
        ModelSpec(
            id="emb",
            type="embedding",
            base_cost=0.01,
            default_provider="a",
            providers={"a": {"endpoint": "emb/a"}},
        ),
        ModelSpec(
            id="upscaler",
            type="upscale",
            base_cost=0.2,
            default_provider="a",
            providers={"a": {"endpoint": "up/a"}},
        ),
    ])


@pytest.fixture
def providers():
    """Registry with three healthy fake providers: a, b, c."""
    registry = ProviderRegistry()
    for provider_id in ("a", "b", "c"):
        registry.register(FakeProvider(provider_id))
    return registry


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    """Health tracker with a 3-failure threshold and a 60s base cooldown."""
    policy = BackoffPolicy(threshold=3, base_seconds=60, factor=2, max_seconds=600)
    return ProviderHealthTracker(policy=policy, clock=clock)


@pytest.fixture
def router(models, providers, tracker):
    return ProviderRouter(models, providers, tracker)


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
async def sqlite_store():
    """SQLite store on a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLiteWorkflowStore(Path(tmpdir) / "test.db")
        await store.connect()
        yield store
        await store.close()


@pytest.fixture
def catalog():
    return WorkflowCatalog()


@pytest.fixture
def sleeps():
    """Delays requested by the executor's retry loop."""
    return []


@pytest.fixture
def executor(store, catalog, models, router, sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return WorkflowExecutor(
        store,
        catalog,
        models,
        default_handlers(router),
        settings=ExecutorSettings(lease_timeout_seconds=1),
        sleep=fake_sleep,
    )
