"""Enumerations for genflow."""

from enum import Enum


class ModelType(str, Enum):
    """What kind of output a catalog model produces."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    SPEECH = "speech"
    EMBEDDING = "embedding"
    UPSCALE = "upscale"


class Capability(str, Enum):
    """An operation a provider can perform for a model."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    SPEECH = "speech"
    EMBEDDING = "embedding"
    UPSCALE_IMAGE = "upscale-image"
    UPSCALE_VIDEO = "upscale-video"


MODEL_TYPE_CAPABILITIES: dict[ModelType, frozenset[Capability]] = {
    ModelType.TEXT: frozenset({Capability.TEXT}),
    ModelType.IMAGE: frozenset({Capability.IMAGE}),
    ModelType.VIDEO: frozenset({Capability.VIDEO}),
    ModelType.SPEECH: frozenset({Capability.SPEECH}),
    ModelType.EMBEDDING: frozenset({Capability.EMBEDDING}),
    ModelType.UPSCALE: frozenset({Capability.UPSCALE_IMAGE, Capability.UPSCALE_VIDEO}),
}


class HealthStatus(str, Enum):
    """Tracked health of a provider."""

    HEALTHY = "healthy"
    """Last call succeeded (or never called)."""

    DEGRADED = "degraded"
    """Recent failures, still eligible for routing."""

    UNAVAILABLE = "unavailable"
    """Failure threshold crossed; skipped until the cooldown elapses."""


class StepKind(str, Enum):
    """Closed set of workflow step kinds."""

    TEXT_GENERATION = "text-generation"
    IMAGE_GENERATION = "image-generation"
    VIDEO_GENERATION = "video-generation"
    SPEECH_SYNTHESIS = "speech-synthesis"
    EMBEDDING = "embedding"
    DATA_TRANSFORM = "data-transform"
    CONDITIONAL_BRANCH = "conditional-branch"
    LOOP_OVER_COLLECTION = "loop-over-collection"
    HUMAN_APPROVAL = "human-approval"


GENERATION_CAPABILITIES: dict[StepKind, Capability] = {
    StepKind.TEXT_GENERATION: Capability.TEXT,
    StepKind.IMAGE_GENERATION: Capability.IMAGE,
    StepKind.VIDEO_GENERATION: Capability.VIDEO,
    StepKind.SPEECH_SYNTHESIS: Capability.SPEECH,
    StepKind.EMBEDDING: Capability.EMBEDDING,
}
"""Generation step kinds and the router capability each one requests."""


class ComparisonOperator(str, Enum):
    """Operators available to step conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    IN = "in"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EXISTS = "exists"
    TRUTHY = "truthy"


class RunStatus(str, Enum):
    """Status of a workflow run."""

    PENDING = "pending"
    """Run record created, execution not yet started."""

    RUNNING = "running"
    """Run is being advanced."""

    PAUSED = "paused"
    """Run is waiting on a human task."""

    COMPLETED = "completed"
    """Every step completed or was skipped."""

    FAILED = "failed"
    """A step failed after exhausting its retries."""

    CANCELLED = "cancelled"
    """Run was cancelled by the caller."""


TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepStatus(str, Enum):
    """Status of a step within a run."""

    PENDING = "pending"
    """Not executed yet (or awaiting its human task)."""

    SKIPPED = "skipped"
    """Condition not met, or every dependency was skipped."""

    COMPLETED = "completed"
    """Step produced its output."""

    FAILED = "failed"
    """Step failed after its retries."""


class TaskStatus(str, Enum):
    """Status of a human task."""

    PENDING = "pending"
    COMPLETED = "completed"
