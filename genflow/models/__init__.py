"""Core data models for genflow."""

from .enums import (
    Capability,
    ComparisonOperator,
    GENERATION_CAPABILITIES,
    HealthStatus,
    ModelType,
    RunStatus,
    StepKind,
    StepStatus,
    TaskStatus,
    TERMINAL_RUN_STATUSES,
)
from .generation import GenerationOutput, GenerationRequest, ProviderAttempt, RouteResult
from .health import ProviderHealth
from .model import ModelSpec, ProviderConfig
from .run import RunError, StepState, WorkflowRun
from .task import WorkflowTask
from .workflow import InputField, RetryPolicy, StepCondition, StepDefinition, WorkflowDefinition

__all__ = [
    "Capability",
    "ComparisonOperator",
    "GENERATION_CAPABILITIES",
    "HealthStatus",
    "ModelType",
    "RunStatus",
    "StepKind",
    "StepStatus",
    "TaskStatus",
    "TERMINAL_RUN_STATUSES",
    "GenerationOutput",
    "GenerationRequest",
    "ProviderAttempt",
    "RouteResult",
    "ProviderHealth",
    "ModelSpec",
    "ProviderConfig",
    "RunError",
    "StepState",
    "WorkflowRun",
    "WorkflowTask",
    "InputField",
    "RetryPolicy",
    "StepCondition",
    "StepDefinition",
    "WorkflowDefinition",
]
