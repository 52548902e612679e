"""Exception hierarchy for genflow."""

from typing import Any, Optional


class GenflowError(Exception):
    """Base class for all genflow errors."""


# -------------------------------------------------------------------------
# Provider / routing errors
# -------------------------------------------------------------------------

class ProviderError(GenflowError):
    """A provider could not serve a request."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"[{provider_id}] {message}")
        self.provider_id = provider_id
        self.message = message


class ProviderUnavailableError(ProviderError):
    """Provider is not configured, not credentialed, or lacks a capability."""


class ProviderRequestError(ProviderError):
    """The upstream call failed (network error, 4xx, 5xx)."""

    def __init__(self, provider_id: str, message: str, status_code: Optional[int] = None):
        super().__init__(provider_id, message)
        self.status_code = status_code


class UnknownModelError(GenflowError):
    """The model id is not in the registry."""

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class UnsupportedCapabilityError(GenflowError):
    """The model does not support the requested capability."""

    def __init__(self, model_id: str, capability: str):
        super().__init__(f"Model '{model_id}' does not support capability '{capability}'")
        self.model_id = model_id
        self.capability = capability


class AllProvidersFailedError(GenflowError):
    """Every candidate provider for a model was skipped or failed."""

    def __init__(
        self,
        model_id: str,
        attempted_providers: list[str],
        last_error: Optional[BaseException] = None,
        attempts: Optional[list[Any]] = None,
    ):
        detail = str(last_error) if last_error else "no eligible providers"
        super().__init__(
            f"All providers failed for model {model_id} "
            f"(attempted: {', '.join(attempted_providers) or 'none'}): {detail}"
        )
        self.model_id = model_id
        self.attempted_providers = attempted_providers
        self.last_error = last_error
        self.attempts = attempts or []


# -------------------------------------------------------------------------
# Workflow errors
# -------------------------------------------------------------------------

class WorkflowValidationError(GenflowError):
    """A workflow definition or its inputs are invalid."""

    def __init__(self, errors: list[str]):
        super().__init__("Workflow validation failed: " + "; ".join(errors))
        self.errors = errors


class WorkflowNotFoundError(GenflowError):
    """No workflow definition with the given id."""

    def __init__(self, definition_id: str):
        super().__init__(f"Workflow not found: {definition_id}")
        self.definition_id = definition_id


class StepExecutionError(GenflowError):
    """A dispatched step failed."""

    def __init__(self, step_id: str, message: str):
        super().__init__(f"Step '{step_id}' failed: {message}")
        self.step_id = step_id
        self.message = message


class InsufficientCreditsError(StepExecutionError):
    """Reserving credits for a step would exceed the run budget."""

    retryable = False

    def __init__(self, step_id: str, requested: float, available: float):
        super().__init__(
            step_id,
            f"insufficient credits: requested {requested:g}, available {available:g}",
        )
        self.requested = requested
        self.available = available


# -------------------------------------------------------------------------
# Run / task errors
# -------------------------------------------------------------------------

class RunNotFoundError(GenflowError):
    """No run with the given id."""

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class RunStateError(GenflowError):
    """The run is not in a state that allows the requested action."""

    def __init__(self, run_id: str, status: str, action: str):
        super().__init__(f"Cannot {action} run {run_id} in status '{status}'")
        self.run_id = run_id
        self.status = status
        self.action = action


class RunBusyError(GenflowError):
    """Another caller holds the run lease. Safe to retry."""

    retryable = True

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} is busy")
        self.run_id = run_id


class TaskNotFoundError(GenflowError):
    """No task with the given id."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TaskAlreadyCompletedError(GenflowError):
    """The task was already completed."""

    def __init__(self, task_id: str):
        super().__init__(f"Task already completed: {task_id}")
        self.task_id = task_id


class PersistenceError(GenflowError):
    """The durable store failed."""
