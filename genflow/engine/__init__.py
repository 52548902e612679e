"""Workflow engine for genflow."""

from .credits import CreditLedger, CreditReservation
from .executor import WorkflowExecutor
from .graph import execution_order, ready_steps, validate_definition, validate_inputs
from .handlers import (
    HandlerRegistry,
    StepContext,
    StepHandler,
    StepOutcome,
    TaskRequest,
    default_handlers,
)
from .leases import RunLeaseManager
from .orchestrator import Orchestrator

__all__ = [
    "CreditLedger",
    "CreditReservation",
    "WorkflowExecutor",
    "execution_order",
    "ready_steps",
    "validate_definition",
    "validate_inputs",
    "HandlerRegistry",
    "StepContext",
    "StepHandler",
    "StepOutcome",
    "TaskRequest",
    "default_handlers",
    "RunLeaseManager",
    "Orchestrator",
]
