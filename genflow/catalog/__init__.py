"""Model registry and workflow catalog."""

from .model_registry import ModelRegistry
from .workflow_catalog import WorkflowCatalog
from .loader import load_models_from_yaml, load_workflows_from_yaml

__all__ = [
    "ModelRegistry",
    "WorkflowCatalog",
    "load_models_from_yaml",
    "load_workflows_from_yaml",
]
