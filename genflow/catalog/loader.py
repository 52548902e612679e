"""Load models and workflow definitions from YAML files."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..models import ModelSpec, WorkflowDefinition
from .model_registry import ModelRegistry
from .workflow_catalog import WorkflowCatalog

logger = logging.getLogger(__name__)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_models_from_yaml(config_path: Path) -> ModelRegistry:
    """
    Load the model registry from a YAML file.

    Expected format:

    ```yaml
    models:
      - id: flux-pro-1.1
        name: FLUX 1.1 Pro
        type: image
        base_cost: 0.04
        default_provider: fal
        fallback_order: [replicate, selfhosted]
        providers:
          fal:
            endpoint: fal-ai/flux-pro/v1.1
            cost: 0.04
          replicate:
            endpoint: black-forest-labs/flux-pro
            cost: 0.05
          selfhosted:
            checkpoint: flux1-pro-v1.1.safetensors
            cost: 0
        price_multipliers:
          num_images: {"2": 2, "4": 4}
    ```

    Invalid entries are logged and skipped.

    Args:
        config_path: Path to the YAML file

    Returns:
        A populated ModelRegistry (empty if the file is missing)
    """
    registry = ModelRegistry()

    if not config_path.exists():
        logger.warning(f"Model config file not found: {config_path}")
        return registry

    for entry in _read_yaml(config_path).get("models") or []:
        try:
            registry.register(ModelSpec.model_validate(entry))
        except (ValidationError, ValueError) as e:
            logger.error(f"Error parsing model config {entry.get('id', '?')}: {e}")

    logger.info(f"Loaded {len(registry)} models from {config_path}")
    return registry


def load_workflows_from_yaml(config_path: Path, catalog: WorkflowCatalog) -> list[str]:
    """
    Load workflow definitions from a YAML file into a catalog.

    Expected format:

    ```yaml
    workflows:
      - id: product-shot
        name: Product Shot
        inputs:
          product: {required: true}
        steps:
          - id: draft
            kind: image-generation
            model: flux-schnell
            inputs: {prompt: "Studio photo of ${input.product}"}
          - id: review
            kind: human-approval
            depends_on: [draft]
            inputs: {image: "${draft.assets}"}
          - id: final
            kind: image-generation
            model: flux-pro-1.1
            depends_on: [review]
            condition: {step: review, path: approved, operator: equals, value: true}
            inputs: {prompt: "Studio photo of ${input.product}"}
        outputs:
          image: "${final.assets}"
    ```

    Args:
        config_path: Path to the YAML file
        catalog: Catalog to populate

    Returns:
        Ids of the loaded workflows
    """
    if not config_path.exists():
        logger.warning(f"Workflow config file not found: {config_path}")
        return []

    loaded = []
    for entry in _read_yaml(config_path).get("workflows") or []:
        try:
            definition = WorkflowDefinition.model_validate(entry)
            catalog.register(definition)
            loaded.append(definition.id)
        except (ValidationError, ValueError) as e:
            logger.error(f"Error parsing workflow {entry.get('id', '?')}: {e}")

    logger.info(f"Loaded {len(loaded)} workflows from {config_path}")
    return loaded
