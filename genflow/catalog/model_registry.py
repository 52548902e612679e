"""Model registry - read-only catalog of generation models."""

from typing import Optional, Iterable
import logging

from ..errors import UnknownModelError
from ..models import ModelSpec, ModelType

logger = logging.getLogger(__name__)


class ModelRegistry:
    """
    Catalog mapping model ids to ModelSpec.

    Populated once at startup (from YAML or code) and read by the router and
    workflow validation.
    """

    def __init__(self, models: Optional[Iterable[ModelSpec]] = None):
        self._models: dict[str, ModelSpec] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: ModelSpec) -> None:
        """
        Register a model.

        Raises:
            ValueError: If a model with the same id is already registered
        """
        if model.id in self._models:
            raise ValueError(f"Model '{model.id}' is already registered")
        self._models[model.id] = model
        logger.debug(f"Registered model: {model.id}")

    def get(self, model_id: str) -> Optional[ModelSpec]:
        return self._models.get(model_id)

    def require(self, model_id: str) -> ModelSpec:
        """Get a model or raise UnknownModelError."""
        model = self._models.get(model_id)
        if model is None:
            raise UnknownModelError(model_id)
        return model

    def get_all(self) -> list[ModelSpec]:
        return list(self._models.values())

    def get_by_type(self, model_type: ModelType | str) -> list[ModelSpec]:
        model_type = ModelType(model_type)
        return [m for m in self._models.values() if m.type == model_type]

    def get_for_provider(self, provider_id: str) -> list[ModelSpec]:
        """Models that the given provider can serve."""
        return [m for m in self._models.values() if provider_id in m.providers]

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    def __iter__(self):
        return iter(self._models.values())
