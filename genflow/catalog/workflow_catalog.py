"""Workflow catalog - registered workflow definitions."""

from typing import Optional
import logging

from ..errors import WorkflowNotFoundError
from ..models import WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowCatalog:
    """Lookup of workflow definitions by id."""

    def __init__(self):
        self._definitions: dict[str, WorkflowDefinition] = {}

    def register(self, definition: WorkflowDefinition, replace: bool = False) -> None:
        """
        Register a workflow definition.

        Definitions are validated when a run starts, not here, so a broken
        definition can be registered and reported on.

        Raises:
            ValueError: If the id is taken and ``replace`` is False
        """
        if definition.id in self._definitions and not replace:
            raise ValueError(f"Workflow '{definition.id}' is already registered")
        self._definitions[definition.id] = definition
        logger.info(f"Registered workflow: {definition.id}")

    def get(self, definition_id: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(definition_id)

    def require(self, definition_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(definition_id)
        if definition is None:
            raise WorkflowNotFoundError(definition_id)
        return definition

    def get_all(self) -> list[WorkflowDefinition]:
        return list(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, definition_id: str) -> bool:
        return definition_id in self._definitions
