"""Service layer: task hierarchy and scratchpad store."""

from agentpad.services.scratchpad_service import (
    ScratchpadError,
    ScratchpadExistsError,
    ScratchpadIdExhaustedError,
    ScratchpadNotFoundError,
    ScratchpadService,
    ScratchpadValidationError,
)
from agentpad.services.task_hierarchy_service import (
    TaskHierarchyError,
    TaskHierarchyService,
    TaskValidationError,
)
from agentpad.services.tree_walk import TaskForest

__all__ = [
    "ScratchpadError",
    "ScratchpadExistsError",
    "ScratchpadIdExhaustedError",
    "ScratchpadNotFoundError",
    "ScratchpadService",
    "ScratchpadValidationError",
    "TaskForest",
    "TaskHierarchyError",
    "TaskHierarchyService",
    "TaskValidationError",
]
