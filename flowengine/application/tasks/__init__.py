"""Task drivers: the restriction / validation / action variants and their context."""

from flowengine.application.tasks.base import (
    ActionTask,
    RestrictionTask,
    RunInBackground,
    TaskDriver,
    ValidationTask,
)
from flowengine.application.tasks.context import (
    TaskContext,
    TaskDefinition,
    ValidationBundle,
)

__all__ = [
    "ActionTask",
    "RestrictionTask",
    "RunInBackground",
    "TaskContext",
    "TaskDefinition",
    "TaskDriver",
    "ValidationBundle",
    "ValidationTask",
]
