"""Task driver taxonomy.

A driver is exactly one of three sealed variants. The variant, not a stored
string, decides which pipeline phase runs it:

- RestrictionTask: gate; a deny stops the run before any action.
- ValidationTask: contributes rules for the payload.
- ActionTask: side effect, inline or dispatched to the background.

Drivers declare a stable ``key`` (what FlowTask rows store) and the
``subject`` type they apply to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from flowengine.application.tasks.context import TaskContext, TaskDefinition
from flowengine.domain.enums import TaskType
from flowengine.domain.value_objects import RestrictionResult, TransitionResult


class TaskDriver(ABC):
    """Common contract of every task driver."""

    key: ClassVar[str] = ""
    subject: ClassVar[str] = ""
    task_type: ClassVar[TaskType]

    @abstractmethod
    def definition(self) -> TaskDefinition:
        """Title/description shown in driver catalogs."""

    def form(self) -> dict[str, Any]:
        """Opaque config schema forwarded to the caller's form/validation layer."""
        return {}


class RestrictionTask(TaskDriver):
    task_type: ClassVar[TaskType] = TaskType.RESTRICTION

    @abstractmethod
    async def restriction(self, context: TaskContext) -> RestrictionResult:
        """Allow or deny the transition for this subject."""


class ValidationTask(TaskDriver):
    task_type: ClassVar[TaskType] = TaskType.VALIDATION

    @abstractmethod
    def rules(self, context: TaskContext) -> dict[str, Any]:
        """Rules keyed by payload attribute."""

    def messages(self, context: TaskContext) -> dict[str, str]:
        return {}

    def attributes(self, context: TaskContext) -> dict[str, str]:
        return {}


class ActionTask(TaskDriver):
    task_type: ClassVar[TaskType] = TaskType.ACTION

    def runs_in_background(self) -> bool:
        """Whether the runner dispatches this task instead of awaiting it."""
        return False

    def background_options(self, context: TaskContext) -> dict[str, Any]:
        """Overrides for the dispatch options (label, timeout, ...)."""
        return {}

    @abstractmethod
    async def handle(
        self, context: TaskContext
    ) -> TransitionResult | dict[str, Any] | None:
        """Perform the action.

        Return a TransitionResult to merge into the run's result, a dict to
        merge into its data, or None.
        """


class RunInBackground:
    """Mixin for ActionTask subclasses that always run in the background.

    Put it before ActionTask in the bases: ``class Notify(RunInBackground, ActionTask)``.
    """

    def runs_in_background(self) -> bool:
        return True


TASK_VARIANTS: tuple[type[TaskDriver], ...] = (RestrictionTask, ValidationTask, ActionTask)
