"""Flow task operations: attach registered drivers to transitions."""

from __future__ import annotations

from typing import Any

from flowengine.application.dtos.flow import FlowTaskCreate, FlowTaskUpdate
from flowengine.application.interfaces.repositories import (
    IFlowRepository,
    IFlowTaskRepository,
    IFlowTransitionRepository,
)
from flowengine.application.services.task_registry import TaskRegistry
from flowengine.domain.entities import FlowTaskEntity
from flowengine.domain.exceptions import (
    ResourceNotFoundException,
    TaskOrderingConflictException,
)


class FlowTaskManager:
    """Create, update and delete tasks; list the drivers available to a subject type."""

    def __init__(
        self,
        flow_repo: IFlowRepository,
        transition_repo: IFlowTransitionRepository,
        task_repo: IFlowTaskRepository,
        registry: TaskRegistry,
    ) -> None:
        self._flow_repo = flow_repo
        self._transition_repo = transition_repo
        self._task_repo = task_repo
        self._registry = registry

    async def get_task(self, task_id: str) -> FlowTaskEntity:
        task = await self._task_repo.get_by_id(task_id)
        if task is None:
            raise ResourceNotFoundException("flow_task", task_id)
        return task

    async def create_task(self, transition_id: str, data: FlowTaskCreate) -> FlowTaskEntity:
        """Attach a driver to a transition.

        The driver must be registered for the flow's subject type. Without
        an explicit ordering the task goes last (max + 1).

        Raises:
            ResourceNotFoundException: Unknown transition or flow.
            DriverUnresolvableException: Driver not registered for the subject type.
            TaskOrderingConflictException: Ordering already used on the transition.
        """
        subject_type = await self._subject_type_of(transition_id)
        self._registry.resolve(data.driver, subject_type)
        ordering = data.ordering
        if ordering is None:
            current_max = await self._task_repo.max_ordering(transition_id)
            ordering = (current_max or 0) + 1
        elif await self._task_repo.ordering_taken(transition_id, ordering):
            raise TaskOrderingConflictException(transition_id, ordering)
        return await self._task_repo.create_task(
            transition_id,
            driver=data.driver,
            config=dict(data.config),
            ordering=ordering,
            status=data.status,
        )

    async def update_task(self, task_id: str, data: FlowTaskUpdate) -> FlowTaskEntity:
        task = await self.get_task(task_id)
        changes: dict[str, Any] = {}
        if data.config is not None:
            changes["config"] = dict(data.config)
        if data.status is not None:
            changes["status"] = data.status
        if data.ordering is not None and data.ordering != task.ordering:
            if await self._task_repo.ordering_taken(
                task.flow_transition_id, data.ordering, exclude_task_id=task_id
            ):
                raise TaskOrderingConflictException(task.flow_transition_id, data.ordering)
            changes["ordering"] = data.ordering
        if not changes:
            return task
        updated = await self._task_repo.update_task(task_id, **changes)
        if updated is None:
            raise ResourceNotFoundException("flow_task", task_id)
        return updated

    async def delete_task(self, task_id: str) -> None:
        if not await self._task_repo.delete_task(task_id):
            raise ResourceNotFoundException("flow_task", task_id)

    async def list_tasks(self, transition_id: str) -> list[FlowTaskEntity]:
        return await self._task_repo.list_for_transition(transition_id)

    def drivers(self, subject_type: str) -> list[dict[str, Any]]:
        """Catalog of drivers registered for a subject type."""
        return self._registry.catalog(subject_type)

    def details(self, key: str) -> dict[str, Any]:
        """Definition and config form of one driver."""
        driver = self._registry.resolve(key)
        task_type = self._registry.task_type_of(key)
        return {
            "key": driver.key,
            "subject": driver.subject,
            "type": task_type.value if task_type else None,
            "definition": driver.definition().to_dict(),
            "form": driver.form(),
        }

    async def _subject_type_of(self, transition_id: str) -> str:
        transition = await self._transition_repo.get_by_id(transition_id)
        if transition is None:
            raise ResourceNotFoundException("flow_transition", transition_id)
        flow = await self._flow_repo.get_by_id(transition.flow_id)
        if flow is None:
            raise ResourceNotFoundException("flow", transition.flow_id)
        return flow.subject_type
