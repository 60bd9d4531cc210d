"""Flow task repository."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.domain.entities import FlowTaskEntity
from flowengine.infrastructure.persistence.models.flow import FlowTask
from flowengine.infrastructure.persistence.repositories.base import BaseRepository


def _task_to_entity(t: FlowTask) -> FlowTaskEntity:
    return FlowTaskEntity(
        id=t.id,
        flow_transition_id=t.flow_transition_id,
        driver=t.driver,
        config=dict(t.config or {}),
        ordering=t.ordering,
        status=t.status,
    )


class FlowTaskRepository(BaseRepository[FlowTask]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, FlowTask)

    async def get_by_id(self, task_id: str) -> FlowTaskEntity | None:
        row = await self._get_row(task_id)
        return _task_to_entity(row) if row else None

    async def list_for_transition(
        self, transition_id: str, *, enabled_only: bool = False
    ) -> list[FlowTaskEntity]:
        """Tasks of a transition by ordering ascending."""
        q = select(FlowTask).where(FlowTask.flow_transition_id == transition_id)
        if enabled_only:
            q = q.where(FlowTask.status.is_(True))
        result = await self.db.execute(q.order_by(FlowTask.ordering.asc()))
        return [_task_to_entity(t) for t in result.scalars().all()]

    async def max_ordering(self, transition_id: str) -> int | None:
        result = await self.db.execute(
            select(func.max(FlowTask.ordering)).where(
                FlowTask.flow_transition_id == transition_id
            )
        )
        return result.scalar_one_or_none()

    async def ordering_taken(
        self, transition_id: str, ordering: int, *, exclude_task_id: str | None = None
    ) -> bool:
        q = select(FlowTask.id).where(
            FlowTask.flow_transition_id == transition_id, FlowTask.ordering == ordering
        )
        if exclude_task_id is not None:
            q = q.where(FlowTask.id != exclude_task_id)
        result = await self.db.execute(q.limit(1))
        return result.scalar_one_or_none() is not None

    async def create_task(
        self,
        transition_id: str,
        *,
        driver: str,
        config: dict[str, Any],
        ordering: int,
        status: bool,
    ) -> FlowTaskEntity:
        row = await self.create(
            FlowTask(
                flow_transition_id=transition_id,
                driver=driver,
                config=config,
                ordering=ordering,
                status=status,
            )
        )
        return _task_to_entity(row)

    async def update_task(self, task_id: str, **changes: Any) -> FlowTaskEntity | None:
        row = await self._get_row(task_id)
        if row is None:
            return None
        row = await self.update(row, **changes)
        return _task_to_entity(row)

    async def delete_task(self, task_id: str) -> bool:
        row = await self._get_row(task_id)
        if row is None:
            return False
        await self.delete(row)
        return True
