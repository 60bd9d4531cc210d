"""Flow instance repository: where each subject currently is."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.domain.entities import FlowInstanceEntity
from flowengine.infrastructure.persistence.models.flow import FlowInstance
from flowengine.infrastructure.persistence.repositories.base import BaseRepository
from flowengine.shared.utils.datetime import ensure_utc


def _instance_to_entity(i: FlowInstance) -> FlowInstanceEntity:
    return FlowInstanceEntity(
        id=i.id,
        subject_type=i.subject_type,
        subject_id=i.subject_id,
        flow_transition_id=i.flow_transition_id,
        actor_type=i.actor_type,
        actor_id=i.actor_id,
        started_at=ensure_utc(i.started_at),
        completed_at=ensure_utc(i.completed_at),
    )


class FlowInstanceRepository(BaseRepository[FlowInstance]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, FlowInstance)

    async def _first(self, q) -> FlowInstanceEntity | None:
        result = await self.db.execute(
            q.order_by(FlowInstance.started_at.desc(), FlowInstance.id.asc()).limit(1)
        )
        row = result.scalar_one_or_none()
        return _instance_to_entity(row) if row else None

    async def get_active_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowInstanceEntity | None:
        return await self._first(
            select(FlowInstance).where(
                FlowInstance.subject_type == subject_type,
                FlowInstance.subject_id == subject_id,
                FlowInstance.completed_at.is_(None),
            )
        )

    async def get_latest_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowInstanceEntity | None:
        return await self._first(
            select(FlowInstance).where(
                FlowInstance.subject_type == subject_type,
                FlowInstance.subject_id == subject_id,
            )
        )

    async def get_active_for_transition(
        self, transition_id: str
    ) -> FlowInstanceEntity | None:
        return await self._first(
            select(FlowInstance).where(
                FlowInstance.flow_transition_id == transition_id,
                FlowInstance.completed_at.is_(None),
            )
        )

    async def create_instance(
        self,
        *,
        subject_type: str,
        subject_id: str,
        flow_transition_id: str,
        actor_type: str | None,
        actor_id: str | None,
        started_at: datetime,
        completed_at: datetime | None,
    ) -> FlowInstanceEntity:
        row = await self.create(
            FlowInstance(
                subject_type=subject_type,
                subject_id=subject_id,
                flow_transition_id=flow_transition_id,
                actor_type=actor_type,
                actor_id=actor_id,
                started_at=started_at,
                completed_at=completed_at,
            )
        )
        return _instance_to_entity(row)

    async def update_instance(
        self,
        instance_id: str,
        *,
        flow_transition_id: str,
        actor_type: str | None,
        actor_id: str | None,
        completed_at: datetime | None,
    ) -> FlowInstanceEntity | None:
        row = await self._get_row(instance_id)
        if row is None:
            return None
        row = await self.update(
            row,
            flow_transition_id=flow_transition_id,
            actor_type=actor_type,
            actor_id=actor_id,
            completed_at=completed_at,
        )
        return _instance_to_entity(row)
