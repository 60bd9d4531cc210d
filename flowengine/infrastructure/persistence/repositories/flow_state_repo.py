"""Flow state repository."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.domain.entities import FlowStateEntity
from flowengine.domain.enums import FlowStateType
from flowengine.infrastructure.persistence.models.flow import FlowState
from flowengine.infrastructure.persistence.repositories.base import BaseRepository


def _state_to_entity(s: FlowState) -> FlowStateEntity:
    return FlowStateEntity(
        id=s.id,
        flow_id=s.flow_id,
        type=FlowStateType(s.type),
        status=s.status,
        config=dict(s.config or {}),
    )


class FlowStateRepository(BaseRepository[FlowState]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, FlowState)

    async def get_by_id(self, state_id: str) -> FlowStateEntity | None:
        row = await self._get_row(state_id)
        return _state_to_entity(row) if row else None

    async def list_for_flow(self, flow_id: str) -> list[FlowStateEntity]:
        result = await self.db.execute(
            select(FlowState)
            .where(FlowState.flow_id == flow_id)
            .order_by(FlowState.created_at.asc(), FlowState.id.asc())
        )
        return [_state_to_entity(s) for s in result.scalars().all()]

    async def get_start_state(self, flow_id: str) -> FlowStateEntity | None:
        result = await self.db.execute(
            select(FlowState)
            .where(
                FlowState.flow_id == flow_id,
                FlowState.type == FlowStateType.START.value,
            )
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _state_to_entity(row) if row else None

    async def create_state(
        self,
        flow_id: str,
        *,
        type: FlowStateType,
        status: str | None,
        config: dict[str, Any],
    ) -> FlowStateEntity:
        row = await self.create(
            FlowState(flow_id=flow_id, type=FlowStateType(type).value, status=status, config=config)
        )
        return _state_to_entity(row)

    async def update_state(
        self,
        state_id: str,
        *,
        status: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> FlowStateEntity | None:
        """Update status and/or config; None leaves a field unchanged."""
        row = await self._get_row(state_id)
        if row is None:
            return None
        changes: dict[str, Any] = {}
        if status is not None:
            changes["status"] = status
        if config is not None:
            changes["config"] = dict(config)
        if changes:
            row = await self.update(row, **changes)
        return _state_to_entity(row)

    async def delete_state(self, state_id: str) -> bool:
        row = await self._get_row(state_id)
        if row is None:
            return False
        await self.delete(row)
        return True
