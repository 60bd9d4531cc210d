"""Flow transition repository."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.domain.entities import FlowTransitionEntity
from flowengine.infrastructure.persistence.models.flow import FlowTransition
from flowengine.infrastructure.persistence.repositories.base import BaseRepository


def _transition_to_entity(t: FlowTransition) -> FlowTransitionEntity:
    return FlowTransitionEntity(
        id=t.id,
        flow_id=t.flow_id,
        from_state_id=t.from_state_id,
        to_state_id=t.to_state_id,
        slug=t.slug,
    )


class FlowTransitionRepository(BaseRepository[FlowTransition]):
    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, FlowTransition)

    async def _list(self, *criteria) -> list[FlowTransitionEntity]:
        result = await self.db.execute(
            select(FlowTransition)
            .where(*criteria)
            .order_by(FlowTransition.created_at.asc(), FlowTransition.id.asc())
        )
        return [_transition_to_entity(t) for t in result.scalars().all()]

    async def get_by_id(self, transition_id: str) -> FlowTransitionEntity | None:
        row = await self._get_row(transition_id)
        return _transition_to_entity(row) if row else None

    async def get_by_key(self, key: str) -> FlowTransitionEntity | None:
        """Look up by id first, then by slug (newest first when flows share a slug)."""
        found = await self.get_by_id(key)
        if found is not None:
            return found
        result = await self.db.execute(
            select(FlowTransition)
            .where(FlowTransition.slug == key)
            .order_by(FlowTransition.created_at.desc(), FlowTransition.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _transition_to_entity(row) if row else None

    async def list_for_flow(self, flow_id: str) -> list[FlowTransitionEntity]:
        return await self._list(FlowTransition.flow_id == flow_id)

    async def list_generic_outputs(
        self, flow_id: str, state_id: str
    ) -> list[FlowTransitionEntity]:
        return await self._list(
            FlowTransition.flow_id == flow_id,
            FlowTransition.from_state_id == state_id,
            FlowTransition.to_state_id.is_(None),
        )

    async def list_generic_inputs(
        self, flow_id: str, state_id: str
    ) -> list[FlowTransitionEntity]:
        return await self._list(
            FlowTransition.flow_id == flow_id,
            FlowTransition.from_state_id.is_(None),
            FlowTransition.to_state_id == state_id,
        )

    async def slug_exists(
        self, flow_id: str, slug: str, *, exclude_transition_id: str | None = None
    ) -> bool:
        q = select(FlowTransition.id).where(
            FlowTransition.flow_id == flow_id, FlowTransition.slug == slug
        )
        if exclude_transition_id is not None:
            q = q.where(FlowTransition.id != exclude_transition_id)
        result = await self.db.execute(q.limit(1))
        return result.scalar_one_or_none() is not None

    async def create_transition(
        self,
        flow_id: str,
        *,
        from_state_id: str | None,
        to_state_id: str | None,
        slug: str | None,
    ) -> FlowTransitionEntity:
        row = await self.create(
            FlowTransition(
                flow_id=flow_id,
                from_state_id=from_state_id,
                to_state_id=to_state_id,
                slug=slug,
            )
        )
        return _transition_to_entity(row)

    async def update_transition(
        self,
        transition_id: str,
        *,
        from_state_id: str | None,
        to_state_id: str | None,
        slug: str | None,
    ) -> FlowTransitionEntity | None:
        row = await self._get_row(transition_id)
        if row is None:
            return None
        row = await self.update(
            row, from_state_id=from_state_id, to_state_id=to_state_id, slug=slug
        )
        return _transition_to_entity(row)

    async def delete_transition(self, transition_id: str) -> bool:
        row = await self._get_row(transition_id)
        if row is None:
            return False
        await self.delete(row)
        return True
