"""Flow repository. Returns FlowEntity; soft-deleted rows are hidden by default."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.domain.entities import FlowEntity
from flowengine.infrastructure.persistence.models.flow import Flow
from flowengine.infrastructure.persistence.repositories.base import BaseRepository
from flowengine.shared.utils.datetime import ensure_utc, utc_now


def flow_to_entity(f: Flow) -> FlowEntity:
    """Map Flow ORM to FlowEntity."""
    return FlowEntity(
        id=f.id,
        subject_type=f.subject_type,
        subject_scope=f.subject_scope,
        version=f.version,
        is_default=f.is_default,
        status=f.status,
        channel=f.channel,
        environment=f.environment,
        ordering=f.ordering,
        rollout_pct=f.rollout_pct,
        active_from=ensure_utc(f.active_from),
        active_to=ensure_utc(f.active_to),
        deleted_at=ensure_utc(f.deleted_at),
    )


def _utc_fields(values: dict[str, Any]) -> dict[str, Any]:
    """Store datetimes as UTC so window comparisons work on every backend."""
    return {k: ensure_utc(v) if isinstance(v, datetime) else v for k, v in values.items()}


def _scope_clause(subject_scope: str | None) -> Any:
    if subject_scope is None:
        return Flow.subject_scope.is_(None)
    return Flow.subject_scope == subject_scope


class FlowRepository(BaseRepository[Flow]):
    """Flow definitions."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, Flow)

    async def _get_flow_row(self, flow_id: str, *, with_trashed: bool = False) -> Flow | None:
        q = select(Flow).where(Flow.id == flow_id)
        if not with_trashed:
            q = q.where(Flow.deleted_at.is_(None))
        result = await self.db.execute(q)
        return result.scalar_one_or_none()

    async def get_by_id(
        self, flow_id: str, *, with_trashed: bool = False
    ) -> FlowEntity | None:
        row = await self._get_flow_row(flow_id, with_trashed=with_trashed)
        return flow_to_entity(row) if row else None

    async def list_by_subject_type(
        self, subject_type: str, subject_scope: str | None = None
    ) -> list[FlowEntity]:
        """Live flows of a subject type (optionally one scope), by ordering then version."""
        q = select(Flow).where(Flow.subject_type == subject_type, Flow.deleted_at.is_(None))
        if subject_scope is not None:
            q = q.where(Flow.subject_scope == subject_scope)
        q = q.order_by(Flow.ordering.asc(), Flow.version.desc(), Flow.id.asc())
        result = await self.db.execute(q)
        return [flow_to_entity(f) for f in result.scalars().all()]

    async def create_flow(self, **fields: Any) -> FlowEntity:
        flow = await self.create(Flow(**_utc_fields(fields)))
        return flow_to_entity(flow)

    async def update_flow(self, flow_id: str, **changes: Any) -> FlowEntity | None:
        """Apply changes (None values are written as NULL); None if not found."""
        row = await self._get_flow_row(flow_id)
        if row is None:
            return None
        row = await self.update(row, **_utc_fields(changes))
        return flow_to_entity(row)

    async def max_version(self, subject_type: str, subject_scope: str | None) -> int | None:
        """Highest version in a (subject type, scope) group, trashed flows included."""
        result = await self.db.execute(
            select(func.max(Flow.version)).where(
                Flow.subject_type == subject_type, _scope_clause(subject_scope)
            )
        )
        return result.scalar_one_or_none()

    async def clear_default(
        self,
        subject_type: str,
        subject_scope: str | None,
        version: int,
        *,
        except_flow_id: str,
    ) -> int:
        """Unset is_default on sibling flows; return how many were changed."""
        result = await self.db.execute(
            update(Flow)
            .where(
                Flow.subject_type == subject_type,
                _scope_clause(subject_scope),
                Flow.version == version,
                Flow.id != except_flow_id,
                Flow.is_default.is_(True),
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def soft_delete(self, flow_id: str) -> bool:
        row = await self._get_flow_row(flow_id)
        if row is None:
            return False
        await self.update(row, deleted_at=utc_now())
        return True

    async def restore(self, flow_id: str) -> bool:
        row = await self._get_flow_row(flow_id, with_trashed=True)
        if row is None or row.deleted_at is None:
            return False
        await self.update(row, deleted_at=None)
        return True

    async def force_delete(self, flow_id: str) -> bool:
        row = await self._get_flow_row(flow_id, with_trashed=True)
        if row is None:
            return False
        await self.delete(row)
        return True
