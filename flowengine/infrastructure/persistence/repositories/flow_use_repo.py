"""Flow use repository: one binding per subject, cached in Redis."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.core.config import get_settings
from flowengine.domain.entities import FlowUseEntity
from flowengine.infrastructure.cache.cache_protocol import CacheProtocol
from flowengine.infrastructure.cache.keys import flow_use_key
from flowengine.infrastructure.persistence.models.flow import FlowUse
from flowengine.infrastructure.persistence.repositories.base import BaseRepository
from flowengine.shared.telemetry.logging import get_logger
from flowengine.shared.utils.datetime import ensure_utc

logger = get_logger(__name__)


def _use_to_entity(u: FlowUse) -> FlowUseEntity:
    return FlowUseEntity(
        id=u.id,
        flow_id=u.flow_id,
        subject_type=u.subject_type,
        subject_id=u.subject_id,
        used_at=ensure_utc(u.used_at),
    )


def _entity_to_cache(entity: FlowUseEntity) -> dict[str, Any]:
    return {
        "id": entity.id,
        "flow_id": entity.flow_id,
        "subject_type": entity.subject_type,
        "subject_id": entity.subject_id,
        "used_at": entity.used_at.isoformat() if entity.used_at else None,
    }


def _entity_from_cache(data: dict[str, Any]) -> FlowUseEntity:
    used_at = data.get("used_at")
    return FlowUseEntity(
        id=data["id"],
        flow_id=data["flow_id"],
        subject_type=data["subject_type"],
        subject_id=data["subject_id"],
        used_at=ensure_utc(datetime.fromisoformat(used_at)) if used_at else None,
    )


class FlowUseRepository(BaseRepository[FlowUse]):
    """Subject -> flow bindings with cache-aside lookups.

    Writes invalidate the subject's cache key through the lifecycle hooks.
    """

    def __init__(self, db: AsyncSession, cache: CacheProtocol | None = None) -> None:
        super().__init__(db, FlowUse)
        self.cache = cache
        self.cache_ttl = get_settings().cache_ttl_flow_use

    async def _rows_for_subject(self, subject_type: str, subject_id: str) -> list[FlowUse]:
        result = await self.db.execute(
            select(FlowUse)
            .where(FlowUse.subject_type == subject_type, FlowUse.subject_id == subject_id)
            .order_by(FlowUse.used_at.desc(), FlowUse.id.asc())
        )
        return list(result.scalars().all())

    async def get_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowUseEntity | None:
        key = flow_use_key(subject_type, subject_id)
        if self.cache and self.cache.is_available():
            cached = await self.cache.get(key)
            if cached is not None:
                return _entity_from_cache(cached)
        rows = await self._rows_for_subject(subject_type, subject_id)
        if not rows:
            return None
        entity = _use_to_entity(rows[0])
        if self.cache and self.cache.is_available():
            await self.cache.set(key, _entity_to_cache(entity), ttl=self.cache_ttl)
        return entity

    async def bind(
        self,
        flow_id: str,
        subject_type: str,
        subject_id: str,
        used_at: datetime,
    ) -> FlowUseEntity:
        """Create the subject's binding or move it to flow_id (extra rows are dropped)."""
        rows = await self._rows_for_subject(subject_type, subject_id)
        if not rows:
            row = await self.create(
                FlowUse(
                    flow_id=flow_id,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    used_at=used_at,
                )
            )
            return _use_to_entity(row)
        keep, *extra = rows
        for stale in extra:
            logger.warning(
                "Dropping duplicate flow binding %s for %s:%s", stale.id, subject_type, subject_id
            )
            await self.delete(stale)
        keep = await self.update(keep, flow_id=flow_id, used_at=used_at)
        return _use_to_entity(keep)

    async def unbind(self, subject_type: str, subject_id: str) -> bool:
        rows = await self._rows_for_subject(subject_type, subject_id)
        for row in rows:
            await self.delete(row)
        return bool(rows)

    async def _invalidate(self, obj: FlowUse) -> None:
        if self.cache and self.cache.is_available():
            await self.cache.delete(flow_use_key(obj.subject_type, obj.subject_id))

    async def _on_after_create(self, obj: FlowUse) -> None:
        await self._invalidate(obj)

    async def _on_after_update(self, obj: FlowUse) -> None:
        await self._invalidate(obj)

    async def _on_before_delete(self, obj: FlowUse) -> None:
        await self._invalidate(obj)
