"""FlowPicker: chooses the one flow that governs a subject.

Candidates come from a single filtered, ordered query over the flow table
(see build_query). Preference lists only rank; they never exclude. When
nothing matches, the builder's fallback cascade relaxes one constraint at a
time, cumulatively, until a candidate appears.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Select, case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
from flowengine.application.services.rollout import stable_bucket
from flowengine.core.constants import PREFER_ID_BASE_RANK
from flowengine.core.request_context import get_pick_memo
from flowengine.domain.entities import FlowEntity, FlowSubject
from flowengine.domain.enums import PickStrategy
from flowengine.infrastructure.persistence.models.flow import Flow
from flowengine.infrastructure.persistence.repositories.flow_repo import flow_to_entity
from flowengine.shared.telemetry.logging import get_logger
from flowengine.shared.telemetry.tracing import TracedOperation, add_span_attributes, traced
from flowengine.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)


class FlowPicker:
    """SQL implementation of IFlowPicker."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @traced("flow_picker.pick")
    async def pick(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> FlowEntity | None:
        """Return the winning flow for subject, or None.

        A forced flow id short-circuits everything else (including the
        request memo): the forced flow is returned if it passes the active
        checks, otherwise None.
        """
        add_span_attributes(subject_type=builder.subject_type)
        if builder.forced_flow_resolver is not None:
            forced_id = builder.forced_flow_resolver(subject)
            if forced_id is not None:
                return await self._load_forced(str(forced_id), builder)

        memo = get_pick_memo() if builder.cache_in_request else None
        memo_key = None
        if memo is not None:
            memo_key = builder.cache_key(subject, self.resolve_rollout_key(subject, builder))
            if memo_key is not None and memo_key in memo:
                return memo[memo_key]

        picked = await self._first_candidate(subject, builder)
        if picked is None and builder.fallback:
            picked = await self._apply_fallback(subject, builder)

        if memo is not None and memo_key is not None:
            memo[memo_key] = picked
        return picked

    async def candidates(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> list[FlowEntity]:
        """Ordered candidates for one builder (no forced id, fallback or memo)."""
        result = await self.db.execute(self.build_query(subject, builder))
        return [flow_to_entity(f) for f in result.scalars().all()]

    def resolve_rollout_key(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> str | None:
        """The subject's stable rollout key, or None when none is resolvable."""
        if builder.rollout_key_resolver is None:
            return None
        key = builder.rollout_key_resolver(subject)
        if key is None or key == "":
            return None
        return str(key)

    def build_query(self, subject: FlowSubject, builder: FlowPickerBuilder) -> Select:
        """The candidate query: filters, rollout gate, callbacks, then ordering."""
        q = select(Flow).where(Flow.deleted_at.is_(None))

        if builder.subject_type is not None:
            q = q.where(Flow.subject_type == builder.subject_type)
        if builder.subject_scope is not None:
            q = q.where(Flow.subject_scope == builder.subject_scope)
        if builder.environment is not None:
            q = q.where(Flow.environment == builder.environment)
        if builder.channel is not None:
            q = q.where(Flow.channel == builder.channel)
        if builder.include_ids:
            q = q.where(Flow.id.in_(builder.include_ids))
        if builder.exclude_ids:
            q = q.where(Flow.id.not_in(builder.exclude_ids))

        if builder.only_active:
            q = q.where(Flow.status.is_(True))
            if not builder.ignore_time_window:
                now = self._now(builder)
                q = q.where(
                    or_(Flow.active_from.is_(None), Flow.active_from <= now),
                    or_(Flow.active_to.is_(None), Flow.active_to >= now),
                )

        if builder.require_default:
            q = q.where(Flow.is_default.is_(True))

        if builder.version_equals is not None:
            q = q.where(Flow.version == builder.version_equals)
        else:
            if builder.version_min is not None:
                q = q.where(Flow.version >= builder.version_min)
            if builder.version_max is not None:
                q = q.where(Flow.version <= builder.version_max)

        if builder.evaluate_rollout:
            rollout_key = self.resolve_rollout_key(subject, builder)
            if rollout_key is not None:
                bucket = stable_bucket(
                    builder.rollout_namespace, builder.rollout_salt, rollout_key
                )
                q = q.where(or_(Flow.rollout_pct.is_(None), Flow.rollout_pct >= bucket))
            else:
                # No stable key: gated flows are never admitted.
                q = q.where(Flow.rollout_pct.is_(None))

        for callback in builder.where_callbacks:
            q = callback(q, subject)

        q = self._apply_preferences(q, builder)

        if builder.strategy == PickStrategy.FIRST:
            q = q.order_by(Flow.id.asc())
        elif builder.order_by_callback is not None:
            q = builder.order_by_callback(q)
        else:
            q = q.order_by(
                Flow.version.desc(),
                Flow.is_default.desc(),
                Flow.ordering.desc(),
                Flow.id.desc(),
            )

        if builder.candidates_limit > 0:
            q = q.limit(builder.candidates_limit)
        return q

    @staticmethod
    def _apply_preferences(q: Select, builder: FlowPickerBuilder) -> Select:
        """Rank boosts, ahead of the strategy ordering."""
        if builder.prefer_ids:
            q = q.order_by(
                case(
                    *[
                        (Flow.id == flow_id, PREFER_ID_BASE_RANK - idx)
                        for idx, flow_id in enumerate(builder.prefer_ids)
                    ],
                    else_=0,
                ).desc()
            )
        for column, values in (
            (Flow.environment, builder.prefer_environments),
            (Flow.channel, builder.prefer_channels),
        ):
            if values:
                q = q.order_by(
                    case(
                        *[(column == value, len(values) - idx) for idx, value in enumerate(values)],
                        else_=0,
                    ).desc()
                )
        return q

    @staticmethod
    def _now(builder: FlowPickerBuilder) -> datetime:
        return ensure_utc(builder.now) if builder.now is not None else utc_now()

    async def _first_candidate(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> FlowEntity | None:
        result = await self.db.execute(self.build_query(subject, builder).limit(1))
        row = result.scalars().first()
        return flow_to_entity(row) if row else None

    async def _apply_fallback(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> FlowEntity | None:
        relaxed = builder
        for step in builder.fallback:
            relaxed = relaxed.relaxed(step)
            async with TracedOperation("flow_picker.fallback", {"step": step.value}) as op:
                picked = await self._first_candidate(subject, relaxed)
                op.set_attribute("picked", picked is not None)
            logger.debug(
                "Flow picker fallback step %s for %s: %s",
                step.value,
                builder.subject_type,
                picked.id if picked else "no candidate",
            )
            if picked is not None:
                return picked
        return None

    async def _load_forced(
        self, flow_id: str, builder: FlowPickerBuilder
    ) -> FlowEntity | None:
        result = await self.db.execute(
            select(Flow).where(Flow.id == flow_id, Flow.deleted_at.is_(None))
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        flow = flow_to_entity(row)
        if builder.only_active and not flow.is_active_at(
            self._now(builder), builder.ignore_time_window
        ):
            return None
        return flow
