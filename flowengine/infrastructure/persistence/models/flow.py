"""Flow graph ORM models: flow, flow_state, flow_transition, flow_task,
flow_use and flow_instance."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flowengine.infrastructure.persistence.database import Base
from flowengine.infrastructure.persistence.models.mixins import (
    CuidMixin,
    SoftDeleteMixin,
    TimestampMixin,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Flow(CuidMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Versioned workflow definition for one subject type. Table: flow."""

    __tablename__ = "flow"

    subject_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subject_scope: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    active_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    active_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(64), nullable=True)
    environment: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ordering: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rollout_pct: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_flow_version_positive"),
        CheckConstraint(
            "rollout_pct IS NULL OR (rollout_pct >= 0 AND rollout_pct <= 100)",
            name="ck_flow_rollout_pct_range",
        ),
        UniqueConstraint(
            "subject_type", "subject_scope", "version", name="uq_flow_subject_version"
        ),
        Index("ix_flow_selection", "subject_type", "status", "is_default"),
    )


class FlowState(CuidMixin, TimestampMixin, Base):
    """Node of a flow graph. Table: flow_state."""

    __tablename__ = "flow_state"

    flow_id: Mapped[str] = mapped_column(
        String, ForeignKey("flow.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("type IN ('start', 'state')", name="ck_flow_state_type"),
    )


class FlowTransition(CuidMixin, TimestampMixin, Base):
    """Directed edge; a null endpoint marks a generic entry/exit. Table: flow_transition."""

    __tablename__ = "flow_transition"

    flow_id: Mapped[str] = mapped_column(
        String, ForeignKey("flow.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_state_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("flow_state.id", ondelete="CASCADE"), nullable=True, index=True
    )
    to_state_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("flow_state.id", ondelete="CASCADE"), nullable=True, index=True
    )
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint(
            "from_state_id IS NOT NULL OR to_state_id IS NOT NULL",
            name="ck_flow_transition_endpoint",
        ),
        UniqueConstraint(
            "flow_id", "from_state_id", "to_state_id", name="uq_flow_transition_edge"
        ),
        UniqueConstraint("flow_id", "slug", name="uq_flow_transition_slug"),
    )


class FlowTask(CuidMixin, TimestampMixin, Base):
    """Task driver attached to a transition. Table: flow_task."""

    __tablename__ = "flow_task"

    flow_transition_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("flow_transition.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    driver: Mapped[str] = mapped_column(String(255), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    ordering: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint(
            "flow_transition_id", "ordering", name="uq_flow_task_transition_ordering"
        ),
    )


class FlowUse(CuidMixin, Base):
    """Binding of a subject to its flow. Table: flow_use."""

    __tablename__ = "flow_use"

    flow_id: Mapped[str] = mapped_column(
        String, ForeignKey("flow.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_type: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "flow_id", "subject_type", "subject_id", name="uq_flow_use_flow_subject"
        ),
        Index("ix_flow_use_subject", "subject_type", "subject_id"),
    )


class FlowInstance(CuidMixin, Base):
    """A subject's position: the last transition it went through. Table: flow_instance."""

    __tablename__ = "flow_instance"

    subject_type: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    flow_transition_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("flow_transition.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_flow_instance_subject", "subject_type", "subject_id", "completed_at"),
    )
