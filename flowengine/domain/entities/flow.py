"""Flow domain entities.

A flow is a versioned workflow definition for one subject type. It owns a
graph of states and transitions; transitions own ordered tasks. FlowUse binds
a concrete subject to its flow and FlowInstance records where that subject
currently is.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flowengine.domain.enums import FlowStateType


@dataclass(frozen=True)
class FlowEntity:
    """Domain entity for a flow definition (selection attributes only)."""

    id: str
    subject_type: str
    subject_scope: str | None = None
    version: int = 1
    is_default: bool = False
    status: bool = True
    channel: str | None = None
    environment: str | None = None
    ordering: int = 0
    rollout_pct: int | None = None
    active_from: datetime | None = None
    active_to: datetime | None = None
    deleted_at: datetime | None = None

    def is_active_at(self, now: datetime, ignore_time_window: bool = False) -> bool:
        """Return whether the flow is enabled and (unless ignored) inside its window."""
        if not self.status:
            return False
        if ignore_time_window:
            return True
        if self.active_from is not None and self.active_from > now:
            return False
        if self.active_to is not None and self.active_to < now:
            return False
        return True

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class FlowStateEntity:
    """A node of a flow graph. Terminality lives in config['is_terminal']."""

    id: str
    flow_id: str
    type: FlowStateType
    status: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def is_start(self) -> bool:
        return self.type == FlowStateType.START

    @property
    def is_terminal(self) -> bool:
        return bool(self.config.get("is_terminal", False))


@dataclass(frozen=True)
class FlowTransitionEntity:
    """A directed edge. from_state_id None = generic input; to_state_id None = generic output."""

    id: str
    flow_id: str
    from_state_id: str | None
    to_state_id: str | None
    slug: str | None = None

    @property
    def is_self_loop(self) -> bool:
        return self.from_state_id is not None and self.from_state_id == self.to_state_id

    @property
    def is_generic_input(self) -> bool:
        return self.from_state_id is None and self.to_state_id is not None

    @property
    def is_generic_output(self) -> bool:
        return self.from_state_id is not None and self.to_state_id is None

    @property
    def is_specific(self) -> bool:
        return (
            self.from_state_id is not None
            and self.to_state_id is not None
            and self.from_state_id != self.to_state_id
        )


@dataclass(frozen=True)
class FlowTaskEntity:
    """A configured task driver attached to a transition."""

    id: str
    flow_transition_id: str
    driver: str
    config: dict[str, Any] = field(default_factory=dict)
    ordering: int = 0
    status: bool = True


@dataclass(frozen=True)
class FlowUseEntity:
    """Binding of one subject instance to the flow governing it."""

    id: str
    flow_id: str
    subject_type: str
    subject_id: str
    used_at: datetime | None = None


@dataclass(frozen=True)
class FlowInstanceEntity:
    """Current position of a subject: the last transition it went through."""

    id: str
    subject_type: str
    subject_id: str
    flow_transition_id: str
    actor_type: str | None = None
    actor_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """An instance is active until it reaches a terminal state."""
        return self.completed_at is None
