"""Repository interfaces (ports) for the application layer.

Use cases and the transition runner depend on these Protocols, not on the
SQLAlchemy repositories, so they can be exercised with in-memory fakes.
All methods return domain entities.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from flowengine.domain.entities import (
    FlowEntity,
    FlowInstanceEntity,
    FlowStateEntity,
    FlowTaskEntity,
    FlowTransitionEntity,
    FlowUseEntity,
)
from flowengine.domain.enums import FlowStateType


class IFlowRepository(Protocol):
    """Protocol for flow definitions (soft-deletable)."""

    async def get_by_id(
        self, flow_id: str, *, with_trashed: bool = False
    ) -> FlowEntity | None: ...

    async def list_by_subject_type(
        self, subject_type: str, subject_scope: str | None = None
    ) -> list[FlowEntity]: ...

    async def create_flow(self, **fields: Any) -> FlowEntity: ...

    async def update_flow(self, flow_id: str, **changes: Any) -> FlowEntity | None:
        """Apply changes (None values are written as NULL); None if not found."""

    async def max_version(self, subject_type: str, subject_scope: str | None) -> int | None:
        """Highest version in a (subject type, scope) group, trashed flows included."""

    async def clear_default(
        self,
        subject_type: str,
        subject_scope: str | None,
        version: int,
        *,
        except_flow_id: str,
    ) -> int:
        """Unset is_default on sibling flows; return how many were changed."""

    async def soft_delete(self, flow_id: str) -> bool: ...

    async def restore(self, flow_id: str) -> bool: ...

    async def force_delete(self, flow_id: str) -> bool: ...


class IFlowStateRepository(Protocol):
    """Protocol for flow graph nodes."""

    async def get_by_id(self, state_id: str) -> FlowStateEntity | None: ...

    async def list_for_flow(self, flow_id: str) -> list[FlowStateEntity]: ...

    async def get_start_state(self, flow_id: str) -> FlowStateEntity | None: ...

    async def create_state(
        self,
        flow_id: str,
        *,
        type: FlowStateType,
        status: str | None,
        config: dict[str, Any],
    ) -> FlowStateEntity: ...

    async def update_state(
        self,
        state_id: str,
        *,
        status: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> FlowStateEntity | None: ...

    async def delete_state(self, state_id: str) -> bool: ...


class IFlowTransitionRepository(Protocol):
    """Protocol for flow graph edges."""

    async def get_by_id(self, transition_id: str) -> FlowTransitionEntity | None: ...

    async def get_by_key(self, key: str) -> FlowTransitionEntity | None:
        """Look up by id first, then by slug."""

    async def list_for_flow(self, flow_id: str) -> list[FlowTransitionEntity]: ...

    async def list_generic_outputs(
        self, flow_id: str, state_id: str
    ) -> list[FlowTransitionEntity]:
        """Transitions leaving state_id with no destination."""

    async def list_generic_inputs(
        self, flow_id: str, state_id: str
    ) -> list[FlowTransitionEntity]:
        """Transitions entering state_id with no origin."""

    async def slug_exists(
        self, flow_id: str, slug: str, *, exclude_transition_id: str | None = None
    ) -> bool: ...

    async def create_transition(
        self,
        flow_id: str,
        *,
        from_state_id: str | None,
        to_state_id: str | None,
        slug: str | None,
    ) -> FlowTransitionEntity: ...

    async def update_transition(
        self,
        transition_id: str,
        *,
        from_state_id: str | None,
        to_state_id: str | None,
        slug: str | None,
    ) -> FlowTransitionEntity | None: ...

    async def delete_transition(self, transition_id: str) -> bool: ...


class IFlowTaskRepository(Protocol):
    """Protocol for tasks attached to transitions (ordered)."""

    async def get_by_id(self, task_id: str) -> FlowTaskEntity | None: ...

    async def list_for_transition(
        self, transition_id: str, *, enabled_only: bool = False
    ) -> list[FlowTaskEntity]:
        """Return tasks ordered by ordering ascending."""

    async def max_ordering(self, transition_id: str) -> int | None: ...

    async def ordering_taken(
        self, transition_id: str, ordering: int, *, exclude_task_id: str | None = None
    ) -> bool: ...

    async def create_task(
        self,
        transition_id: str,
        *,
        driver: str,
        config: dict[str, Any],
        ordering: int,
        status: bool,
    ) -> FlowTaskEntity: ...

    async def update_task(self, task_id: str, **changes: Any) -> FlowTaskEntity | None: ...

    async def delete_task(self, task_id: str) -> bool: ...


class IFlowUseRepository(Protocol):
    """Protocol for subject -> flow bindings (one per subject)."""

    async def get_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowUseEntity | None: ...

    async def bind(
        self,
        flow_id: str,
        subject_type: str,
        subject_id: str,
        used_at: datetime,
    ) -> FlowUseEntity:
        """Create the subject's binding or move it to flow_id."""

    async def unbind(self, subject_type: str, subject_id: str) -> bool: ...


class IFlowInstanceRepository(Protocol):
    """Protocol for subjects' current position in their flow."""

    async def get_active_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowInstanceEntity | None: ...

    async def get_latest_for_subject(
        self, subject_type: str, subject_id: str
    ) -> FlowInstanceEntity | None:
        """Most recently started instance, active or completed."""

    async def get_active_for_transition(
        self, transition_id: str
    ) -> FlowInstanceEntity | None: ...

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
    ) -> FlowInstanceEntity: ...

    async def update_instance(
        self,
        instance_id: str,
        *,
        flow_transition_id: str,
        actor_type: str | None,
        actor_id: str | None,
        completed_at: datetime | None,
    ) -> FlowInstanceEntity | None: ...
