"""DTOs for flow, state, transition and task writes (no dependency on ORM).

Update DTOs use None for "leave unchanged"; clearing the active window or
rollout goes through the dedicated FlowManager operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from flowengine.domain.enums import FlowStateType


@dataclass(frozen=True)
class FlowCreate:
    """Fields for a new flow. A START state is created alongside it."""

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


@dataclass(frozen=True)
class FlowUpdate:
    """Partial flow update; None fields are left unchanged."""

    subject_scope: str | None = None
    version: int | None = None
    is_default: bool | None = None
    status: bool | None = None
    channel: str | None = None
    environment: str | None = None
    ordering: int | None = None
    rollout_pct: int | None = None
    active_from: datetime | None = None
    active_to: datetime | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were set."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class FlowStateCreate:
    status: str | None = None
    type: FlowStateType = FlowStateType.STATE
    is_terminal: bool = False
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FlowStateUpdate:
    status: str | None = None
    is_terminal: bool | None = None
    config: dict[str, Any] | None = None


@dataclass(frozen=True)
class FlowTransitionCreate:
    from_state_id: str | None = None
    to_state_id: str | None = None
    slug: str | None = None


@dataclass(frozen=True)
class FlowTransitionUpdate:
    """Full replacement of a transition's endpoints and slug."""

    from_state_id: str | None = None
    to_state_id: str | None = None
    slug: str | None = None


@dataclass(frozen=True)
class FlowTaskCreate:
    driver: str
    config: dict[str, Any] = field(default_factory=dict)
    ordering: int | None = None
    status: bool = True


@dataclass(frozen=True)
class FlowTaskUpdate:
    config: dict[str, Any] | None = None
    ordering: int | None = None
    status: bool | None = None
