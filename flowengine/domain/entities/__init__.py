"""Domain entities: flows, their graph, tasks, bindings and instances."""

from flowengine.domain.entities.flow import (
    FlowEntity,
    FlowInstanceEntity,
    FlowStateEntity,
    FlowTaskEntity,
    FlowTransitionEntity,
    FlowUseEntity,
)
from flowengine.domain.entities.subject import FlowSubject, subject_scope_of

__all__ = [
    "FlowEntity",
    "FlowInstanceEntity",
    "FlowStateEntity",
    "FlowSubject",
    "FlowTaskEntity",
    "FlowTransitionEntity",
    "FlowUseEntity",
    "subject_scope_of",
]
