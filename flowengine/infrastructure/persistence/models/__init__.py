"""ORM models. Importing this package registers every table on Base.metadata."""

from flowengine.infrastructure.persistence.models.flow import (
    Flow,
    FlowInstance,
    FlowState,
    FlowTask,
    FlowTransition,
    FlowUse,
)

__all__ = [
    "Flow",
    "FlowInstance",
    "FlowState",
    "FlowTask",
    "FlowTransition",
    "FlowUse",
]
