"""Application DTOs (input commands for the management use cases)."""

from flowengine.application.dtos.flow import (
    FlowCreate,
    FlowStateCreate,
    FlowStateUpdate,
    FlowTaskCreate,
    FlowTaskUpdate,
    FlowTransitionCreate,
    FlowTransitionUpdate,
    FlowUpdate,
)

__all__ = [
    "FlowCreate",
    "FlowStateCreate",
    "FlowStateUpdate",
    "FlowTaskCreate",
    "FlowTaskUpdate",
    "FlowTransitionCreate",
    "FlowTransitionUpdate",
    "FlowUpdate",
]
