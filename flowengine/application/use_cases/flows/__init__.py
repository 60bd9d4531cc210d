"""Flow use cases: flow, state, transition and task management, subject binding."""

from flowengine.application.use_cases.flows.flow_binding import FlowBinder
from flowengine.application.use_cases.flows.flow_management import FlowManager
from flowengine.application.use_cases.flows.state_management import FlowStateManager
from flowengine.application.use_cases.flows.task_management import FlowTaskManager
from flowengine.application.use_cases.flows.transition_management import (
    FlowTransitionManager,
)

__all__ = [
    "FlowBinder",
    "FlowManager",
    "FlowStateManager",
    "FlowTaskManager",
    "FlowTransitionManager",
]
