"""SQLAlchemy repositories. All return domain entities."""

from flowengine.infrastructure.persistence.repositories.flow_instance_repo import (
    FlowInstanceRepository,
)
from flowengine.infrastructure.persistence.repositories.flow_repo import FlowRepository
from flowengine.infrastructure.persistence.repositories.flow_state_repo import (
    FlowStateRepository,
)
from flowengine.infrastructure.persistence.repositories.flow_task_repo import (
    FlowTaskRepository,
)
from flowengine.infrastructure.persistence.repositories.flow_transition_repo import (
    FlowTransitionRepository,
)
from flowengine.infrastructure.persistence.repositories.flow_use_repo import (
    FlowUseRepository,
)

__all__ = [
    "FlowInstanceRepository",
    "FlowRepository",
    "FlowStateRepository",
    "FlowTaskRepository",
    "FlowTransitionRepository",
    "FlowUseRepository",
]
