"""Composition root: builds repositories, services and use cases from a session.

Callers own the session (get_db for reads, get_db_transactional for
writes); everything built here is scoped to that session. Process-wide
collaborators (cache, background dispatcher) come from EngineRuntime.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.application.interfaces.services import (
    IBackgroundDispatcher,
    IPayloadValidator,
    ISubjectResolver,
    ISubjectStatusWriter,
)
from flowengine.application.services.graph_validator import WorkflowGraphValidator
from flowengine.application.services.task_registry import TaskRegistry, get_task_registry
from flowengine.application.services.transition_runner import TransitionRunner
from flowengine.application.use_cases.flows import (
    FlowBinder,
    FlowManager,
    FlowStateManager,
    FlowTaskManager,
    FlowTransitionManager,
)
from flowengine.infrastructure.cache.cache_protocol import CacheProtocol
from flowengine.infrastructure.persistence.repositories import (
    FlowInstanceRepository,
    FlowRepository,
    FlowStateRepository,
    FlowTaskRepository,
    FlowTransitionRepository,
    FlowUseRepository,
)
from flowengine.infrastructure.services import AsyncioBackgroundDispatcher, FlowPicker


@dataclass(frozen=True)
class Repositories:
    """All flow repositories bound to one session."""

    flows: FlowRepository
    states: FlowStateRepository
    transitions: FlowTransitionRepository
    tasks: FlowTaskRepository
    uses: FlowUseRepository
    instances: FlowInstanceRepository


def get_repositories(db: AsyncSession, cache: CacheProtocol | None = None) -> Repositories:
    """Repositories sharing db; cache (optional) backs the binding lookups."""
    return Repositories(
        flows=FlowRepository(db),
        states=FlowStateRepository(db),
        transitions=FlowTransitionRepository(db),
        tasks=FlowTaskRepository(db),
        uses=FlowUseRepository(db, cache=cache),
        instances=FlowInstanceRepository(db),
    )


def get_flow_picker(db: AsyncSession) -> FlowPicker:
    return FlowPicker(db)


def get_flow_manager(db: AsyncSession) -> FlowManager:
    repos = get_repositories(db)
    return FlowManager(
        repos.flows,
        repos.states,
        repos.transitions,
        picker=get_flow_picker(db),
        validator=WorkflowGraphValidator(),
    )


def get_state_manager(db: AsyncSession) -> FlowStateManager:
    repos = get_repositories(db)
    return FlowStateManager(repos.flows, repos.states, repos.transitions)


def get_transition_manager(db: AsyncSession) -> FlowTransitionManager:
    repos = get_repositories(db)
    return FlowTransitionManager(repos.flows, repos.states, repos.transitions)


def get_task_manager(
    db: AsyncSession, registry: TaskRegistry | None = None
) -> FlowTaskManager:
    repos = get_repositories(db)
    return FlowTaskManager(
        repos.flows, repos.transitions, repos.tasks, registry or get_task_registry()
    )


def get_flow_binder(db: AsyncSession, cache: CacheProtocol | None = None) -> FlowBinder:
    repos = get_repositories(db, cache)
    return FlowBinder(
        repos.uses,
        get_flow_picker(db),
        repos.states,
        repos.transitions,
        repos.instances,
    )


def get_transition_runner(
    db: AsyncSession,
    dispatcher: IBackgroundDispatcher | None = None,
    *,
    registry: TaskRegistry | None = None,
    status_writer: ISubjectStatusWriter | None = None,
    subject_resolver: ISubjectResolver | None = None,
    payload_validator: IPayloadValidator | None = None,
) -> TransitionRunner:
    """Transition runner over db.

    Without a dispatcher, background actions go to a fresh
    AsyncioBackgroundDispatcher; pass EngineRuntime.dispatcher to have them
    drained at shutdown.
    """
    repos = get_repositories(db)
    return TransitionRunner(
        repos.flows,
        repos.states,
        repos.transitions,
        repos.tasks,
        repos.instances,
        registry or get_task_registry(),
        dispatcher or AsyncioBackgroundDispatcher(),
        status_writer=status_writer,
        subject_resolver=subject_resolver,
        payload_validator=payload_validator,
    )
