"""Flow state operations guarded by the graph rules."""

from __future__ import annotations

from flowengine.application.dtos.flow import FlowStateCreate, FlowStateUpdate
from flowengine.application.interfaces.repositories import (
    IFlowRepository,
    IFlowStateRepository,
    IFlowTransitionRepository,
)
from flowengine.application.services.graph_validator import WorkflowGraphValidator
from flowengine.application.use_cases.flows.graph import (
    load_flow_graph,
    start_state_config,
    state_config,
)
from flowengine.domain.entities import FlowStateEntity
from flowengine.domain.enums import FlowStateType
from flowengine.domain.exceptions import ResourceNotFoundException


class FlowStateManager:
    """Create, update and delete the nodes of a flow graph."""

    def __init__(
        self,
        flow_repo: IFlowRepository,
        state_repo: IFlowStateRepository,
        transition_repo: IFlowTransitionRepository,
        validator: WorkflowGraphValidator | None = None,
    ) -> None:
        self._flow_repo = flow_repo
        self._state_repo = state_repo
        self._transition_repo = transition_repo
        self._validator = validator or WorkflowGraphValidator()

    async def get_state(self, state_id: str) -> FlowStateEntity:
        state = await self._state_repo.get_by_id(state_id)
        if state is None:
            raise ResourceNotFoundException("flow_state", state_id)
        return state

    async def create_state(self, flow_id: str, data: FlowStateCreate) -> FlowStateEntity:
        """Add a state; a second START state is rejected.

        Raises:
            ResourceNotFoundException: Unknown flow.
            GraphViolationException: START_ALREADY_EXISTS.
        """
        if await self._flow_repo.get_by_id(flow_id) is None:
            raise ResourceNotFoundException("flow", flow_id)
        graph = await load_flow_graph(self._state_repo, self._transition_repo, flow_id)
        self._validator.check_state_creation(graph, data.type)
        if data.type == FlowStateType.START:
            config = {**start_state_config(), **data.config, "is_terminal": False}
        else:
            config = state_config(data.config, data.is_terminal)
        return await self._state_repo.create_state(
            flow_id, type=data.type, status=data.status, config=config
        )

    async def update_state(self, state_id: str, data: FlowStateUpdate) -> FlowStateEntity:
        """Update status and config. The state type never changes."""
        state = await self.get_state(state_id)
        config = state_config({**state.config, **(data.config or {})}, data.is_terminal)
        if state.is_start:
            config["is_terminal"] = False
        if config["is_terminal"] and not state.is_terminal:
            graph = await load_flow_graph(
                self._state_repo, self._transition_repo, state.flow_id
            )
            self._validator.check_state_update(graph, state_id, True)
        updated = await self._state_repo.update_state(
            state_id, status=data.status, config=config
        )
        if updated is None:
            raise ResourceNotFoundException("flow_state", state_id)
        return updated

    async def delete_state(self, state_id: str) -> None:
        """Delete a state and (by cascade) its transitions; START is protected."""
        state = await self.get_state(state_id)
        graph = await load_flow_graph(self._state_repo, self._transition_repo, state.flow_id)
        self._validator.check_state_deletion(graph, state_id)
        await self._state_repo.delete_state(state_id)
