"""Flow transition operations guarded by the graph rules."""

from __future__ import annotations

import re

from flowengine.application.dtos.flow import FlowTransitionCreate, FlowTransitionUpdate
from flowengine.application.interfaces.repositories import (
    IFlowRepository,
    IFlowStateRepository,
    IFlowTransitionRepository,
)
from flowengine.application.services.graph_validator import WorkflowGraphValidator
from flowengine.application.use_cases.flows.graph import load_flow_graph
from flowengine.core.constants import SLUG_PATTERN
from flowengine.domain.entities import FlowTransitionEntity
from flowengine.domain.exceptions import (
    ResourceNotFoundException,
    TransitionSlugExistsException,
    ValidationException,
)

_SLUG_RE = re.compile(SLUG_PATTERN)


class FlowTransitionManager:
    """Create, update and delete the edges of a flow graph."""

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

    async def get_transition(self, key: str) -> FlowTransitionEntity:
        """Look up by id or slug."""
        transition = await self._transition_repo.get_by_key(key)
        if transition is None:
            raise ResourceNotFoundException("flow_transition", key)
        return transition

    async def create_transition(
        self, flow_id: str, data: FlowTransitionCreate
    ) -> FlowTransitionEntity:
        """Add an edge after the graph rules and slug checks pass.

        Raises:
            ResourceNotFoundException: Unknown flow.
            GraphViolationException: A graph rule would be broken.
            ValidationException: Malformed slug.
            TransitionSlugExistsException: Slug already used in this flow.
        """
        if await self._flow_repo.get_by_id(flow_id) is None:
            raise ResourceNotFoundException("flow", flow_id)
        slug = await self._check_slug(flow_id, data.slug)
        graph = await load_flow_graph(self._state_repo, self._transition_repo, flow_id)
        self._validator.check_transition(graph, data.from_state_id, data.to_state_id)
        return await self._transition_repo.create_transition(
            flow_id,
            from_state_id=data.from_state_id,
            to_state_id=data.to_state_id,
            slug=slug,
        )

    async def update_transition(
        self, transition_id: str, data: FlowTransitionUpdate
    ) -> FlowTransitionEntity:
        """Replace endpoints and slug; the transition itself is excluded from the checks."""
        current = await self._transition_repo.get_by_id(transition_id)
        if current is None:
            raise ResourceNotFoundException("flow_transition", transition_id)
        slug = await self._check_slug(
            current.flow_id, data.slug, exclude_transition_id=transition_id
        )
        graph = await load_flow_graph(
            self._state_repo, self._transition_repo, current.flow_id
        )
        self._validator.check_transition(
            graph,
            data.from_state_id,
            data.to_state_id,
            exclude_transition_id=transition_id,
        )
        updated = await self._transition_repo.update_transition(
            transition_id,
            from_state_id=data.from_state_id,
            to_state_id=data.to_state_id,
            slug=slug,
        )
        if updated is None:
            raise ResourceNotFoundException("flow_transition", transition_id)
        return updated

    async def delete_transition(self, transition_id: str) -> None:
        current = await self._transition_repo.get_by_id(transition_id)
        if current is None:
            raise ResourceNotFoundException("flow_transition", transition_id)
        graph = await load_flow_graph(
            self._state_repo, self._transition_repo, current.flow_id
        )
        self._validator.check_transition_deletion(graph, transition_id)
        await self._transition_repo.delete_transition(transition_id)

    async def list_transitions(self, flow_id: str) -> list[FlowTransitionEntity]:
        return await self._transition_repo.list_for_flow(flow_id)

    async def _check_slug(
        self,
        flow_id: str,
        slug: str | None,
        *,
        exclude_transition_id: str | None = None,
    ) -> str | None:
        if slug is None:
            return None
        slug = slug.strip()
        if not _SLUG_RE.match(slug):
            raise ValidationException(
                f"Invalid transition slug: {slug!r} (use lowercase letters, digits and '-')",
                field="slug",
            )
        if await self._transition_repo.slug_exists(
            flow_id, slug, exclude_transition_id=exclude_transition_id
        ):
            raise TransitionSlugExistsException(flow_id, slug)
        return slug
