"""Flow management: create, update, version, export/import and lint flows."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from typing import Any

from flowengine.application.dtos.flow import FlowCreate, FlowUpdate
from flowengine.application.interfaces.repositories import (
    IFlowRepository,
    IFlowStateRepository,
    IFlowTransitionRepository,
)
from flowengine.application.interfaces.services import IFlowPicker
from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
from flowengine.application.services.graph_validator import (
    FlowGraph,
    GraphViolation,
    WorkflowGraphValidator,
)
from flowengine.application.use_cases.flows.graph import (
    load_flow_graph,
    start_state_config,
)
from flowengine.domain.entities import (
    FlowEntity,
    FlowStateEntity,
    FlowSubject,
    FlowTransitionEntity,
)
from flowengine.domain.enums import FlowStateType
from flowengine.domain.exceptions import (
    FlowInconsistentException,
    InvalidActiveWindowException,
    InvalidRolloutException,
    ResourceNotFoundException,
    ValidationException,
)
from flowengine.shared.telemetry.logging import get_logger
from flowengine.shared.utils.datetime import ensure_utc
from flowengine.shared.utils.generators import generate_cuid

logger = get_logger(__name__)

# Flow columns carried by duplicate/export/import.
_FLOW_FIELDS = (
    "subject_type",
    "subject_scope",
    "version",
    "is_default",
    "status",
    "active_from",
    "active_to",
    "channel",
    "ordering",
    "rollout_pct",
    "environment",
)

PickerTuner = Callable[[FlowPickerBuilder], FlowPickerBuilder]


def validate_rollout(rollout_pct: Any) -> None:
    """None or an integer percentage 0..100."""
    if rollout_pct is None:
        return
    if isinstance(rollout_pct, bool) or not isinstance(rollout_pct, int):
        raise InvalidRolloutException(rollout_pct)
    if not 0 <= rollout_pct <= 100:
        raise InvalidRolloutException(rollout_pct)


def validate_active_window(
    active_from: datetime | None, active_to: datetime | None
) -> None:
    if active_from is not None and active_to is not None:
        if ensure_utc(active_from) > ensure_utc(active_to):
            raise InvalidActiveWindowException(active_from, active_to)


def _flow_fields(flow: FlowEntity) -> dict[str, Any]:
    return {name: getattr(flow, name) for name in _FLOW_FIELDS}


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value)))
    except ValueError as e:
        raise ValidationException(f"Invalid datetime: {value!r}", field="active_window") from e


class FlowManager:
    """Flow-level operations. Graph edits live in the state/transition managers."""

    def __init__(
        self,
        flow_repo: IFlowRepository,
        state_repo: IFlowStateRepository,
        transition_repo: IFlowTransitionRepository,
        picker: IFlowPicker | None = None,
        validator: WorkflowGraphValidator | None = None,
    ) -> None:
        self._flow_repo = flow_repo
        self._state_repo = state_repo
        self._transition_repo = transition_repo
        self._picker = picker
        self._validator = validator or WorkflowGraphValidator()

    async def get_flow(self, flow_id: str, *, with_trashed: bool = False) -> FlowEntity:
        flow = await self._flow_repo.get_by_id(flow_id, with_trashed=with_trashed)
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        return flow

    async def create_flow(self, data: FlowCreate) -> FlowEntity:
        """Create a flow together with its START state.

        Raises:
            InvalidRolloutException: rollout_pct outside 0..100.
            InvalidActiveWindowException: active_from after active_to.
        """
        validate_rollout(data.rollout_pct)
        validate_active_window(data.active_from, data.active_to)
        flow = await self._flow_repo.create_flow(**asdict(data))
        await self._state_repo.create_state(
            flow.id,
            type=FlowStateType.START,
            status=None,
            config=start_state_config(),
        )
        if flow.is_default:
            await self._clear_sibling_defaults(flow)
        logger.info("Created flow %s for %s (v%s)", flow.id, flow.subject_type, flow.version)
        return flow

    async def update_flow(self, flow_id: str, data: FlowUpdate) -> FlowEntity:
        current = await self.get_flow(flow_id)
        changes = data.changes()
        validate_rollout(changes.get("rollout_pct"))
        validate_active_window(
            changes.get("active_from", current.active_from),
            changes.get("active_to", current.active_to),
        )
        flow = await self._flow_repo.update_flow(flow_id, **changes) if changes else current
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        if changes.get("is_default"):
            await self._clear_sibling_defaults(flow)
        return flow

    async def toggle_status(self, flow_id: str) -> FlowEntity:
        current = await self.get_flow(flow_id)
        flow = await self._flow_repo.update_flow(flow_id, status=not current.status)
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        return flow

    async def set_default(self, flow_id: str) -> FlowEntity:
        """Make this flow the default of its (subject type, scope, version) group."""
        await self.get_flow(flow_id)
        flow = await self._flow_repo.update_flow(flow_id, is_default=True)
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        await self._clear_sibling_defaults(flow)
        return flow

    async def set_active_window(
        self,
        flow_id: str,
        active_from: datetime | None,
        active_to: datetime | None,
    ) -> FlowEntity:
        """Set or clear (None) the window bounds."""
        validate_active_window(active_from, active_to)
        await self.get_flow(flow_id)
        flow = await self._flow_repo.update_flow(
            flow_id, active_from=active_from, active_to=active_to
        )
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        return flow

    async def set_rollout(self, flow_id: str, rollout_pct: int | None) -> FlowEntity:
        """Set the rollout percentage; None rolls the flow out to everyone."""
        validate_rollout(rollout_pct)
        await self.get_flow(flow_id)
        flow = await self._flow_repo.update_flow(flow_id, rollout_pct=rollout_pct)
        if flow is None:
            raise ResourceNotFoundException("flow", flow_id)
        return flow

    async def reorder(self, ordered_ids: list[str]) -> list[FlowEntity]:
        """Assign ordering 1..n following ordered_ids."""
        flows = []
        for position, flow_id in enumerate(ordered_ids, start=1):
            flow = await self._flow_repo.update_flow(flow_id, ordering=position)
            if flow is None:
                raise ResourceNotFoundException("flow", flow_id)
            flows.append(flow)
        return flows

    async def duplicate(
        self,
        flow_id: str,
        overrides: dict[str, Any] | None = None,
        with_graph: bool = True,
    ) -> FlowEntity:
        """Copy a flow as the next version: inactive, non-default, graph remapped.

        The copy's version is one above the highest version of its (subject
        type, scope) group, trashed flows included. Without the graph the
        copy still gets its START state.

        Raises:
            FlowInconsistentException: The source graph breaks a consistency rule.
        """
        source = await self.get_flow(flow_id)
        fields = {
            **_flow_fields(source),
            **{k: v for k, v in (overrides or {}).items() if k in _FLOW_FIELDS},
            "is_default": False,
            "status": False,
        }
        validate_rollout(fields["rollout_pct"])
        states: list[dict[str, Any]] = []
        transitions: list[dict[str, Any]] = []
        if with_graph:
            graph = await load_flow_graph(self._state_repo, self._transition_repo, flow_id)
            states = [
                {"id": s.id, "type": s.type, "status": s.status, "config": s.config}
                for s in graph.states
            ]
            transitions = [
                {"from_state_id": t.from_state_id, "to_state_id": t.to_state_id, "slug": t.slug}
                for t in graph.transitions
            ]
        plan = self._plan_graph(flow_id, states, transitions)
        latest = await self._flow_repo.max_version(
            fields["subject_type"], fields["subject_scope"]
        )
        fields["version"] = (latest or 0) + 1
        copy = await self._flow_repo.create_flow(**fields)
        await self._write_graph(copy.id, plan)
        logger.info("Duplicated flow %s as %s (v%s)", flow_id, copy.id, copy.version)
        return copy

    async def export(self, flow_id: str, with_graph: bool = True) -> dict[str, Any]:
        """JSON-ready description of a flow (datetimes as ISO strings)."""
        flow = await self.get_flow(flow_id)
        fields = _flow_fields(flow)
        for key in ("active_from", "active_to"):
            if fields[key] is not None:
                fields[key] = fields[key].isoformat()
        payload: dict[str, Any] = {"flow": fields, "states": [], "transitions": []}
        if with_graph:
            graph = await load_flow_graph(self._state_repo, self._transition_repo, flow_id)
            payload["states"] = [
                {"id": s.id, "type": s.type.value, "status": s.status, "config": dict(s.config)}
                for s in graph.states
            ]
            payload["transitions"] = [
                {
                    "id": t.id,
                    "from_state_id": t.from_state_id,
                    "to_state_id": t.to_state_id,
                    "slug": t.slug,
                }
                for t in graph.transitions
            ]
        return payload

    async def import_flow(
        self, payload: dict[str, Any], overrides: dict[str, Any] | None = None
    ) -> FlowEntity:
        """Create a flow from an export payload.

        The imported flow is inactive and non-default unless overrides say
        otherwise. State ids are remapped; transitions keep from/to/slug only.
        The graph is checked before anything is written, and a START state is
        added when the payload has none.

        Raises:
            ValidationException: Missing subject_type or malformed graph entries.
            FlowInconsistentException: The graph breaks a consistency rule.
        """
        overrides = overrides or {}
        source = {**(payload.get("flow") or {}), **overrides}
        fields = {k: v for k, v in source.items() if k in _FLOW_FIELDS}
        if not fields.get("subject_type"):
            raise ValidationException("Import payload has no subject_type", field="subject_type")
        fields["is_default"] = bool(overrides.get("is_default", False))
        fields["status"] = bool(overrides.get("status", False))
        fields["active_from"] = _parse_datetime(fields.get("active_from"))
        fields["active_to"] = _parse_datetime(fields.get("active_to"))
        validate_rollout(fields.get("rollout_pct"))
        validate_active_window(fields["active_from"], fields["active_to"])
        plan = self._plan_graph(
            f"import:{fields['subject_type']}",
            list(payload.get("states") or []),
            list(payload.get("transitions") or []),
        )
        flow = await self._flow_repo.create_flow(**fields)
        await self._write_graph(flow.id, plan)
        if flow.is_default:
            await self._clear_sibling_defaults(flow)
        return flow

    async def validate_consistency(self, flow_id: str) -> None:
        """Lint a stored flow.

        Raises:
            FlowInconsistentException: One or more graph rules are broken.
        """
        await self.get_flow(flow_id)
        graph = await load_flow_graph(self._state_repo, self._transition_repo, flow_id)
        violations: list[GraphViolation] = self._validator.validate_consistency(graph)
        if violations:
            raise FlowInconsistentException(flow_id, [v.to_dict() for v in violations])

    async def preview_pick(
        self, subject: FlowSubject, tuner: PickerTuner | None = None
    ) -> FlowEntity | None:
        """Which flow the default picker (optionally tuned) would choose for subject."""
        if self._picker is None:
            raise ValidationException("No flow picker configured", field="picker")
        builder = FlowPickerBuilder.from_subject(subject)
        if tuner is not None:
            builder = tuner(builder)
        return await self._picker.pick(subject, builder)

    async def get_start_state(self, flow_id: str) -> FlowStateEntity | None:
        return await self._state_repo.get_start_state(flow_id)

    async def get_states(self, flow_id: str) -> list[FlowStateEntity]:
        return await self._state_repo.list_for_flow(flow_id)

    async def get_states_by_status(self, flow_id: str) -> dict[str, FlowStateEntity]:
        """States keyed by status; later states win when a status repeats."""
        return {s.status: s for s in await self.get_states(flow_id) if s.status is not None}

    async def delete_flow(self, flow_id: str) -> None:
        if not await self._flow_repo.soft_delete(flow_id):
            raise ResourceNotFoundException("flow", flow_id)

    async def restore_flow(self, flow_id: str) -> FlowEntity:
        if not await self._flow_repo.restore(flow_id):
            raise ResourceNotFoundException("flow", flow_id)
        return await self.get_flow(flow_id)

    async def force_delete_flow(self, flow_id: str) -> None:
        if not await self._flow_repo.force_delete(flow_id):
            raise ResourceNotFoundException("flow", flow_id)

    async def _clear_sibling_defaults(self, flow: FlowEntity) -> None:
        cleared = await self._flow_repo.clear_default(
            flow.subject_type, flow.subject_scope, flow.version, except_flow_id=flow.id
        )
        if cleared:
            logger.debug("Cleared is_default on %d sibling(s) of flow %s", cleared, flow.id)

    def _plan_graph(
        self,
        label: str,
        states: list[dict[str, Any]],
        transitions: list[dict[str, Any]],
    ) -> FlowGraph:
        """Check a graph about to be written and return it with provisional ids.

        States without an id get a fresh one; a START state is added when
        none is present. Every transition needs at least one endpoint and may
        only name states of the same graph.
        """
        planned: list[FlowStateEntity] = []
        for state in states:
            state_id = str(state.get("id") or generate_cuid())
            if any(s.id == state_id for s in planned):
                raise ValidationException(f"Duplicate state id {state_id!r}", field="states")
            try:
                state_type = FlowStateType(state.get("type") or FlowStateType.STATE)
            except ValueError as e:
                raise ValidationException(
                    f"Unknown state type {state.get('type')!r}", field="states"
                ) from e
            planned.append(
                FlowStateEntity(
                    id=state_id,
                    flow_id=label,
                    type=state_type,
                    status=state.get("status"),
                    config=dict(state.get("config") or {}),
                )
            )
        if not any(s.is_start for s in planned):
            planned.insert(
                0,
                FlowStateEntity(
                    id=generate_cuid(),
                    flow_id=label,
                    type=FlowStateType.START,
                    config=start_state_config(),
                ),
            )

        known = {s.id for s in planned}
        slugs: set[str] = set()
        edges: list[FlowTransitionEntity] = []
        for position, transition in enumerate(transitions):
            from_id = transition.get("from_state_id")
            to_id = transition.get("to_state_id")
            if from_id is None and to_id is None:
                raise ValidationException(
                    "Transition needs a from or a to state", field="transitions"
                )
            for state_id in (from_id, to_id):
                if state_id is not None and state_id not in known:
                    raise ValidationException(
                        f"Transition references unknown state {state_id!r}",
                        field="transitions",
                    )
            slug = transition.get("slug")
            if slug is not None:
                if slug in slugs:
                    raise ValidationException(
                        f"Duplicate transition slug {slug!r}", field="transitions"
                    )
                slugs.add(slug)
            edges.append(
                FlowTransitionEntity(
                    id=f"transition-{position}",
                    flow_id=label,
                    from_state_id=from_id,
                    to_state_id=to_id,
                    slug=slug,
                )
            )

        graph = FlowGraph(flow_id=label, states=tuple(planned), transitions=tuple(edges))
        violations = self._validator.validate_consistency(graph)
        if violations:
            raise FlowInconsistentException(label, [v.to_dict() for v in violations])
        return graph

    async def _write_graph(self, flow_id: str, graph: FlowGraph) -> None:
        """Create a planned graph under flow_id, mapping provisional state ids."""
        state_ids: dict[str, str] = {}
        for state in graph.states:
            created = await self._state_repo.create_state(
                flow_id,
                type=state.type,
                status=state.status,
                config=dict(state.config),
            )
            state_ids[state.id] = created.id
        for transition in graph.transitions:
            await self._transition_repo.create_transition(
                flow_id,
                from_state_id=state_ids.get(transition.from_state_id or ""),
                to_state_id=state_ids.get(transition.to_state_id or ""),
                slug=transition.slug,
            )
