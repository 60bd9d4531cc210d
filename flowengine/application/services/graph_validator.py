"""Flow graph rules.

Every check takes an immutable FlowGraph snapshot plus the proposed change
and either returns quietly or raises GraphViolationException. Nothing here
reads or writes storage; use cases load the snapshot and commit the change
only after the checks pass.

Transition checks run in a fixed order and the first violation wins:
missing endpoints, unknown states, self-loop on start, edge into start,
duplicate edge, first edge not from start, second edge out of start, and
generic exit from a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flowengine.domain.entities import FlowStateEntity, FlowTransitionEntity
from flowengine.domain.enums import FlowStateType, GraphViolationKind
from flowengine.domain.exceptions import GraphViolationException
from flowengine.shared.telemetry.tracing import traced

_MESSAGES: dict[GraphViolationKind, str] = {
    GraphViolationKind.START_ALREADY_EXISTS: "Flow already has a START state.",
    GraphViolationKind.START_NOT_DELETABLE: "Flow state `start` type is not deletable.",
    GraphViolationKind.START_SELF_LOOP: "START state cannot transition to itself.",
    GraphViolationKind.TRANSITION_INTO_START: "START state must not have incoming transitions.",
    GraphViolationKind.DUPLICATE_TRANSITION: "Flow transition already exists.",
    GraphViolationKind.FIRST_TRANSITION_NOT_FROM_START: (
        "The first transition of a flow must leave the START state."
    ),
    GraphViolationKind.START_MULTIPLE_OUTGOING: (
        "START state may have only one outgoing transition."
    ),
    GraphViolationKind.TERMINAL_GENERIC_EXIT: (
        "A terminal state cannot have a generic outgoing transition."
    ),
    GraphViolationKind.MISSING_ENDPOINTS: "Flow transition needs a `from` or a `to` state.",
    GraphViolationKind.UNKNOWN_STATE: "Flow transition references a state outside the flow.",
    GraphViolationKind.START_EDGE_NOT_DELETABLE: (
        "The transition leaving START can only be deleted when it is the last transition."
    ),
    GraphViolationKind.START_COUNT: "Flow must have exactly one START state.",
}


@dataclass(frozen=True)
class GraphViolation:
    """One broken rule, as reported by the consistency lint pass."""

    kind: GraphViolationKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details}


@dataclass(frozen=True)
class FlowGraph:
    """Snapshot of one flow's states and transitions."""

    flow_id: str
    states: tuple[FlowStateEntity, ...] = ()
    transitions: tuple[FlowTransitionEntity, ...] = ()

    @property
    def start_states(self) -> list[FlowStateEntity]:
        return [s for s in self.states if s.type == FlowStateType.START]

    @property
    def start_state(self) -> FlowStateEntity | None:
        starts = self.start_states
        return starts[0] if starts else None

    def state(self, state_id: str) -> FlowStateEntity | None:
        return next((s for s in self.states if s.id == state_id), None)

    def transitions_excluding(
        self, transition_id: str | None
    ) -> list[FlowTransitionEntity]:
        return [t for t in self.transitions if t.id != transition_id]


def _raise(kind: GraphViolationKind, graph: FlowGraph, **details: Any) -> None:
    raise GraphViolationException(kind, _MESSAGES[kind], flow_id=graph.flow_id, **details)


@traced("flow_graph.check_state_creation")
def check_state_creation(graph: FlowGraph, state_type: FlowStateType) -> None:
    """A flow has at most one START state."""
    if state_type == FlowStateType.START and graph.start_states:
        _raise(GraphViolationKind.START_ALREADY_EXISTS, graph)


@traced("flow_graph.check_state_deletion")
def check_state_deletion(graph: FlowGraph, state_id: str) -> None:
    """The START state can never be deleted."""
    state = graph.state(state_id)
    if state is not None and state.is_start:
        _raise(GraphViolationKind.START_NOT_DELETABLE, graph, state_id=state_id)


@traced("flow_graph.check_state_update")
def check_state_update(graph: FlowGraph, state_id: str, is_terminal: bool) -> None:
    """A state with a generic exit cannot be made terminal."""
    if not is_terminal:
        return
    if any(t.is_generic_output and t.from_state_id == state_id for t in graph.transitions):
        _raise(GraphViolationKind.TERMINAL_GENERIC_EXIT, graph, state_id=state_id)


@traced("flow_graph.check_transition")
def check_transition(
    graph: FlowGraph,
    from_state_id: str | None,
    to_state_id: str | None,
    *,
    exclude_transition_id: str | None = None,
) -> None:
    """Check a transition about to be created (or updated, via exclude_transition_id)."""
    if from_state_id is None and to_state_id is None:
        _raise(GraphViolationKind.MISSING_ENDPOINTS, graph)
    for state_id in (from_state_id, to_state_id):
        if state_id is not None and graph.state(state_id) is None:
            _raise(GraphViolationKind.UNKNOWN_STATE, graph, state_id=state_id)

    start = graph.start_state
    start_id = start.id if start else None
    others = graph.transitions_excluding(exclude_transition_id)
    edge = {"from_state_id": from_state_id, "to_state_id": to_state_id}

    if start_id is not None and from_state_id == start_id and to_state_id == start_id:
        _raise(GraphViolationKind.START_SELF_LOOP, graph, **edge)
    if start_id is not None and to_state_id == start_id:
        _raise(GraphViolationKind.TRANSITION_INTO_START, graph, **edge)
    if any(
        t.from_state_id == from_state_id and t.to_state_id == to_state_id for t in others
    ):
        _raise(GraphViolationKind.DUPLICATE_TRANSITION, graph, **edge)
    if not others and (start_id is None or from_state_id != start_id):
        _raise(GraphViolationKind.FIRST_TRANSITION_NOT_FROM_START, graph, **edge)
    if (
        start_id is not None
        and from_state_id == start_id
        and any(t.from_state_id == start_id for t in others)
    ):
        _raise(GraphViolationKind.START_MULTIPLE_OUTGOING, graph, **edge)
    if from_state_id is not None and to_state_id is None:
        origin = graph.state(from_state_id)
        if origin is not None and origin.is_terminal:
            _raise(GraphViolationKind.TERMINAL_GENERIC_EXIT, graph, **edge)


@traced("flow_graph.check_transition_deletion")
def check_transition_deletion(graph: FlowGraph, transition_id: str) -> None:
    """The edge leaving START goes last: deleting it first would orphan the graph."""
    start = graph.start_state
    transition = next((t for t in graph.transitions if t.id == transition_id), None)
    if start is None or transition is None:
        return
    if transition.from_state_id == start.id and len(graph.transitions) > 1:
        _raise(
            GraphViolationKind.START_EDGE_NOT_DELETABLE,
            graph,
            transition_id=transition_id,
        )


def validate_consistency(graph: FlowGraph) -> list[GraphViolation]:
    """Lint a stored flow; return every violation found (empty when valid)."""
    violations: list[GraphViolation] = []

    def add(kind: GraphViolationKind, **details: Any) -> None:
        violations.append(GraphViolation(kind, _MESSAGES[kind], details))

    starts = graph.start_states
    if len(starts) != 1:
        add(GraphViolationKind.START_COUNT, count=len(starts))
    start_ids = {s.id for s in starts}

    seen: set[tuple[str | None, str | None]] = set()
    for t in graph.transitions:
        if t.to_state_id in start_ids:
            add(GraphViolationKind.TRANSITION_INTO_START, transition_id=t.id)
        pair = (t.from_state_id, t.to_state_id)
        if pair in seen:
            add(GraphViolationKind.DUPLICATE_TRANSITION, transition_id=t.id)
        seen.add(pair)
        if t.is_generic_output:
            origin = graph.state(t.from_state_id or "")
            if origin is not None and origin.is_terminal:
                add(GraphViolationKind.TERMINAL_GENERIC_EXIT, transition_id=t.id)

    for start_id in start_ids:
        outgoing = [t.id for t in graph.transitions if t.from_state_id == start_id]
        if len(outgoing) > 1:
            add(GraphViolationKind.START_MULTIPLE_OUTGOING, transition_ids=outgoing)
    return violations


class WorkflowGraphValidator:
    """Injectable façade over the graph rules (one instance can be shared)."""

    def check_state_creation(self, graph: FlowGraph, state_type: FlowStateType) -> None:
        check_state_creation(graph, state_type)

    def check_state_deletion(self, graph: FlowGraph, state_id: str) -> None:
        check_state_deletion(graph, state_id)

    def check_state_update(self, graph: FlowGraph, state_id: str, is_terminal: bool) -> None:
        check_state_update(graph, state_id, is_terminal)

    def check_transition(
        self,
        graph: FlowGraph,
        from_state_id: str | None,
        to_state_id: str | None,
        *,
        exclude_transition_id: str | None = None,
    ) -> None:
        check_transition(
            graph,
            from_state_id,
            to_state_id,
            exclude_transition_id=exclude_transition_id,
        )

    def check_transition_deletion(self, graph: FlowGraph, transition_id: str) -> None:
        check_transition_deletion(graph, transition_id)

    def validate_consistency(self, graph: FlowGraph) -> list[GraphViolation]:
        return validate_consistency(graph)
