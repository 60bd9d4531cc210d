"""Flow, state, transition and task management use cases on SQLite."""

from datetime import UTC, datetime, timedelta

import pytest

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
from flowengine.application.services.task_registry import TaskRegistry
from flowengine.application.tasks.base import ActionTask, RestrictionTask
from flowengine.application.tasks.context import TaskContext, TaskDefinition
from flowengine.core.dependencies import (
    get_flow_manager,
    get_state_manager,
    get_task_manager,
    get_transition_manager,
)
from flowengine.domain.enums import FlowStateType, GraphViolationKind
from flowengine.domain.exceptions import (
    DriverUnresolvableException,
    FlowInconsistentException,
    GraphViolationException,
    InvalidActiveWindowException,
    InvalidRolloutException,
    ResourceNotFoundException,
    TaskOrderingConflictException,
    TransitionSlugExistsException,
    ValidationException,
)
from flowengine.domain.value_objects import RestrictionResult
from flowengine.infrastructure.persistence.repositories import (
    FlowRepository,
    FlowTransitionRepository,
)

T0 = datetime(2026, 1, 1, tzinfo=UTC)


class Stamp(ActionTask):
    key = "order.stamp"
    subject = "order"

    def definition(self) -> TaskDefinition:
        return TaskDefinition("Stamp", "Adds a stamp", tags=("audit",))

    def form(self) -> dict:
        return {"n": "integer"}

    async def handle(self, context: TaskContext) -> dict:
        return {"stamp": True}


class Gate(RestrictionTask):
    key = "invoice.gate"
    subject = "invoice"

    def definition(self) -> TaskDefinition:
        return TaskDefinition("Gate")

    async def restriction(self, context: TaskContext) -> RestrictionResult:
        return RestrictionResult.allow()


@pytest.fixture
def managers(db_session):
    registry = TaskRegistry().register(Stamp()).register(Gate())
    return (
        get_flow_manager(db_session),
        get_state_manager(db_session),
        get_transition_manager(db_session),
        get_task_manager(db_session, registry),
    )


@pytest.fixture
def flow_manager(managers):
    return managers[0]


@pytest.fixture
def state_manager(managers):
    return managers[1]


@pytest.fixture
def transition_manager(managers):
    return managers[2]


@pytest.fixture
def task_manager(managers):
    return managers[3]


async def _kind(coro) -> GraphViolationKind:
    with pytest.raises(GraphViolationException) as excinfo:
        await coro
    return excinfo.value.kind


class TestFlowManager:
    async def test_create_flow_creates_start_state(self, flow_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        start = await flow_manager.get_start_state(flow.id)
        assert start is not None
        assert start.type == FlowStateType.START
        assert start.config["is_terminal"] is False
        assert start.config["icon"] == "play"
        assert [s.id for s in await flow_manager.get_states(flow.id)] == [start.id]

    async def test_invalid_rollout_and_window_rejected(self, flow_manager) -> None:
        with pytest.raises(InvalidRolloutException):
            await flow_manager.create_flow(FlowCreate(subject_type="order", rollout_pct=101))
        with pytest.raises(InvalidActiveWindowException):
            await flow_manager.create_flow(
                FlowCreate(subject_type="order", active_from=T0, active_to=T0 - timedelta(days=1))
            )
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        with pytest.raises(InvalidRolloutException):
            await flow_manager.set_rollout(flow.id, -1)
        with pytest.raises(InvalidRolloutException):
            await flow_manager.set_rollout(flow.id, True)

    async def test_single_default_per_group(self, flow_manager) -> None:
        one = await flow_manager.create_flow(FlowCreate(subject_type="order", is_default=True))
        two = await flow_manager.create_flow(FlowCreate(subject_type="order", is_default=True))
        assert not (await flow_manager.get_flow(one.id)).is_default
        await flow_manager.set_default(one.id)
        assert (await flow_manager.get_flow(one.id)).is_default
        assert not (await flow_manager.get_flow(two.id)).is_default

    async def test_update_toggle_window_rollout_reorder(self, flow_manager) -> None:
        a = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        b = await flow_manager.create_flow(FlowCreate(subject_type="order", version=2))

        updated = await flow_manager.update_flow(a.id, FlowUpdate(channel="api", ordering=4))
        assert (updated.channel, updated.ordering) == ("api", 4)
        assert (await flow_manager.toggle_status(a.id)).status is False
        assert (await flow_manager.toggle_status(a.id)).status is True

        windowed = await flow_manager.set_active_window(a.id, T0, T0 + timedelta(days=1))
        assert windowed.active_from == T0
        cleared = await flow_manager.set_active_window(a.id, None, None)
        assert cleared.active_from is None and cleared.active_to is None
        with pytest.raises(InvalidActiveWindowException):
            await flow_manager.update_flow(
                a.id, FlowUpdate(active_from=T0, active_to=T0 - timedelta(hours=1))
            )

        assert (await flow_manager.set_rollout(a.id, 25)).rollout_pct == 25
        assert (await flow_manager.set_rollout(a.id, None)).rollout_pct is None

        reordered = await flow_manager.reorder([b.id, a.id])
        assert [(f.id, f.ordering) for f in reordered] == [(b.id, 1), (a.id, 2)]

    async def test_soft_delete_and_restore(self, flow_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        await flow_manager.delete_flow(flow.id)
        with pytest.raises(ResourceNotFoundException):
            await flow_manager.get_flow(flow.id)
        assert (await flow_manager.restore_flow(flow.id)).id == flow.id
        await flow_manager.force_delete_flow(flow.id)
        with pytest.raises(ResourceNotFoundException):
            await flow_manager.get_flow(flow.id, with_trashed=True)
        with pytest.raises(ResourceNotFoundException):
            await flow_manager.delete_flow("missing")

    async def test_states_by_status(self, flow_manager, state_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        draft = await state_manager.create_state(flow.id, FlowStateCreate(status="draft"))
        by_status = await flow_manager.get_states_by_status(flow.id)
        assert list(by_status) == ["draft"]
        assert by_status["draft"].id == draft.id


async def _approval_flow(flow_manager, state_manager, transition_manager):
    flow = await flow_manager.create_flow(
        FlowCreate(subject_type="order", is_default=True, channel="api", active_from=T0)
    )
    start = await flow_manager.get_start_state(flow.id)
    draft = await state_manager.create_state(flow.id, FlowStateCreate(status="draft"))
    done = await state_manager.create_state(
        flow.id, FlowStateCreate(status="done", is_terminal=True)
    )
    await transition_manager.create_transition(
        flow.id, FlowTransitionCreate(start.id, draft.id, "create")
    )
    await transition_manager.create_transition(
        flow.id, FlowTransitionCreate(draft.id, done.id, "finish")
    )
    await transition_manager.create_transition(flow.id, FlowTransitionCreate(draft.id, None))
    return flow


class TestDuplicateExportImport:
    async def test_duplicate_is_next_inactive_version_with_graph(
        self, flow_manager, state_manager, transition_manager
    ) -> None:
        source = await _approval_flow(flow_manager, state_manager, transition_manager)
        copy = await flow_manager.duplicate(source.id, overrides={"channel": "web", "id": "x"})

        assert copy.id != source.id
        assert copy.version == 2
        assert copy.status is False and copy.is_default is False
        assert copy.channel == "web"
        assert copy.active_from == T0

        source_states = {s.id for s in await flow_manager.get_states(source.id)}
        copy_states = await flow_manager.get_states(copy.id)
        assert len(copy_states) == 3
        assert not source_states & {s.id for s in copy_states}
        copy_edges = await transition_manager.list_transitions(copy.id)
        copy_state_ids = {s.id for s in copy_states}
        assert len(copy_edges) == 3
        for edge in copy_edges:
            assert {edge.from_state_id, edge.to_state_id} - {None} <= copy_state_ids
        await flow_manager.validate_consistency(copy.id)

    async def test_duplicate_without_graph(self, flow_manager, state_manager, transition_manager):
        source = await _approval_flow(flow_manager, state_manager, transition_manager)
        copy = await flow_manager.duplicate(source.id, with_graph=False)
        (start,) = await flow_manager.get_states(copy.id)
        assert start.is_start
        assert await transition_manager.list_transitions(copy.id) == []

    async def test_duplicates_take_the_next_free_version(
        self, flow_manager, state_manager, transition_manager
    ) -> None:
        source = await _approval_flow(flow_manager, state_manager, transition_manager)
        first = await flow_manager.duplicate(source.id)
        await flow_manager.delete_flow(first.id)
        second = await flow_manager.duplicate(source.id)
        assert (first.version, second.version) == (2, 3)

    async def test_export_import_round_trip(
        self, flow_manager, state_manager, transition_manager
    ) -> None:
        source = await _approval_flow(flow_manager, state_manager, transition_manager)
        exported = await flow_manager.export(source.id)

        assert exported["flow"]["active_from"] == T0.isoformat()
        assert {s["type"] for s in exported["states"]} == {"start", "state"}
        assert {t["slug"] for t in exported["transitions"]} == {"create", "finish", None}

        imported = await flow_manager.import_flow(exported, overrides={"version": 7})
        assert imported.version == 7
        assert imported.status is False and imported.is_default is False
        assert imported.active_from == T0
        assert len(await flow_manager.get_states(imported.id)) == 3
        slugs = {t.slug for t in await transition_manager.list_transitions(imported.id)}
        assert slugs == {"create", "finish", None}
        await flow_manager.validate_consistency(imported.id)

    async def test_import_requires_subject_type(self, flow_manager) -> None:
        with pytest.raises(ValidationException):
            await flow_manager.import_flow({"flow": {"version": 1}})

    async def test_inconsistent_import_writes_nothing(self, db_session, flow_manager) -> None:
        payload = {
            "flow": {"subject_type": "order"},
            "states": [
                {"id": "s1", "type": "start"},
                {"id": "s2", "type": "start"},
                {"id": "a", "type": "state", "status": "a"},
                {"id": "b", "type": "state", "status": "b"},
            ],
            "transitions": [
                {"from_state_id": "s1", "to_state_id": "a", "slug": "one"},
                {"from_state_id": "s1", "to_state_id": "b", "slug": "two"},
                {"from_state_id": "a", "to_state_id": "s2"},
            ],
        }
        with pytest.raises(FlowInconsistentException) as excinfo:
            await flow_manager.import_flow(payload)

        kinds = {v["kind"] for v in excinfo.value.details["violations"]}
        assert kinds == {"start_count", "transition_into_start", "start_multiple_outgoing"}
        assert await FlowRepository(db_session).list_by_subject_type("order") == []

    async def test_import_without_states_gets_a_start_state(self, flow_manager) -> None:
        flow = await flow_manager.import_flow({"flow": {"subject_type": "order"}})
        (start,) = await flow_manager.get_states(flow.id)
        assert start.is_start
        await flow_manager.validate_consistency(flow.id)

    @pytest.mark.parametrize(
        "transition",
        [
            {"from_state_id": "start", "to_state_id": "ghost"},
            {"from_state_id": None, "to_state_id": None},
        ],
    )
    async def test_import_rejects_dangling_transitions(
        self, db_session, flow_manager, transition
    ) -> None:
        payload = {
            "flow": {"subject_type": "order"},
            "states": [{"id": "start", "type": "start"}],
            "transitions": [transition],
        }
        with pytest.raises(ValidationException) as excinfo:
            await flow_manager.import_flow(payload)
        assert excinfo.value.details["field"] == "transitions"
        assert await FlowRepository(db_session).list_by_subject_type("order") == []


class TestStateManager:
    async def test_second_start_rejected(self, flow_manager, state_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        kind = await _kind(
            state_manager.create_state(flow.id, FlowStateCreate(type=FlowStateType.START))
        )
        assert kind == GraphViolationKind.START_ALREADY_EXISTS

    async def test_start_not_deletable(self, flow_manager, state_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        start = await flow_manager.get_start_state(flow.id)
        assert await _kind(state_manager.delete_state(start.id)) == (
            GraphViolationKind.START_NOT_DELETABLE
        )

    async def test_state_defaults_and_update(self, flow_manager, state_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        state = await state_manager.create_state(
            flow.id, FlowStateCreate(status="draft", config={"color": "#f00"})
        )
        assert state.config["color"] == "#f00"
        assert state.config["icon"] == "circle"
        assert state.config["is_terminal"] is False

        updated = await state_manager.update_state(
            state.id, FlowStateUpdate(status="closed", is_terminal=True)
        )
        assert updated.status == "closed"
        assert updated.is_terminal
        assert updated.config["color"] == "#f00"

    async def test_start_never_terminal(self, flow_manager, state_manager) -> None:
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        start = await flow_manager.get_start_state(flow.id)
        updated = await state_manager.update_state(start.id, FlowStateUpdate(is_terminal=True))
        assert not updated.is_terminal

    async def test_state_with_generic_exit_cannot_become_terminal(
        self, flow_manager, state_manager, transition_manager
    ) -> None:
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        draft = (await flow_manager.get_states_by_status(flow.id))["draft"]
        kind = await _kind(
            state_manager.update_state(draft.id, FlowStateUpdate(is_terminal=True))
        )
        assert kind == GraphViolationKind.TERMINAL_GENERIC_EXIT

    async def test_deleting_state_removes_its_transitions(
        self, flow_manager, state_manager, transition_manager
    ) -> None:
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        done = (await flow_manager.get_states_by_status(flow.id))["done"]
        await state_manager.delete_state(done.id)
        slugs = {t.slug for t in await transition_manager.list_transitions(flow.id)}
        assert slugs == {"create", None}


class TestTransitionManager:
    async def test_start_rules_scenario(self, flow_manager, state_manager, transition_manager):
        """Nothing may enter START; START gets exactly one outgoing edge."""
        flow = await flow_manager.create_flow(FlowCreate(subject_type="order"))
        start = await flow_manager.get_start_state(flow.id)
        s1 = await state_manager.create_state(flow.id, FlowStateCreate(status="s1"))
        s2 = await state_manager.create_state(flow.id, FlowStateCreate(status="s2"))

        assert await _kind(
            transition_manager.create_transition(flow.id, FlowTransitionCreate(None, start.id))
        ) == GraphViolationKind.TRANSITION_INTO_START
        await transition_manager.create_transition(flow.id, FlowTransitionCreate(start.id, s1.id))
        assert await _kind(
            transition_manager.create_transition(flow.id, FlowTransitionCreate(start.id, s2.id))
        ) == GraphViolationKind.START_MULTIPLE_OUTGOING

    async def test_slug_rules(self, flow_manager, state_manager, transition_manager) -> None:
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        states = await flow_manager.get_states_by_status(flow.id)
        with pytest.raises(ValidationException):
            await transition_manager.create_transition(
                flow.id, FlowTransitionCreate(states["done"].id, states["draft"].id, "Bad Slug")
            )
        with pytest.raises(TransitionSlugExistsException):
            await transition_manager.create_transition(
                flow.id, FlowTransitionCreate(states["done"].id, states["draft"].id, "finish")
            )
        reopened = await transition_manager.create_transition(
            flow.id, FlowTransitionCreate(states["done"].id, states["draft"].id, "  reopen ")
        )
        assert reopened.slug == "reopen"
        assert (await transition_manager.get_transition("reopen")).id == reopened.id

    async def test_update_excludes_itself(self, flow_manager, state_manager, transition_manager):
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        finish = await transition_manager.get_transition("finish")
        same = await transition_manager.update_transition(
            finish.id,
            FlowTransitionUpdate(finish.from_state_id, finish.to_state_id, "finish"),
        )
        assert same.id == finish.id
        renamed = await transition_manager.update_transition(
            finish.id,
            FlowTransitionUpdate(finish.from_state_id, finish.to_state_id, "complete"),
        )
        assert renamed.slug == "complete"
        with pytest.raises(ResourceNotFoundException):
            await transition_manager.get_transition("finish")

    async def test_start_edge_deleted_last(self, flow_manager, state_manager, transition_manager):
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        create = await transition_manager.get_transition("create")
        assert await _kind(transition_manager.delete_transition(create.id)) == (
            GraphViolationKind.START_EDGE_NOT_DELETABLE
        )
        for edge in await transition_manager.list_transitions(flow.id):
            if edge.id != create.id:
                await transition_manager.delete_transition(edge.id)
        await transition_manager.delete_transition(create.id)
        assert await transition_manager.list_transitions(flow.id) == []

    async def test_consistency_lint_reports_violations(
        self, db_session, flow_manager, state_manager, transition_manager
    ) -> None:
        flow = await _approval_flow(flow_manager, state_manager, transition_manager)
        await flow_manager.validate_consistency(flow.id)
        # Bypass the graph rules to store a broken edge.
        repo = FlowTransitionRepository(db_session)
        start = await flow_manager.get_start_state(flow.id)
        done = (await flow_manager.get_states_by_status(flow.id))["done"]
        await repo.create_transition(flow.id, from_state_id=done.id, to_state_id=start.id, slug=None)
        with pytest.raises(FlowInconsistentException) as excinfo:
            await flow_manager.validate_consistency(flow.id)
        kinds = {v["kind"] for v in excinfo.value.details["violations"]}
        assert kinds == {"transition_into_start"}


class TestTaskManager:
    async def _transition_id(self, flow_manager, state_manager, transition_manager) -> str:
        await _approval_flow(flow_manager, state_manager, transition_manager)
        return (await transition_manager.get_transition("finish")).id

    async def test_orderings_default_to_last_and_stay_unique(
        self, flow_manager, state_manager, transition_manager, task_manager
    ) -> None:
        tid = await self._transition_id(flow_manager, state_manager, transition_manager)
        first = await task_manager.create_task(tid, FlowTaskCreate("order.stamp"))
        second = await task_manager.create_task(tid, FlowTaskCreate("order.stamp", {"n": 2}))
        assert (first.ordering, second.ordering) == (1, 2)
        with pytest.raises(TaskOrderingConflictException):
            await task_manager.create_task(tid, FlowTaskCreate("order.stamp", ordering=2))
        with pytest.raises(TaskOrderingConflictException):
            await task_manager.update_task(first.id, FlowTaskUpdate(ordering=2))
        moved = await task_manager.update_task(first.id, FlowTaskUpdate(ordering=5, status=False))
        assert (moved.ordering, moved.status) == (5, False)
        assert [t.id for t in await task_manager.list_tasks(tid)] == [second.id, first.id]
        await task_manager.delete_task(first.id)
        assert [t.id for t in await task_manager.list_tasks(tid)] == [second.id]

    async def test_driver_must_serve_the_flow_subject(
        self, flow_manager, state_manager, transition_manager, task_manager
    ) -> None:
        tid = await self._transition_id(flow_manager, state_manager, transition_manager)
        with pytest.raises(DriverUnresolvableException):
            await task_manager.create_task(tid, FlowTaskCreate("invoice.gate"))
        with pytest.raises(DriverUnresolvableException):
            await task_manager.create_task(tid, FlowTaskCreate("nope"))

    async def test_catalog_and_details(self, task_manager) -> None:
        assert [d["key"] for d in task_manager.drivers("order")] == ["order.stamp"]
        details = task_manager.details("order.stamp")
        assert details["type"] == "action"
        assert details["form"] == {"n": "integer"}
        assert details["definition"]["tags"] == ["audit"]
