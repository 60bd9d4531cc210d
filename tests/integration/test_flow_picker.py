"""FlowPicker integration tests on SQLite: filters, ranking, rollout, fallback, memo."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
from flowengine.application.services.rollout import stable_bucket
from flowengine.core.request_context import request_scope
from flowengine.domain.enums import FallbackStep
from flowengine.infrastructure.persistence.models import Flow
from flowengine.infrastructure.persistence.repositories import FlowRepository
from flowengine.infrastructure.services import FlowPicker

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def flows(db_session) -> FlowRepository:
    return FlowRepository(db_session)


@pytest.fixture
def picker(db_session) -> FlowPicker:
    return FlowPicker(db_session)


def _builder() -> FlowPickerBuilder:
    return FlowPickerBuilder().for_subject_type("order").at(NOW)


def _key_with_bucket(predicate) -> str:
    """A rollout key whose bucket (namespace 'order', salt 't') satisfies predicate."""
    return next(
        key
        for key in (f"cust-{i}" for i in range(10_000))
        if predicate(stable_bucket("order", "t", key))
    )


async def test_best_strategy_prefers_highest_version(flows, picker, order) -> None:
    await flows.create_flow(subject_type="order", version=3)
    v5 = await flows.create_flow(subject_type="order", version=5)
    picked = await picker.pick(order, _builder())
    assert picked is not None
    assert picked.id == v5.id


async def test_best_ordering_tiebreaks(flows, picker, order) -> None:
    plain = await flows.create_flow(subject_type="order", version=2, ordering=9)
    default = await flows.create_flow(subject_type="order", version=2, is_default=True)
    candidates = await picker.candidates(order, _builder())
    assert [f.id for f in candidates] == [default.id, plain.id]


async def test_first_strategy_orders_by_id(flows, picker, order) -> None:
    created = [await flows.create_flow(subject_type="order", version=v) for v in (1, 2, 3)]
    candidates = await picker.candidates(order, _builder().pick_first_match())
    assert [f.id for f in candidates] == sorted(f.id for f in created)


async def test_filters_partition_by_subject_type_and_scope(flows, picker, make_order) -> None:
    await flows.create_flow(subject_type="invoice")
    acme = await flows.create_flow(subject_type="order", subject_scope="acme")
    await flows.create_flow(subject_type="order", subject_scope="globex")
    subject = make_order(subject_scope="acme")
    picked = await picker.pick(subject, FlowPickerBuilder.from_subject(subject, now=NOW))
    assert picked is not None
    assert picked.id == acme.id


async def test_inactive_deleted_and_out_of_window_flows_are_skipped(flows, picker, order) -> None:
    await flows.create_flow(subject_type="order", version=9, status=False)
    deleted = await flows.create_flow(subject_type="order", version=8)
    await flows.soft_delete(deleted.id)
    await flows.create_flow(
        subject_type="order", version=7, active_from=NOW + timedelta(days=1)
    )
    await flows.create_flow(subject_type="order", version=6, active_to=NOW - timedelta(days=1))
    live = await flows.create_flow(
        subject_type="order",
        version=1,
        active_from=NOW - timedelta(days=1),
        active_to=NOW + timedelta(days=1),
    )
    assert [f.id for f in await picker.candidates(order, _builder())] == [live.id]
    ignoring = await picker.candidates(order, _builder().ignoring_time_window())
    assert [f.version for f in ignoring] == [7, 6, 1]
    everything = await picker.candidates(order, _builder().active_only(False))
    assert [f.version for f in everything] == [9, 7, 6, 1]


async def test_window_in_other_timezone_is_compared_in_utc(flows, picker, order) -> None:
    plus_two = datetime(2026, 3, 1, 15, 30, tzinfo=timezone(timedelta(hours=2)))
    flow = await flows.create_flow(subject_type="order", active_from=plus_two)
    assert await picker.pick(order, _builder()) is None
    later = _builder().at(NOW + timedelta(hours=2))
    picked = await picker.pick(order, later)
    assert picked is not None and picked.id == flow.id


async def test_version_default_and_id_filters(flows, picker, order) -> None:
    v1 = await flows.create_flow(subject_type="order", version=1, is_default=True)
    v2 = await flows.create_flow(subject_type="order", version=2)
    v3 = await flows.create_flow(subject_type="order", version=3)

    assert (await picker.pick(order, _builder().pinned_version(2))).id == v2.id
    between = await picker.candidates(order, _builder().version_between(2, 3))
    assert [f.id for f in between] == [v3.id, v2.id]
    assert (await picker.pick(order, _builder().requiring_default())).id == v1.id
    assert (await picker.pick(order, _builder().excluding(v3.id))).id == v2.id
    included = await picker.candidates(order, _builder().including(v1.id, v2.id))
    assert {f.id for f in included} == {v1.id, v2.id}
    limited = await picker.candidates(order, _builder().limit_candidates(1))
    assert [f.id for f in limited] == [v3.id]


async def test_preferences_rank_but_never_exclude(flows, picker, order) -> None:
    web = await flows.create_flow(subject_type="order", version=1, channel="web")
    api = await flows.create_flow(subject_type="order", version=2, channel="api")
    prod = await flows.create_flow(subject_type="order", version=3, environment="prod")

    ranked = await picker.candidates(order, _builder().preferring(web.id))
    assert [f.id for f in ranked] == [web.id, prod.id, api.id]
    by_channel = await picker.candidates(order, _builder().preferring_channels("web", "api"))
    assert [f.id for f in by_channel] == [web.id, api.id, prod.id]
    by_env = await picker.candidates(order, _builder().preferring_environments("stage"))
    assert len(by_env) == 3


async def test_channel_and_environment_filters(flows, picker, order) -> None:
    await flows.create_flow(subject_type="order", version=1, channel="web")
    api = await flows.create_flow(subject_type="order", version=2, channel="api", environment="prod")
    picked = await picker.pick(order, _builder().on_channel("api").in_environment("prod"))
    assert picked is not None and picked.id == api.id
    assert await picker.pick(order, _builder().on_channel("api").in_environment("dev")) is None


async def test_custom_where_and_order_callbacks(flows, picker, order) -> None:
    low = await flows.create_flow(subject_type="order", version=1, ordering=5)
    high = await flows.create_flow(subject_type="order", version=2, ordering=1)
    builder = _builder().order_by(lambda q: q.order_by(Flow.ordering.desc()))
    assert (await picker.pick(order, builder)).id == low.id
    only_high = _builder().where(lambda q, subject: q.where(Flow.ordering < 3))
    assert [f.id for f in await picker.candidates(order, only_high)] == [high.id]


async def test_where_callback_receives_the_subject(flows, picker, make_order) -> None:
    web = await flows.create_flow(subject_type="order", channel="web")
    api = await flows.create_flow(subject_type="order", version=2, channel="api")
    seen = []

    def by_customer_channel(q, subject):
        seen.append(subject.subject_id)
        return q.where(Flow.channel == subject.customer_id)

    builder = _builder().where(by_customer_channel)
    assert (await picker.pick(make_order("ord-9", customer_id="web"), builder)).id == web.id
    assert (await picker.pick(make_order("ord-8", customer_id="api"), builder)).id == api.id
    assert seen == ["ord-9", "ord-8"]


class TestRollout:
    async def test_gated_flow_admits_by_bucket(self, flows, picker, make_order) -> None:
        gated = await flows.create_flow(subject_type="order", rollout_pct=50)
        builder = (
            _builder()
            .rollout_keyed_by(lambda s: s.customer_id)
            .in_rollout_namespace("order", salt="t")
        )
        inside = make_order(customer_id=_key_with_bucket(lambda b: b <= 50))
        outside = make_order(customer_id=_key_with_bucket(lambda b: b > 50))
        picked = await picker.pick(inside, builder)
        assert picked is not None and picked.id == gated.id
        assert await picker.pick(outside, builder) is None

    async def test_zero_percent_admits_only_bucket_zero(self, flows, picker, make_order) -> None:
        await flows.create_flow(subject_type="order", rollout_pct=0)
        builder = (
            _builder()
            .rollout_keyed_by(lambda s: s.customer_id)
            .in_rollout_namespace("order", salt="t")
        )
        zero = make_order(customer_id=_key_with_bucket(lambda b: b == 0))
        other = make_order(customer_id=_key_with_bucket(lambda b: b != 0))
        assert await picker.pick(zero, builder) is not None
        assert await picker.pick(other, builder) is None

    async def test_no_key_excludes_gated_flows(self, flows, picker, make_order) -> None:
        await flows.create_flow(subject_type="order", version=2, rollout_pct=100)
        ungated = await flows.create_flow(subject_type="order", version=1)
        builder = _builder().rollout_keyed_by(lambda s: s.customer_id)
        picked = await picker.pick(make_order(customer_id=None), builder)
        assert picked is not None and picked.id == ungated.id
        assert (await picker.pick(make_order(customer_id=""), builder)).id == ungated.id

    async def test_disabled_rollout_ignores_gate(self, flows, picker, order) -> None:
        gated = await flows.create_flow(subject_type="order", rollout_pct=0)
        picked = await picker.pick(order, _builder().evaluating_rollout(False))
        assert picked is not None and picked.id == gated.id


class TestFallback:
    async def test_drop_channel_finds_flow(self, flows, picker, order) -> None:
        web = await flows.create_flow(subject_type="order", channel="web")
        strict = _builder().on_channel("api")
        assert await picker.pick(order, strict) is None
        relaxed = strict.fallback_cascade(FallbackStep.DROP_CHANNEL)
        picked = await picker.pick(order, relaxed)
        assert picked is not None and picked.id == web.id

    async def test_cascade_is_cumulative_and_stops_early(self, flows, picker, make_order) -> None:
        """Dropping the channel alone is not enough; disabling rollout afterwards is."""
        gated = await flows.create_flow(subject_type="order", channel="web", rollout_pct=0)
        builder = (
            _builder()
            .on_channel("api")
            .rollout_keyed_by(lambda s: s.customer_id)
            .in_rollout_namespace("order", salt="t")
            .fallback_cascade(
                FallbackStep.DROP_CHANNEL,
                FallbackStep.DISABLE_ROLLOUT,
                FallbackStep.IGNORE_TIMEWINDOW,
            )
        )
        subject = make_order(customer_id=_key_with_bucket(lambda b: b > 0))
        first = await picker.pick(subject, builder)
        assert first is not None and first.id == gated.id
        assert await picker.pick(subject, builder) == first
        # The original builder is untouched by the cascade.
        assert builder.channel == "api"
        assert builder.evaluate_rollout is True

    async def test_exhausted_cascade_returns_none(self, flows, picker, order) -> None:
        await flows.create_flow(subject_type="order", status=False)
        builder = _builder().fallback_cascade(*FallbackStep)
        assert await picker.pick(order, builder) is None


class TestForcedFlow:
    async def test_forced_flow_wins(self, flows, picker, order) -> None:
        await flows.create_flow(subject_type="order", version=5)
        forced = await flows.create_flow(subject_type="order", version=1)
        picked = await picker.pick(order, _builder().forced_by(lambda s: forced.id))
        assert picked is not None and picked.id == forced.id

    async def test_inactive_forced_flow_is_none(self, flows, picker, order) -> None:
        await flows.create_flow(subject_type="order", version=5)
        inactive = await flows.create_flow(subject_type="order", version=1, status=False)
        assert await picker.pick(order, _builder().forced_by(lambda s: inactive.id)) is None

    async def test_forced_flow_outside_window_is_none(self, flows, picker, order) -> None:
        expired = await flows.create_flow(
            subject_type="order", active_to=NOW - timedelta(days=1)
        )
        builder = _builder().forced_by(lambda s: expired.id)
        assert await picker.pick(order, builder) is None
        assert (await picker.pick(order, builder.ignoring_time_window())).id == expired.id

    async def test_unknown_or_deleted_forced_id_is_none(self, flows, picker, order) -> None:
        gone = await flows.create_flow(subject_type="order")
        await flows.soft_delete(gone.id)
        assert await picker.pick(order, _builder().forced_by(lambda s: gone.id)) is None
        assert await picker.pick(order, _builder().forced_by(lambda s: "missing")) is None

    async def test_resolver_returning_none_falls_through(self, flows, picker, order) -> None:
        flow = await flows.create_flow(subject_type="order")
        picked = await picker.pick(order, _builder().forced_by(lambda s: None))
        assert picked is not None and picked.id == flow.id


class TestRequestMemo:
    async def test_memoized_within_scope(self, flows, picker, order) -> None:
        first = await flows.create_flow(subject_type="order", version=1)
        builder = _builder().cached_in_request()
        with request_scope() as memo:
            assert (await picker.pick(order, builder)).id == first.id
            await flows.create_flow(subject_type="order", version=2)
            assert (await picker.pick(order, builder)).id == first.id
            assert len(memo) == 1
        # New scope, fresh answer.
        with request_scope():
            assert (await picker.pick(order, builder)).version == 2

    async def test_no_memo_outside_scope_or_with_callbacks(self, flows, picker, order) -> None:
        await flows.create_flow(subject_type="order", version=1)
        builder = _builder().cached_in_request()
        assert (await picker.pick(order, builder)).version == 1
        await flows.create_flow(subject_type="order", version=2)
        assert (await picker.pick(order, builder)).version == 2
        with request_scope() as memo:
            await picker.pick(order, builder.where(lambda q, subject: q))
            assert memo == {}
