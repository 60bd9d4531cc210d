"""Tests for FlowPickerBuilder (immutable fluent configuration)."""

import os
from unittest.mock import patch

import pytest

from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
from flowengine.domain.enums import FallbackStep, PickStrategy


def test_fluent_methods_return_new_builders() -> None:
    base = FlowPickerBuilder().for_subject_type("order")
    tuned = base.on_channel("api").in_environment("prod")
    assert base.channel is None and base.environment is None
    assert tuned.channel == "api" and tuned.environment == "prod"
    assert tuned.subject_type == "order"


def test_empty_channel_and_environment_mean_unset() -> None:
    builder = FlowPickerBuilder().on_channel("").in_environment("")
    assert builder.channel is None
    assert builder.environment is None


def test_id_lists_are_deduplicated_in_order() -> None:
    builder = FlowPickerBuilder().preferring("b", "a").preferring("b", "c").excluding("x", "x")
    assert builder.prefer_ids == ("b", "a", "c")
    assert builder.exclude_ids == ("x",)
    assert FlowPickerBuilder().preferring_channels("web", None, "", "web").prefer_channels == (
        "web",
    )


def test_fallback_cascade_drops_unknown_steps() -> None:
    builder = FlowPickerBuilder().fallback_cascade(
        "drop_channel", "bogus", FallbackStep.DISABLE_ROLLOUT, "drop_channel"
    )
    assert builder.fallback == (FallbackStep.DROP_CHANNEL, FallbackStep.DISABLE_ROLLOUT)


@pytest.mark.parametrize(
    ("step", "attr", "value"),
    [
        (FallbackStep.DROP_CHANNEL, "channel", None),
        (FallbackStep.DROP_ENVIRONMENT, "environment", None),
        (FallbackStep.IGNORE_TIMEWINDOW, "ignore_time_window", True),
        (FallbackStep.DISABLE_ROLLOUT, "evaluate_rollout", False),
        (FallbackStep.DROP_REQUIRE_DEFAULT, "require_default", False),
    ],
)
def test_relaxed_applies_one_step(step: FallbackStep, attr: str, value: object) -> None:
    builder = (
        FlowPickerBuilder()
        .on_channel("api")
        .in_environment("prod")
        .requiring_default()
    )
    relaxed = builder.relaxed(step)
    assert getattr(relaxed, attr) == value
    assert relaxed is not builder


def test_strategy_helpers() -> None:
    assert FlowPickerBuilder().pick_first_match().strategy == PickStrategy.FIRST
    assert FlowPickerBuilder().using_strategy("best").strategy == PickStrategy.BEST
    with pytest.raises(ValueError):
        FlowPickerBuilder().using_strategy("random")


def test_limit_candidates_never_negative() -> None:
    assert FlowPickerBuilder().limit_candidates(-5).candidates_limit == 0
    assert FlowPickerBuilder().limit_candidates(3).candidates_limit == 3


def test_from_subject_uses_settings(make_order) -> None:
    with patch.dict(
        os.environ,
        {"PICKER_DEFAULT_STRATEGY": "first", "PICKER_REQUEST_CACHE": "true"},
    ):
        builder = FlowPickerBuilder.from_subject(make_order(subject_scope="acme"))
    assert builder.subject_type == "order"
    assert builder.subject_scope == "acme"
    assert builder.strategy == PickStrategy.FIRST
    assert builder.cache_in_request is True


class TestCacheKey:
    def test_equal_builders_share_a_key(self, order) -> None:
        one = FlowPickerBuilder().for_subject_type("order").on_channel("api")
        two = FlowPickerBuilder().for_subject_type("order").on_channel("api")
        assert one.cache_key(order, "k") == two.cache_key(order, "k")
        assert hash(one.cache_key(order, "k"))

    def test_key_covers_settings_subject_and_rollout_key(self, make_order) -> None:
        builder = FlowPickerBuilder().for_subject_type("order")
        base = builder.cache_key(make_order("1"), "k")
        assert base != builder.on_channel("api").cache_key(make_order("1"), "k")
        assert base != builder.cache_key(make_order("2"), "k")
        assert base != builder.cache_key(make_order("1"), "other")

    def test_resolvers_do_not_change_the_key(self, order) -> None:
        builder = FlowPickerBuilder().for_subject_type("order")
        keyed = builder.rollout_keyed_by(lambda s: s.customer_id)
        assert builder.cache_key(order, "k") == keyed.cache_key(order, "k")

    def test_dynamic_callbacks_disable_memo(self, order) -> None:
        assert FlowPickerBuilder().where(lambda q, subject: q).cache_key(order, None) is None
        assert FlowPickerBuilder().order_by(lambda q: q).cache_key(order, None) is None
        assert FlowPickerBuilder().order_by(lambda q: q).order_by_default().cache_key(
            order, None
        ) is not None
