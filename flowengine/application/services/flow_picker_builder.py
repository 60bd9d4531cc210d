"""FlowPickerBuilder: the immutable description of how to pick a flow.

Every fluent method returns a new builder, so a builder can be shared,
tuned per call site and relaxed step by step during the fallback cascade
without any copy leaking changes into another.

    builder = (
        FlowPickerBuilder()
        .for_subject_type("order")
        .on_channel("api")
        .rollout_keyed_by(lambda order: order.customer_id)
        .in_rollout_namespace("order", salt="2024-q3")
        .fallback_cascade(FallbackStep.DROP_CHANNEL, FallbackStep.DISABLE_ROLLOUT)
    )
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any

from flowengine.core.config import get_settings
from flowengine.domain.entities import FlowSubject, subject_scope_of
from flowengine.domain.enums import FallbackStep, PickStrategy

# Resolvers receive the subject being picked for.
ForcedFlowResolver = Callable[[Any], str | None]
RolloutKeyResolver = Callable[[Any], str | int | None]
# Query callbacks receive and return the candidate query (a SQLAlchemy Select);
# where callbacks also get the subject being picked for.
QueryCallback = Callable[[Any], Any]
WhereCallback = Callable[[Any, Any], Any]

# Fields that hold callables; they never take part in the memo key.
_CALLBACK_FIELDS = frozenset({
    "forced_flow_resolver",
    "rollout_key_resolver",
    "where_callbacks",
    "order_by_callback",
})


def _unique(values: Iterable[Any]) -> tuple[Any, ...]:
    """De-duplicate, keeping first-seen order."""
    return tuple(dict.fromkeys(values))


def _non_empty(values: Iterable[str | None]) -> tuple[str, ...]:
    return _unique(v for v in values if v)


@dataclass(frozen=True)
class FlowPickerBuilder:
    """Selection criteria for FlowPicker.

    Filters (subject type/scope, environment, channel, include/exclude ids,
    active window, default flag, version) narrow the candidate set.
    Preferences (prefer ids/environments/channels) only rank candidates.
    """

    subject_type: str | None = None
    subject_scope: str | None = None
    environment: str | None = None
    channel: str | None = None
    only_active: bool = True
    ignore_time_window: bool = False
    now: datetime | None = None
    require_default: bool = False
    version_equals: int | None = None
    version_min: int | None = None
    version_max: int | None = None
    include_ids: tuple[str, ...] = ()
    exclude_ids: tuple[str, ...] = ()
    prefer_ids: tuple[str, ...] = ()
    prefer_environments: tuple[str, ...] = ()
    prefer_channels: tuple[str, ...] = ()
    strategy: PickStrategy = PickStrategy.BEST
    evaluate_rollout: bool = True
    rollout_namespace: str | None = None
    rollout_salt: str | None = None
    fallback: tuple[FallbackStep, ...] = ()
    candidates_limit: int = 0
    cache_in_request: bool = False
    forced_flow_resolver: ForcedFlowResolver | None = None
    rollout_key_resolver: RolloutKeyResolver | None = None
    where_callbacks: tuple[WhereCallback, ...] = ()
    order_by_callback: QueryCallback | None = None

    @classmethod
    def from_subject(
        cls, subject: FlowSubject, now: datetime | None = None
    ) -> FlowPickerBuilder:
        """Default builder for a subject: its type and scope, active flows.

        Strategy and request memo come from settings.
        """
        settings = get_settings()
        return cls(
            subject_type=subject.subject_type,
            subject_scope=subject_scope_of(subject),
            now=now,
            strategy=PickStrategy(settings.picker_default_strategy),
            cache_in_request=settings.picker_request_cache,
        )

    # -- partitioning and filters -------------------------------------------

    def for_subject_type(self, subject_type: str) -> FlowPickerBuilder:
        return replace(self, subject_type=subject_type)

    def in_scope(self, subject_scope: str | None) -> FlowPickerBuilder:
        return replace(self, subject_scope=subject_scope)

    def in_environment(self, environment: str | None) -> FlowPickerBuilder:
        return replace(self, environment=environment or None)

    def on_channel(self, channel: str | None) -> FlowPickerBuilder:
        return replace(self, channel=channel or None)

    def active_only(self, enabled: bool = True) -> FlowPickerBuilder:
        return replace(self, only_active=enabled)

    def ignoring_time_window(self, ignored: bool = True) -> FlowPickerBuilder:
        return replace(self, ignore_time_window=ignored)

    def at(self, now: datetime | None) -> FlowPickerBuilder:
        """Pin "now" for the active-window check (None = current UTC time)."""
        return replace(self, now=now)

    def requiring_default(self, required: bool = True) -> FlowPickerBuilder:
        return replace(self, require_default=required)

    def pinned_version(self, version: int | None) -> FlowPickerBuilder:
        """Exact version; takes precedence over version_between."""
        return replace(self, version_equals=version)

    def version_between(
        self, minimum: int | None = None, maximum: int | None = None
    ) -> FlowPickerBuilder:
        return replace(self, version_min=minimum, version_max=maximum)

    def including(self, *flow_ids: str) -> FlowPickerBuilder:
        return replace(self, include_ids=_unique((*self.include_ids, *flow_ids)))

    def excluding(self, *flow_ids: str) -> FlowPickerBuilder:
        return replace(self, exclude_ids=_unique((*self.exclude_ids, *flow_ids)))

    def where(self, callback: WhereCallback) -> FlowPickerBuilder:
        """Add a custom filter: callback(query, subject) returns the narrowed query."""
        return replace(self, where_callbacks=(*self.where_callbacks, callback))

    # -- ranking ------------------------------------------------------------

    def preferring(self, *flow_ids: str) -> FlowPickerBuilder:
        return replace(self, prefer_ids=_unique((*self.prefer_ids, *flow_ids)))

    def preferring_environments(self, *environments: str | None) -> FlowPickerBuilder:
        return replace(
            self, prefer_environments=_non_empty((*self.prefer_environments, *environments))
        )

    def preferring_channels(self, *channels: str | None) -> FlowPickerBuilder:
        return replace(
            self, prefer_channels=_non_empty((*self.prefer_channels, *channels))
        )

    def using_strategy(self, strategy: PickStrategy | str) -> FlowPickerBuilder:
        return replace(self, strategy=PickStrategy(strategy))

    def pick_first_match(self, enabled: bool = True) -> FlowPickerBuilder:
        return self.using_strategy(PickStrategy.FIRST if enabled else PickStrategy.BEST)

    def order_by(self, callback: QueryCallback) -> FlowPickerBuilder:
        """Replace the default "best" ordering with a custom one."""
        return replace(self, order_by_callback=callback)

    def order_by_default(self) -> FlowPickerBuilder:
        return replace(self, order_by_callback=None)

    def limit_candidates(self, limit: int) -> FlowPickerBuilder:
        """Cap the candidate list; 0 or less means no cap."""
        return replace(self, candidates_limit=max(limit, 0))

    # -- forced flow and rollout --------------------------------------------

    def forced_by(self, resolver: ForcedFlowResolver | None) -> FlowPickerBuilder:
        return replace(self, forced_flow_resolver=resolver)

    def rollout_keyed_by(self, resolver: RolloutKeyResolver | None) -> FlowPickerBuilder:
        return replace(self, rollout_key_resolver=resolver)

    def evaluating_rollout(self, enabled: bool = True) -> FlowPickerBuilder:
        return replace(self, evaluate_rollout=enabled)

    def in_rollout_namespace(
        self, namespace: str | None, salt: str | None = None
    ) -> FlowPickerBuilder:
        return replace(self, rollout_namespace=namespace, rollout_salt=salt)

    # -- fallback and memo --------------------------------------------------

    def fallback_cascade(self, *steps: FallbackStep | str) -> FlowPickerBuilder:
        """Set the relaxation order; unknown steps are dropped, order is kept."""
        valid = set(FallbackStep.values())
        kept = _unique(FallbackStep(s) for s in steps if str(getattr(s, "value", s)) in valid)
        return replace(self, fallback=kept)

    def cached_in_request(self, enabled: bool = True) -> FlowPickerBuilder:
        return replace(self, cache_in_request=enabled)

    def relaxed(self, step: FallbackStep) -> FlowPickerBuilder:
        """Return a copy with one cascade step applied."""
        match step:
            case FallbackStep.DROP_CHANNEL:
                return replace(self, channel=None)
            case FallbackStep.DROP_ENVIRONMENT:
                return replace(self, environment=None)
            case FallbackStep.IGNORE_TIMEWINDOW:
                return replace(self, ignore_time_window=True)
            case FallbackStep.DISABLE_ROLLOUT:
                return replace(self, evaluate_rollout=False)
            case FallbackStep.DROP_REQUIRE_DEFAULT:
                return replace(self, require_default=False)
        raise ValueError(f"Unknown fallback step: {step!r}")

    @property
    def has_dynamic_callbacks(self) -> bool:
        """Custom where/order callbacks make results impossible to memoize."""
        return bool(self.where_callbacks) or self.order_by_callback is not None

    def cache_key(
        self, subject: FlowSubject, rollout_key: str | None
    ) -> Hashable | None:
        """Structural memo key, or None when the builder cannot be memoized.

        Covers every non-callable setting, the subject identity and the
        resolved rollout key.
        """
        if self.has_dynamic_callbacks:
            return None
        scalars = tuple(
            (f.name, getattr(self, f.name))
            for f in fields(self)
            if f.name not in _CALLBACK_FIELDS
        )
        return (
            scalars,
            getattr(subject, "subject_type", None),
            getattr(subject, "subject_id", None),
            rollout_key,
        )
