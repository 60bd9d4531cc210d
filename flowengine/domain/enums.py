"""Domain enumerations for flows, tasks and the picker.

All are str Enums so values round-trip through JSON and SQL columns
unchanged.
"""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class FlowStateType(_ValuesMixin, str, Enum):
    """Kind of graph node. Terminality is a separate flag in the state config."""

    START = "start"
    STATE = "state"


class TaskType(_ValuesMixin, str, Enum):
    """Task driver variant; decides the pipeline phase a task runs in."""

    RESTRICTION = "restriction"
    VALIDATION = "validation"
    ACTION = "action"


class PickStrategy(_ValuesMixin, str, Enum):
    """Candidate ordering: fully ranked (best) or by id only (first)."""

    BEST = "best"
    FIRST = "first"


class FallbackStep(_ValuesMixin, str, Enum):
    """One relaxation of the picker's constraints."""

    DROP_CHANNEL = "drop_channel"
    DROP_ENVIRONMENT = "drop_environment"
    IGNORE_TIMEWINDOW = "ignore_timewindow"
    DISABLE_ROLLOUT = "disable_rollout"
    DROP_REQUIRE_DEFAULT = "drop_require_default"


class TransitionStatus(_ValuesMixin, str, Enum):
    """Outcome status carried by a TransitionResult."""

    OK = "ok"
    FAILED = "failed"
    RESTRICTION_FAILED = "restriction_failed"
    VALIDATION_FAILED = "validation_failed"
    EXECUTION_FAILED = "execution_failed"


class GraphViolationKind(_ValuesMixin, str, Enum):
    """Which flow graph rule a proposed change breaks."""

    START_ALREADY_EXISTS = "start_already_exists"
    START_NOT_DELETABLE = "start_not_deletable"
    START_SELF_LOOP = "start_self_loop"
    TRANSITION_INTO_START = "transition_into_start"
    DUPLICATE_TRANSITION = "duplicate_transition"
    FIRST_TRANSITION_NOT_FROM_START = "first_transition_not_from_start"
    START_MULTIPLE_OUTGOING = "start_multiple_outgoing"
    TERMINAL_GENERIC_EXIT = "terminal_generic_exit"
    MISSING_ENDPOINTS = "missing_endpoints"
    UNKNOWN_STATE = "unknown_state"
    START_EDGE_NOT_DELETABLE = "start_edge_not_deletable"
    START_COUNT = "start_count"
