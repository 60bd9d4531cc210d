"""Domain exceptions for flowengine.

Structural and configuration errors (graph rule violations, unknown task
drivers, invalid rollout/window values) are raised to the caller performing
the write. Runtime pipeline errors are never raised; they are reported in
TransitionResult.
"""

from typing import Any

from flowengine.domain.enums import GraphViolationKind


class FlowEngineException(Exception):
    """Base exception for all flowengine errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. field, resource_id).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(FlowEngineException):
    """Raised when input validation fails (e.g. malformed slug, missing subject)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class ResourceNotFoundException(FlowEngineException):
    """Raised when a requested flow, state, transition or task is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'flow', 'flow_state').
            resource_id: The ID (or slug) that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class SqlNotConfiguredException(FlowEngineException):
    """Raised when a database session is requested but DATABASE_URL is not set."""

    def __init__(self) -> None:
        super().__init__(
            message="This operation requires a SQL database that is not configured.",
            error_code="SQL_NOT_CONFIGURED",
        )


class GraphViolationException(FlowEngineException):
    """Raised when a state/transition change would break the flow graph rules."""

    def __init__(
        self,
        kind: GraphViolationKind,
        message: str,
        **details_extra: Any,
    ) -> None:
        """Initialize with the violated rule and its context.

        Args:
            kind: Which graph rule was violated.
            message: Human-readable description.
            **details_extra: Optional keys merged into details (e.g. flow_id, state_id).
        """
        self.kind = kind
        details = {"kind": kind.value, **details_extra}
        super().__init__(message, "GRAPH_VIOLATION", details)


class FlowInconsistentException(FlowEngineException):
    """Raised by the consistency lint pass when a stored flow breaks graph rules."""

    def __init__(self, flow_id: str, violations: list[dict[str, Any]]) -> None:
        super().__init__(
            f"Flow {flow_id} is not consistent ({len(violations)} violation(s))",
            "FLOW_INCONSISTENT",
            {"flow_id": flow_id, "violations": violations},
        )


class DriverUnresolvableException(FlowEngineException):
    """Raised when a task driver key does not map to a registered driver."""

    def __init__(self, driver: str, subject_type: str | None = None) -> None:
        details: dict[str, Any] = {"driver": driver}
        if subject_type:
            details["subject_type"] = subject_type
        super().__init__(
            f"Task driver is not registered: {driver}",
            "DRIVER_UNRESOLVABLE",
            details,
        )


class TaskAlreadyRegisteredException(FlowEngineException):
    """Raised when registering a driver whose (subject, type, key) is already taken."""

    def __init__(self, subject_type: str, task_type: str, driver: str) -> None:
        super().__init__(
            f"Task driver already registered: {driver} ({task_type}) for {subject_type}",
            "TASK_ALREADY_REGISTERED",
            {"subject_type": subject_type, "task_type": task_type, "driver": driver},
        )


class InvalidTaskDriverException(FlowEngineException):
    """Raised when a driver is not exactly one task variant or lacks key/subject."""

    def __init__(self, driver: str, reason: str) -> None:
        super().__init__(
            f"Invalid task driver {driver}: {reason}",
            "INVALID_TASK_DRIVER",
            {"driver": driver, "reason": reason},
        )


class TaskRegistrySealedException(FlowEngineException):
    """Raised when registering drivers after the registry has been sealed."""

    def __init__(self, driver: str) -> None:
        super().__init__(
            f"Task registry is sealed; cannot register {driver}",
            "TASK_REGISTRY_SEALED",
            {"driver": driver},
        )


class TaskOrderingConflictException(FlowEngineException):
    """Raised when two tasks of one transition would share an ordering value."""

    def __init__(self, transition_id: str, ordering: int) -> None:
        super().__init__(
            f"Ordering {ordering} is already used on transition {transition_id}",
            "TASK_ORDERING_CONFLICT",
            {"transition_id": transition_id, "ordering": ordering},
        )


class TransitionSlugExistsException(FlowEngineException):
    """Raised when a transition slug is already used within the flow."""

    def __init__(self, flow_id: str, slug: str) -> None:
        super().__init__(
            f"Transition slug '{slug}' already exists in flow {flow_id}",
            "TRANSITION_SLUG_EXISTS",
            {"flow_id": flow_id, "slug": slug},
        )


class InvalidActiveWindowException(FlowEngineException):
    """Raised when an active window has active_from after active_to."""

    def __init__(self, active_from: Any, active_to: Any) -> None:
        super().__init__(
            "Invalid active window: `from` must be before or equal to `to`.",
            "INVALID_ACTIVE_WINDOW",
            {"active_from": str(active_from), "active_to": str(active_to)},
        )


class InvalidRolloutException(FlowEngineException):
    """Raised when a rollout percentage is outside 0..100."""

    def __init__(self, rollout_pct: Any) -> None:
        super().__init__(
            "Invalid rollout percentage. It must be between 0 and 100.",
            "INVALID_ROLLOUT",
            {"rollout_pct": rollout_pct},
        )


class SubjectTypeMismatchException(FlowEngineException):
    """Raised when a transition is fired for a subject of another type than the flow's."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(
            f"Subject type mismatch: flow expects {expected}, got {got}",
            "SUBJECT_TYPE_MISMATCH",
            {"expected": expected, "got": got},
        )
