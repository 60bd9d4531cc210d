"""Outcome carriers for restriction checks and transition runs.

Every "mutator" on TransitionResult returns a new instance. The copy
handed to tasks is additionally wrapped by read_only(), whose data and meta
mappings reject item assignment.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from flowengine.domain.enums import TransitionStatus


@dataclass(frozen=True)
class RestrictionResult:
    """Allow/deny answer of a restriction task."""

    allowed: bool
    code: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> RestrictionResult:
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        code: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> RestrictionResult:
        return cls(allowed=False, code=code, message=message, details=details or {})


@dataclass(frozen=True)
class TransitionResult:
    """Aggregated outcome of firing one transition.

    Attributes:
        success: False once any phase recorded a failure.
        status: Outcome status (ok, failed, restriction_failed, ...).
        code: Optional machine-readable code (e.g. a restriction's denial code).
        messages: Informational messages in the order they were added.
        errors: Error messages in the order they were added.
        data: Free-form per-task contributions; later writers win on key collision.
        meta: Free-form metadata (e.g. the aggregated validation bundle).
    """

    success: bool = True
    status: TransitionStatus = TransitionStatus.OK
    code: str | None = None
    messages: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> TransitionResult:
        return cls(data=dict(data or {}))

    @classmethod
    def failure(
        cls,
        message: str,
        code: str | None = None,
        status: TransitionStatus = TransitionStatus.FAILED,
    ) -> TransitionResult:
        return cls(success=False, status=status, code=code, errors=(message,))

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def mark_success(self) -> TransitionResult:
        return replace(self, success=True, status=TransitionStatus.OK, code=None)

    def mark_failed(
        self,
        status: TransitionStatus = TransitionStatus.FAILED,
        code: str | None = None,
    ) -> TransitionResult:
        return replace(self, success=False, status=status, code=code)

    def add_message(self, message: str) -> TransitionResult:
        return replace(self, messages=(*self.messages, message))

    def add_error(self, error: str, mark_failed: bool = True) -> TransitionResult:
        """Append an error; by default also flag the result failed.

        A result that already failed keeps its status and code.
        """
        updated = replace(self, errors=(*self.errors, error))
        if mark_failed and updated.success:
            updated = replace(updated, success=False, status=TransitionStatus.FAILED)
        return updated

    def merge_data(self, data: dict[str, Any]) -> TransitionResult:
        return replace(self, data={**self.data, **data})

    def set_data(self, data: dict[str, Any]) -> TransitionResult:
        return replace(self, data=dict(data))

    def merge_meta(self, meta: dict[str, Any]) -> TransitionResult:
        return replace(self, meta={**self.meta, **meta})

    def set_meta(self, meta: dict[str, Any]) -> TransitionResult:
        return replace(self, meta=dict(meta))

    def merge(self, other: TransitionResult) -> TransitionResult:
        """Combine two results; ``other`` wins data/meta collisions.

        Messages and errors are concatenated in order. The merged result
        fails if either side failed; a failing ``other`` contributes its
        status and code.
        """
        merged = replace(
            self,
            messages=(*self.messages, *other.messages),
            errors=(*self.errors, *other.errors),
            data={**self.data, **other.data},
            meta={**self.meta, **other.meta},
        )
        if not other.success:
            merged = replace(merged, success=False, status=other.status, code=other.code)
        return merged

    def read_only(self) -> TransitionResult:
        """Copy whose data and meta are read-only views (what tasks receive)."""
        return replace(
            self,
            data=MappingProxyType(dict(self.data)),  # type: ignore[arg-type]
            meta=MappingProxyType(dict(self.meta)),  # type: ignore[arg-type]
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable view (status as its string value)."""
        return {
            "success": self.success,
            "status": self.status.value,
            "code": self.code,
            "messages": list(self.messages),
            "errors": list(self.errors),
            "data": dict(self.data),
            "meta": dict(self.meta),
        }
