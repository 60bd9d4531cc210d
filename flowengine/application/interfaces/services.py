"""Service interfaces (ports) for the application layer.

The picker's SQL implementation, the background execution facility and the
subject-side collaborators (status column, loading by id, payload rule
checking) all live outside the application layer.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

from flowengine.domain.entities import FlowEntity, FlowSubject

if TYPE_CHECKING:
    from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
    from flowengine.application.tasks.context import ValidationBundle


class IFlowPicker(Protocol):
    """Protocol for selecting the one applicable flow for a subject."""

    async def pick(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> FlowEntity | None:
        """Return the winning flow or None (absence is a valid answer)."""

    async def candidates(
        self, subject: FlowSubject, builder: FlowPickerBuilder
    ) -> list[FlowEntity]:
        """Return the ordered candidate list without fallback or memo."""


class IBackgroundDispatcher(Protocol):
    """Protocol for fire-and-forget execution of background action tasks."""

    async def dispatch(
        self, job: Callable[[], Awaitable[Any]], options: dict[str, Any]
    ) -> None:
        """Schedule job; options carry at least 'label' and 'timeout'.

        Must return once the job is scheduled; errors raised by the job itself
        are caught and logged by the dispatcher, never by the caller.
        """


class ISubjectStatusWriter(Protocol):
    """Protocol for writing a subject's status after a successful transition."""

    async def write_status(self, subject: FlowSubject, status: str) -> None: ...


class ISubjectResolver(Protocol):
    """Protocol for loading a subject from its type and id."""

    async def resolve(self, subject_type: str, subject_id: str) -> FlowSubject | None: ...


class IPayloadValidator(Protocol):
    """Protocol for applying an aggregated validation bundle to a payload."""

    async def validate(
        self, payload: Mapping[str, Any], bundle: ValidationBundle
    ) -> dict[str, list[str]]:
        """Return errors keyed by attribute (empty when the payload passes)."""
