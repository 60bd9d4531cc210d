"""Subject contract: the external entity a flow governs (order, invoice, ticket)."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class FlowSubject(Protocol):
    """Anything with a stable type name and id can move through a flow.

    An optional ``subject_scope`` attribute (tenant, organization, ...)
    narrows flow selection; see subject_scope_of.
    """

    subject_type: str
    subject_id: str


def subject_scope_of(subject: object) -> str | None:
    """Return the subject's scope when it declares one."""
    scope = getattr(subject, "subject_scope", None)
    return str(scope) if scope is not None else None
