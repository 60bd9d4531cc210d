"""Request-scoped picker memo.

FlowPicker results may depend on a subject's rollout key, so memoized picks
must never leak across requests. Callers open a scope per logical request
(request_scope()); outside a scope nothing is memoized.
"""

from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Memo for the current request (None when no scope is open).
_pick_memo: ContextVar[dict[Hashable, Any] | None] = ContextVar(
    "flow_pick_memo", default=None
)


@contextmanager
def request_scope() -> Iterator[dict[Hashable, Any]]:
    """Open a fresh memo for the current context; restore the previous one on exit."""
    memo: dict[Hashable, Any] = {}
    token = _pick_memo.set(memo)
    try:
        yield memo
    finally:
        _pick_memo.reset(token)


def get_pick_memo() -> dict[Hashable, Any] | None:
    """Return the memo of the open request scope, or None."""
    return _pick_memo.get()
