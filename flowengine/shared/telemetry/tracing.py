"""Span helpers for flowengine operations.

traced() wraps a picker/runner/validator call in a span; TracedOperation
opens a child span around a block (e.g. one fallback step). Both are no-ops
in effect when no tracer provider is configured.
"""

import inspect
from collections.abc import Callable
from contextlib import AbstractContextManager
from functools import wraps
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

_TRACER_NAME = "flowengine"

# Arguments copied onto spans; subjects, payloads and configs never are.
_SPAN_ARG_ALLOWLIST = frozenset({
    "flow_id", "state_id", "transition_id", "task_id", "transition_key",
    "slug", "subject_type", "subject_id", "status", "kind", "code",
    "strategy", "version",
})

SpanValue = str | int | float | bool


def _tracer() -> trace.Tracer:
    return trace.get_tracer(_TRACER_NAME)


def _record_outcome(span: trace.Span, error: BaseException | None) -> None:
    if error is None:
        span.set_status(Status(StatusCode.OK))
        return
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


def _allowlisted_args(
    signature: inspect.Signature, args: tuple, kwargs: dict[str, Any]
) -> dict[str, str]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    return {
        f"arg.{name}": str(value)
        for name, value in bound.arguments.items()
        if name in _SPAN_ARG_ALLOWLIST and value is not None
    }


def traced(
    operation_name: str | None = None,
    attributes: dict[str, SpanValue] | None = None,
) -> Callable:
    """Run the decorated function (sync or async) inside a span.

    Allowlisted arguments, positional or keyword, become ``arg.<name>``
    attributes. Exceptions mark the span as errored and propagate.
    """

    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__qualname__}"
        signature = inspect.signature(func)

        def start(args: tuple, kwargs: dict[str, Any]) -> AbstractContextManager:
            span_attributes: dict[str, SpanValue] = dict(attributes or {})
            span_attributes.update(_allowlisted_args(signature, args, kwargs))
            return _tracer().start_as_current_span(
                span_name,
                attributes=span_attributes,
                record_exception=False,
                set_status_on_exception=False,
            )

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with start(args, kwargs) as span:
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _record_outcome(span, e)
                        raise
                    _record_outcome(span, None)
                    return result

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with start(args, kwargs) as span:
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_outcome(span, e)
                    raise
                _record_outcome(span, None)
                return result

        return sync_wrapper

    return decorator


def add_span_attributes(**attributes: SpanValue) -> None:
    """Set attributes on the current span, if one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attributes(attributes)


def add_span_event(name: str, attributes: dict[str, SpanValue] | None = None) -> None:
    """Record an event (e.g. a restriction denial) on the current span."""
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(name, attributes=attributes or {})


class TracedOperation:
    """Child span around a block; usable with ``with`` and ``async with``.

    The span is current while the block runs, so spans and events opened
    inside it nest under it.
    """

    def __init__(
        self, operation_name: str, attributes: dict[str, SpanValue] | None = None
    ) -> None:
        self.operation_name = operation_name
        self.attributes = dict(attributes or {})
        self.span: trace.Span | None = None
        self._scope: AbstractContextManager | None = None

    def __enter__(self) -> "TracedOperation":
        self._scope = _tracer().start_as_current_span(
            self.operation_name,
            attributes=self.attributes,
            record_exception=False,
            set_status_on_exception=False,
        )
        self.span = self._scope.__enter__()
        return self

    def __exit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        if self._scope is None or self.span is None:
            return
        _record_outcome(self.span, exc_val)
        self._scope.__exit__(exc_type, exc_val, exc_tb)
        self._scope = None

    async def __aenter__(self) -> "TracedOperation":
        return self.__enter__()

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)

    def set_attribute(self, key: str, value: SpanValue) -> None:
        if self.span is not None:
            self.span.set_attribute(key, value)
