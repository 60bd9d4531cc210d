"""Values handed to task drivers and collected from them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from flowengine.domain.entities import FlowSubject
from flowengine.domain.value_objects import Actor, TransitionResult


@dataclass(frozen=True)
class TaskDefinition:
    """Human-facing description of a driver (catalog listings)."""

    title: str
    description: str | None = None
    icon: str | None = None
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class TaskContext:
    """Read-only bundle passed to every task driver.

    config is the stored configuration of the task currently running; the
    runner swaps it per task with with_config. result is the transition
    result accumulated so far. payload, config and the result's data and
    meta are read-only views; a task contributes by returning a value.
    """

    subject: FlowSubject
    payload: Mapping[str, Any] = field(default_factory=dict)
    actor: Actor | None = None
    config: Mapping[str, Any] = field(default_factory=dict)
    result: TransitionResult = field(default_factory=TransitionResult)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))
        object.__setattr__(self, "result", self.result.read_only())

    def with_config(self, config: Mapping[str, Any] | None) -> TaskContext:
        return replace(self, config=config or {})

    def with_result(self, result: TransitionResult) -> TaskContext:
        return replace(self, result=result)

    def config_value(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)


@dataclass(frozen=True)
class ValidationBundle:
    """Rules, messages and attribute labels aggregated from validation tasks.

    flowengine does not interpret rule syntax; later tasks override earlier
    ones on the same attribute key.
    """

    rules: dict[str, Any] = field(default_factory=dict)
    messages: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.rules

    def merge(
        self,
        rules: dict[str, Any],
        messages: dict[str, str] | None = None,
        attributes: dict[str, str] | None = None,
    ) -> ValidationBundle:
        return ValidationBundle(
            rules={**self.rules, **rules},
            messages={**self.messages, **(messages or {})},
            attributes={**self.attributes, **(attributes or {})},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": dict(self.rules),
            "messages": dict(self.messages),
            "attributes": dict(self.attributes),
        }
