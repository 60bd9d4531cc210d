"""Process-wide catalog of task drivers.

Drivers are registered once at startup (or lazily before first use) and the
registry is then sealed. After seal() it is read-only, so concurrent
lookups need no locking.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from flowengine.application.tasks.base import TASK_VARIANTS, TaskDriver
from flowengine.domain.enums import TaskType
from flowengine.domain.exceptions import (
    DriverUnresolvableException,
    InvalidTaskDriverException,
    TaskAlreadyRegisteredException,
    TaskRegistrySealedException,
)
from flowengine.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


def classify(driver: TaskDriver) -> TaskType:
    """Return the driver's variant; it must implement exactly one."""
    matches = [variant for variant in TASK_VARIANTS if isinstance(driver, variant)]
    name = type(driver).__name__
    if len(matches) != 1:
        raise InvalidTaskDriverException(
            name, f"must implement exactly one task variant, found {len(matches)}"
        )
    return matches[0].task_type


class TaskRegistry:
    """Drivers indexed by subject type, task type and key."""

    def __init__(self) -> None:
        self._by_subject: dict[str, dict[TaskType, dict[str, TaskDriver]]] = {}
        self._by_key: dict[str, TaskDriver] = {}
        self._types: dict[str, TaskType] = {}
        self._sealed = False

    def register(self, driver: TaskDriver) -> TaskRegistry:
        """Add a driver instance; returns self for chaining.

        Raises:
            TaskRegistrySealedException: After seal().
            InvalidTaskDriverException: Not exactly one variant, or no key/subject.
            TaskAlreadyRegisteredException: The key is already registered.
        """
        name = type(driver).__name__
        if self._sealed:
            raise TaskRegistrySealedException(driver.key or name)
        task_type = classify(driver)
        if not driver.key:
            raise InvalidTaskDriverException(name, "missing key")
        if not driver.subject:
            raise InvalidTaskDriverException(name, "missing subject")
        by_type = self._by_subject.setdefault(driver.subject, {})
        if driver.key in by_type.get(task_type, {}) or driver.key in self._by_key:
            raise TaskAlreadyRegisteredException(
                driver.subject, task_type.value, driver.key
            )
        by_type.setdefault(task_type, {})[driver.key] = driver
        self._by_key[driver.key] = driver
        self._types[driver.key] = task_type
        logger.debug(
            "Registered task driver %s (%s) for %s",
            driver.key,
            task_type.value,
            driver.subject,
        )
        return self

    def seal(self) -> None:
        """Close registration (initialization barrier)."""
        self._sealed = True

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def all(self, subject: str) -> dict[TaskType, list[TaskDriver]]:
        """Drivers for a subject grouped by task type."""
        return {
            task_type: list(drivers.values())
            for task_type, drivers in self._by_subject.get(subject, {}).items()
        }

    def for_subject(self, subject: str) -> list[TaskDriver]:
        return [d for drivers in self.all(subject).values() for d in drivers]

    def for_subject_and_type(self, subject: str, task_type: TaskType) -> list[TaskDriver]:
        return list(self._by_subject.get(subject, {}).get(task_type, {}).values())

    def has(self, subject: str, task_type: TaskType, key: str) -> bool:
        return key in self._by_subject.get(subject, {}).get(task_type, {})

    def has_class(self, key: str) -> bool:
        """Whether the key is registered for any subject and type."""
        return key in self._by_key

    def get(self, key: str) -> TaskDriver | None:
        return self._by_key.get(key)

    def resolve(self, key: str, subject: str | None = None) -> TaskDriver:
        """Return the driver for key (optionally required to serve subject).

        Raises:
            DriverUnresolvableException: Unknown key or registered for another subject.
        """
        driver = self._by_key.get(key)
        if driver is None or (subject is not None and driver.subject != subject):
            raise DriverUnresolvableException(key, subject)
        return driver

    def task_type_of(self, key: str) -> TaskType | None:
        return self._types.get(key)

    def catalog(self, subject: str) -> list[dict[str, Any]]:
        """Listing of a subject's drivers for pickers/admin screens."""
        entries = []
        for driver in self.for_subject(subject):
            definition = driver.definition()
            entries.append({
                "key": driver.key,
                "type": self._types[driver.key].value,
                "title": definition.title,
                "description": definition.description,
            })
        return sorted(entries, key=lambda e: (e["type"], e["key"]))


@lru_cache
def get_task_registry() -> TaskRegistry:
    """Return the process-wide registry (tests call get_task_registry.cache_clear())."""
    return TaskRegistry()
