"""Transition runner: fires one transition for one subject.

Pipeline (per run, phase-major over every transition in the chain):

    restriction -> validation -> action -> move subject

A restriction deny ends the run before validation; no action runs and the
subject does not move. Validation tasks only contribute rules; the
aggregated bundle is returned in result.meta["validation"] and, when a
payload validator is injected, checked against the payload. Action task
failures are isolated: the failure is recorded, the next action still
runs, and the overall result is failed.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, cast

from flowengine.application.interfaces.repositories import (
    IFlowInstanceRepository,
    IFlowRepository,
    IFlowStateRepository,
    IFlowTaskRepository,
    IFlowTransitionRepository,
)
from flowengine.application.interfaces.services import (
    IBackgroundDispatcher,
    IPayloadValidator,
    ISubjectResolver,
    ISubjectStatusWriter,
)
from flowengine.application.services.task_registry import TaskRegistry
from flowengine.application.tasks.base import (
    ActionTask,
    RestrictionTask,
    TaskDriver,
    ValidationTask,
)
from flowengine.application.tasks.context import TaskContext, ValidationBundle
from flowengine.core.config import get_settings
from flowengine.core.constants import TRANSITION_EXECUTED_MESSAGE
from flowengine.domain.entities import (
    FlowStateEntity,
    FlowSubject,
    FlowTaskEntity,
    FlowTransitionEntity,
)
from flowengine.domain.enums import TaskType, TransitionStatus
from flowengine.domain.exceptions import (
    ResourceNotFoundException,
    SubjectTypeMismatchException,
    ValidationException,
)
from flowengine.domain.value_objects import Actor, TransitionResult
from flowengine.shared.telemetry.logging import get_logger
from flowengine.shared.telemetry.tracing import add_span_attributes, add_span_event, traced
from flowengine.shared.utils.datetime import utc_now

logger = get_logger(__name__)

TASK_EXECUTION_FAILED = "TASK_EXECUTION_FAILED"
VALIDATION_FAILED = "VALIDATION_FAILED"


@dataclass(frozen=True)
class _ResolvedTask:
    """A stored task paired with its registered driver and variant."""

    transition: FlowTransitionEntity
    task: FlowTaskEntity
    driver: TaskDriver
    task_type: TaskType


def _of_type(tasks: list[_ResolvedTask], task_type: TaskType) -> list[_ResolvedTask]:
    return [item for item in tasks if item.task_type == task_type]


class TransitionRunner:
    """Runs the task pipeline of a transition and moves the subject on success."""

    def __init__(
        self,
        flow_repo: IFlowRepository,
        state_repo: IFlowStateRepository,
        transition_repo: IFlowTransitionRepository,
        task_repo: IFlowTaskRepository,
        instance_repo: IFlowInstanceRepository,
        registry: TaskRegistry,
        dispatcher: IBackgroundDispatcher,
        *,
        status_writer: ISubjectStatusWriter | None = None,
        subject_resolver: ISubjectResolver | None = None,
        payload_validator: IPayloadValidator | None = None,
    ) -> None:
        self._flow_repo = flow_repo
        self._state_repo = state_repo
        self._transition_repo = transition_repo
        self._task_repo = task_repo
        self._instance_repo = instance_repo
        self._registry = registry
        self._dispatcher = dispatcher
        self._status_writer = status_writer
        self._subject_resolver = subject_resolver
        self._payload_validator = payload_validator

    @traced("flow_transition.run")
    async def run(
        self,
        transition_key: str,
        subject: FlowSubject | None = None,
        payload: dict[str, Any] | None = None,
        actor: Actor | None = None,
    ) -> TransitionResult:
        """Fire a transition (by id or slug) for a subject.

        Args:
            transition_key: Transition id or slug.
            subject: Subject to move; when None, the subject of the active
                instance on this transition is loaded via the subject resolver.
            payload: Caller-supplied data for the tasks.
            actor: Who is firing the transition.

        Returns:
            The aggregated TransitionResult. Task failures and denials are
            reported here, never raised.

        Raises:
            ResourceNotFoundException: Unknown transition or flow.
            ValidationException: No subject given and none resolvable.
            SubjectTypeMismatchException: Subject type differs from the flow's.
        """
        transition = await self._transition_repo.get_by_key(transition_key)
        if transition is None:
            raise ResourceNotFoundException("flow_transition", transition_key)
        flow = await self._flow_repo.get_by_id(transition.flow_id)
        if flow is None:
            raise ResourceNotFoundException("flow", transition.flow_id)
        if subject is None:
            subject = await self._resolve_subject(transition)
        if subject.subject_type != flow.subject_type:
            raise SubjectTypeMismatchException(flow.subject_type, subject.subject_type)
        add_span_attributes(
            transition_id=transition.id,
            subject_type=subject.subject_type,
            subject_id=str(subject.subject_id),
        )

        to_state = (
            await self._state_repo.get_by_id(transition.to_state_id)
            if transition.to_state_id
            else None
        )
        chain = await self._transition_chain(transition)
        tasks = await self._load_tasks(chain, flow.subject_type)
        context = TaskContext(subject=subject, payload=payload or {}, actor=actor)
        result = TransitionResult.ok()

        denied = await self._run_restrictions(tasks, context)
        if denied is not None:
            return denied

        result, bundle = self._collect_validation(tasks, context, result)
        if not bundle.is_empty:
            result = result.merge_meta({"validation": bundle.to_dict()})
            if self._payload_validator is not None:
                errors = await self._payload_validator.validate(context.payload, bundle)
                if errors:
                    return (
                        result.mark_failed(
                            TransitionStatus.VALIDATION_FAILED, VALIDATION_FAILED
                        )
                        .merge_data({"errors": errors})
                        .add_error("payload validation failed", mark_failed=False)
                    )

        result = await self._run_actions(tasks, context, result)
        if not result.success:
            logger.warning(
                "Transition %s failed for %s:%s; subject not moved",
                transition.id,
                subject.subject_type,
                subject.subject_id,
            )
            return result

        await self._write_status(subject, to_state)
        await self._move_instance(transition, to_state, subject, actor)
        return result.add_message(TRANSITION_EXECUTED_MESSAGE)

    async def _resolve_subject(self, transition: FlowTransitionEntity) -> FlowSubject:
        instance = await self._instance_repo.get_active_for_transition(transition.id)
        subject = None
        if instance is not None and self._subject_resolver is not None:
            subject = await self._subject_resolver.resolve(
                instance.subject_type, instance.subject_id
            )
        if subject is None:
            raise ValidationException(
                "A subject is required to run this transition", field="subject"
            )
        return subject

    async def _transition_chain(
        self, transition: FlowTransitionEntity
    ) -> list[FlowTransitionEntity]:
        """Transitions whose tasks run for this firing, in execution order.

        A specific edge A -> B also runs A's generic exits (unless A is
        terminal) before it and B's generic entries after it. Self-loops and
        generic edges run alone.
        """
        if not transition.is_specific:
            return [transition]
        from_state_id = cast(str, transition.from_state_id)
        to_state_id = cast(str, transition.to_state_id)
        chain: list[FlowTransitionEntity] = []
        origin = await self._state_repo.get_by_id(from_state_id)
        if origin is not None and not origin.is_terminal:
            chain.extend(
                await self._transition_repo.list_generic_outputs(
                    transition.flow_id, origin.id
                )
            )
        chain.append(transition)
        chain.extend(
            await self._transition_repo.list_generic_inputs(
                transition.flow_id, to_state_id
            )
        )
        return chain

    async def _load_tasks(
        self, chain: list[FlowTransitionEntity], subject_type: str
    ) -> list[_ResolvedTask]:
        """Enabled tasks of the chain with their drivers; unresolvable ones are skipped."""
        resolved: list[_ResolvedTask] = []
        for transition in chain:
            tasks = await self._task_repo.list_for_transition(
                transition.id, enabled_only=True
            )
            for task in tasks:
                driver = self._registry.get(task.driver)
                task_type = self._registry.task_type_of(task.driver)
                if driver is None or task_type is None or driver.subject != subject_type:
                    logger.warning(
                        "Skipping flow task %s: driver %r is not registered for %s",
                        task.id,
                        task.driver,
                        subject_type,
                    )
                    continue
                resolved.append(_ResolvedTask(transition, task, driver, task_type))
        return resolved

    async def _run_restrictions(
        self, tasks: list[_ResolvedTask], context: TaskContext
    ) -> TransitionResult | None:
        """Return a failed result on the first deny (or error), else None."""
        for item in _of_type(tasks, TaskType.RESTRICTION):
            driver = cast(RestrictionTask, item.driver)
            try:
                outcome = await driver.restriction(context.with_config(item.task.config))
            except Exception as e:
                self._log_task_failure("restriction", item, context)
                return TransitionResult.failure(
                    f"{item.driver.key}: {e}",
                    TASK_EXECUTION_FAILED,
                    TransitionStatus.EXECUTION_FAILED,
                )
            if not outcome.allowed:
                logger.info(
                    "Transition %s denied by %s (%s)",
                    item.transition.id,
                    item.driver.key,
                    outcome.code,
                )
                add_span_event(
                    "flow_transition.denied",
                    {"task": item.driver.key, "code": outcome.code or ""},
                )
                return TransitionResult.failure(
                    outcome.message or "transition restriction failed",
                    outcome.code,
                    TransitionStatus.RESTRICTION_FAILED,
                ).merge_meta({
                    "restriction": {
                        "task": item.driver.key,
                        "transition_id": item.transition.id,
                        "details": dict(outcome.details),
                    }
                })
        return None

    def _collect_validation(
        self,
        tasks: list[_ResolvedTask],
        context: TaskContext,
        result: TransitionResult,
    ) -> tuple[TransitionResult, ValidationBundle]:
        bundle = ValidationBundle()
        for item in _of_type(tasks, TaskType.VALIDATION):
            driver = cast(ValidationTask, item.driver)
            task_context = context.with_config(item.task.config)
            try:
                bundle = bundle.merge(
                    driver.rules(task_context),
                    driver.messages(task_context),
                    driver.attributes(task_context),
                )
            except Exception as e:
                self._log_task_failure("validation", item, context)
                result = result.mark_failed(
                    TransitionStatus.EXECUTION_FAILED, TASK_EXECUTION_FAILED
                ).add_error(f"{item.driver.key}: {e}", mark_failed=False)
        return result, bundle

    async def _run_actions(
        self,
        tasks: list[_ResolvedTask],
        context: TaskContext,
        result: TransitionResult,
    ) -> TransitionResult:
        for item in _of_type(tasks, TaskType.ACTION):
            driver = cast(ActionTask, item.driver)
            task_context = context.with_config(item.task.config).with_result(result)
            try:
                if driver.runs_in_background():
                    await self._dispatch(driver, task_context)
                    continue
                outcome = await driver.handle(task_context)
            except Exception as e:
                self._log_task_failure("action", item, context)
                result = result.mark_failed(
                    TransitionStatus.EXECUTION_FAILED, TASK_EXECUTION_FAILED
                ).add_error(f"{driver.key}: {e}", mark_failed=False)
                continue
            result = self._merge_outcome(result, outcome, driver)
        return result

    async def _dispatch(self, driver: ActionTask, context: TaskContext) -> None:
        options: dict[str, Any] = {
            "label": driver.key,
            "timeout": get_settings().background_default_timeout,
        }
        options.update(driver.background_options(context))
        await self._dispatcher.dispatch(partial(driver.handle, context), options)

    @staticmethod
    def _merge_outcome(
        result: TransitionResult, outcome: Any, driver: TaskDriver
    ) -> TransitionResult:
        if outcome is None:
            return result
        if isinstance(outcome, TransitionResult):
            return result.merge(outcome)
        if isinstance(outcome, dict):
            return result.merge_data(outcome)
        logger.warning(
            "Ignoring unsupported return value %s from action task %s",
            type(outcome).__name__,
            driver.key,
        )
        return result

    async def _write_status(
        self, subject: FlowSubject, to_state: FlowStateEntity | None
    ) -> None:
        if to_state is None or not to_state.status or self._status_writer is None:
            return
        await self._status_writer.write_status(subject, to_state.status)

    async def _move_instance(
        self,
        transition: FlowTransitionEntity,
        to_state: FlowStateEntity | None,
        subject: FlowSubject,
        actor: Actor | None,
    ) -> None:
        now = utc_now()
        completed_at = now if to_state is not None and to_state.is_terminal else None
        actor_type = actor.actor_type if actor else None
        actor_id = actor.actor_id if actor else None
        existing = await self._instance_repo.get_active_for_subject(
            subject.subject_type, str(subject.subject_id)
        )
        if existing is not None:
            await self._instance_repo.update_instance(
                existing.id,
                flow_transition_id=transition.id,
                actor_type=actor_type,
                actor_id=actor_id,
                completed_at=completed_at,
            )
            return
        await self._instance_repo.create_instance(
            subject_type=subject.subject_type,
            subject_id=str(subject.subject_id),
            flow_transition_id=transition.id,
            actor_type=actor_type,
            actor_id=actor_id,
            started_at=now,
            completed_at=completed_at,
        )

    @staticmethod
    def _log_task_failure(phase: str, item: _ResolvedTask, context: TaskContext) -> None:
        logger.exception(
            "Flow task %s failed (phase=%s, transition=%s, subject=%s:%s)",
            item.driver.key,
            phase,
            item.transition.id,
            context.subject.subject_type,
            context.subject.subject_id,
        )
