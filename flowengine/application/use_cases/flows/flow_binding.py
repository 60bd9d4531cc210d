"""Binding of subjects to flows (FlowUse) and their current position."""

from __future__ import annotations

from datetime import datetime

from flowengine.application.interfaces.repositories import (
    IFlowInstanceRepository,
    IFlowStateRepository,
    IFlowTransitionRepository,
    IFlowUseRepository,
)
from flowengine.application.interfaces.services import IFlowPicker
from flowengine.application.services.flow_picker_builder import FlowPickerBuilder
from flowengine.application.use_cases.flows.flow_management import PickerTuner
from flowengine.domain.entities import (
    FlowEntity,
    FlowStateEntity,
    FlowSubject,
    FlowUseEntity,
)
from flowengine.shared.telemetry.logging import get_logger
from flowengine.shared.utils.datetime import utc_now

logger = get_logger(__name__)


class FlowBinder:
    """Keeps each subject bound to at most one flow."""

    def __init__(
        self,
        use_repo: IFlowUseRepository,
        picker: IFlowPicker,
        state_repo: IFlowStateRepository,
        transition_repo: IFlowTransitionRepository,
        instance_repo: IFlowInstanceRepository,
    ) -> None:
        self._use_repo = use_repo
        self._picker = picker
        self._state_repo = state_repo
        self._transition_repo = transition_repo
        self._instance_repo = instance_repo

    async def bind(
        self, subject: FlowSubject, flow_id: str, used_at: datetime | None = None
    ) -> FlowUseEntity:
        """Create the subject's binding or move it to flow_id."""
        return await self._use_repo.bind(
            flow_id, subject.subject_type, str(subject.subject_id), used_at or utc_now()
        )

    async def on_subject_created(
        self, subject: FlowSubject, builder: FlowPickerBuilder | None = None
    ) -> FlowEntity | None:
        """Pick a flow for a new subject and bind it. None when nothing applies."""
        builder = builder or FlowPickerBuilder.from_subject(subject)
        flow = await self._picker.pick(subject, builder)
        if flow is None:
            logger.info(
                "No flow picked for %s:%s", subject.subject_type, subject.subject_id
            )
            return None
        await self.bind(subject, flow.id)
        return flow

    async def rebind(
        self, subject: FlowSubject, tuner: PickerTuner | None = None
    ) -> FlowEntity | None:
        """Re-pick; bind to the winner or drop the binding when nothing is picked."""
        builder = FlowPickerBuilder.from_subject(subject)
        if tuner is not None:
            builder = tuner(builder)
        flow = await self._picker.pick(subject, builder)
        if flow is None:
            await self.unbind(subject)
            return None
        await self.bind(subject, flow.id)
        return flow

    async def unbind(self, subject: FlowSubject) -> bool:
        return await self._use_repo.unbind(subject.subject_type, str(subject.subject_id))

    async def bound_flow(self, subject: FlowSubject) -> FlowUseEntity | None:
        return await self._use_repo.get_for_subject(
            subject.subject_type, str(subject.subject_id)
        )

    async def current_state(self, subject: FlowSubject) -> FlowStateEntity | None:
        """State the subject is in: its last transition's destination (or origin
        for a generic exit). None before the first transition."""
        instance = await self._instance_repo.get_latest_for_subject(
            subject.subject_type, str(subject.subject_id)
        )
        if instance is None:
            return None
        transition = await self._transition_repo.get_by_id(instance.flow_transition_id)
        if transition is None:
            return None
        state_id = transition.to_state_id or transition.from_state_id
        return await self._state_repo.get_by_id(state_id) if state_id else None
