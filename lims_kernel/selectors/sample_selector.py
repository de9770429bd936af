"""
Module: lims_kernel.selectors.sample_selector
Responsibility: Read access to sample state, its tests, and the moves a
    given role may make next.
Architecture position: Kernel > Selectors.

The ``available_*`` queries answer with the same tables the services
enforce, so a UI built on them never offers a move the kernel would refuse.
They do not lock anything; the answer may be stale by the time it is acted on.
"""

from uuid import UUID

from sqlalchemy import select

from lims_kernel.domain.custody import CustodyEvent, available_events
from lims_kernel.domain.dtos import SampleState, SampleTestState
from lims_kernel.domain.roles import Role
from lims_kernel.domain.transitions import (
    DEDICATED_REQUEST_TARGETS,
    REQUEST_STATUS_GUARD,
    SAMPLE_STATUS_GUARD,
    RequestStatus,
    SampleStatus,
)
from lims_kernel.models.sample import Sample, SampleTest
from lims_kernel.selectors.base import BaseSelector


def _ordered(states, allowed) -> tuple:
    return tuple(s for s in states if s in allowed)


class SampleSelector(BaseSelector[Sample]):
    """Queries over samples and their per-parameter tests."""

    def get_state(self, sample_id: UUID) -> SampleState:
        return self._get_or_raise(Sample, sample_id).to_dto()

    def get_by_lab_code(self, lab_code: str) -> SampleState | None:
        sample = self.session.execute(
            select(Sample).where(Sample.lab_code == lab_code.strip().upper())
        ).scalar_one_or_none()
        return sample.to_dto() if sample else None

    def available_status_transitions(
        self, sample_id: UUID, role: Role
    ) -> tuple[SampleStatus, ...]:
        """Detailed-status targets ``role`` may move the sample to now."""
        sample = self._get_or_raise(Sample, sample_id)
        if sample.admin_received_from_client_at is None:
            return ()
        allowed = SAMPLE_STATUS_GUARD.allowed_targets(role, SampleStatus(sample.detailed_status))
        return _ordered(SAMPLE_STATUS_GUARD.all_states(), allowed)

    def available_request_transitions(
        self, sample_id: UUID, role: Role
    ) -> tuple[RequestStatus, ...]:
        """Request-status targets reachable through the generic intake move."""
        sample = self._get_or_raise(Sample, sample_id)
        if sample.lab_code:
            return ()
        allowed = REQUEST_STATUS_GUARD.allowed_targets(
            role, RequestStatus(sample.request_status)
        ) - DEDICATED_REQUEST_TARGETS
        return _ordered(REQUEST_STATUS_GUARD.all_states(), allowed)

    def available_custody_events(
        self, sample_id: UUID, role: Role
    ) -> tuple[CustodyEvent, ...]:
        sample = self._get_or_raise(Sample, sample_id)
        return available_events(role, sample.custody_snapshot())

    def tests(self, sample_id: UUID) -> list[SampleTestState]:
        rows = self.session.execute(
            select(SampleTest)
            .where(SampleTest.sample_id == sample_id)
            .order_by(SampleTest.parameter_id, SampleTest.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]
