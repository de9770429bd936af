"""Tests for the pure custody-graph checks (domain/custody.py)."""

from datetime import UTC, datetime

import pytest

from lims_kernel.domain.custody import (
    CUSTODY_STEPS,
    CrosscheckStatus,
    CustodyEvent,
    CustodySnapshot,
    available_events,
    can_apply,
    check_custody_event,
    get_step,
)
from lims_kernel.domain.roles import Role
from lims_kernel.exceptions import (
    CustodyEventAlreadyRecordedError,
    CustodyOrderError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
)

T0 = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)


def snapshot(*recorded: CustodyEvent, **kwargs) -> CustodySnapshot:
    return CustodySnapshot(
        sample_id="s-1",
        timestamps={e: T0 for e in recorded},
        **kwargs,
    )


INTAKE_DONE = (
    CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT,
    CustodyEvent.ADMIN_BROUGHT_TO_COLLECTOR,
    CustodyEvent.COLLECTOR_RECEIVED,
    CustodyEvent.COLLECTOR_INTAKE_COMPLETED,
)


class TestCustodyGraph:

    def test_every_event_has_a_step(self):
        assert set(CUSTODY_STEPS) == set(CustodyEvent)

    def test_only_first_event_has_no_prerequisite(self):
        roots = [s.event for s in CUSTODY_STEPS.values() if s.prerequisite is None]
        assert roots == [CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT]

    def test_step_field_names(self):
        step = get_step("analyst_received")
        assert step.timestamp_field == "analyst_received_at"
        assert step.actor_field == "analyst_received_by_id"


class TestCheckCustodyEvent:

    def test_first_event_on_empty_snapshot(self):
        step = check_custody_event(
            CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT, Role.ADMINISTRATOR, snapshot(),
        )
        assert step.event is CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT

    def test_out_of_order_names_missing_prerequisite(self):
        with pytest.raises(CustodyOrderError) as exc_info:
            check_custody_event(CustodyEvent.COLLECTOR_RECEIVED, Role.SAMPLE_COLLECTOR, snapshot())
        assert exc_info.value.prerequisite == "admin_brought_to_collector"

    def test_wrong_role_denied(self):
        with pytest.raises(PolicyDeniedError):
            check_custody_event(
                CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT, Role.ANALYST, snapshot(),
            )

    def test_already_recorded(self):
        with pytest.raises(CustodyEventAlreadyRecordedError):
            check_custody_event(
                CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT,
                Role.ADMINISTRATOR,
                snapshot(CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT),
            )

    def test_lab_code_reported_before_anything_else(self):
        with pytest.raises(LabCodeAssignedError):
            check_custody_event(
                CustodyEvent.COLLECTOR_RECEIVED, Role.CLIENT, snapshot(lab_code="BML 001"),
            )

    def test_delivery_to_analyst_requires_passed_intake(self):
        with pytest.raises(PreconditionFailedError):
            check_custody_event(
                CustodyEvent.SC_DELIVERED_TO_ANALYST,
                Role.SAMPLE_COLLECTOR,
                snapshot(*INTAKE_DONE, intake_passed=False),
            )
        check_custody_event(
            CustodyEvent.SC_DELIVERED_TO_ANALYST,
            Role.SAMPLE_COLLECTOR,
            snapshot(*INTAKE_DONE, intake_passed=True),
        )

    def test_return_to_admin_requires_failed_intake(self):
        with pytest.raises(PreconditionFailedError):
            check_custody_event(
                CustodyEvent.COLLECTOR_RETURNED_TO_ADMIN,
                Role.SAMPLE_COLLECTOR,
                snapshot(*INTAKE_DONE, intake_passed=True),
            )

    def test_analyst_return_requires_failed_crosscheck(self):
        received = INTAKE_DONE + (
            CustodyEvent.SC_DELIVERED_TO_ANALYST,
            CustodyEvent.ANALYST_RECEIVED,
        )
        assert not can_apply(
            CustodyEvent.ANALYST_RETURNED_TO_SC,
            Role.ANALYST,
            snapshot(*received, intake_passed=True),
        )
        assert can_apply(
            CustodyEvent.ANALYST_RETURNED_TO_SC,
            Role.ANALYST,
            snapshot(*received, intake_passed=True, crosscheck_status=CrosscheckStatus.FAILED),
        )


class TestAvailableEvents:

    def test_collector_after_handover(self):
        snap = snapshot(
            CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT,
            CustodyEvent.ADMIN_BROUGHT_TO_COLLECTOR,
        )
        assert available_events(Role.SAMPLE_COLLECTOR, snap) == (CustodyEvent.COLLECTOR_RECEIVED,)
        assert available_events(Role.ADMINISTRATOR, snap) == ()

    def test_nothing_once_coded(self):
        for role in Role:
            assert available_events(role, snapshot(lab_code="BML 001")) == ()
