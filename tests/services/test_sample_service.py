"""
SampleService tests.

Verifies:
- Registration creates a received / submitted sample with one audit record
- Detailed status moves only along role-owned edges, after custody began
- Workflow group is derived once and never rewritten
- Operations by an unresolved actor succeed but write no audit record
"""

from uuid import uuid4

import pytest

from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.custody import CustodyEvent
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.domain.transitions import RequestStatus, SampleStatus
from lims_kernel.exceptions import (
    CustodyOrderError,
    NotFoundError,
    PolicyDeniedError,
    PreconditionFailedError,
)
from lims_kernel.selectors.sample_selector import SampleSelector


@pytest.fixture
def received_sample(register_sample, custody_service, admin):
    """A sample the Administrator has physically received from the client."""
    sample = register_sample()
    return custody_service.apply_custody_event(
        sample.id, CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT, admin,
    ).state


class TestRegistration:

    def test_register_sample(self, sample_service, audit_trail, admin, client_id):
        result = sample_service.register_sample(
            admin, client_id, "  serum ", [5, 2, 2, True, -1],
        )
        state = result.state

        assert state.detailed_status is SampleStatus.RECEIVED
        assert state.request_status is RequestStatus.SUBMITTED
        assert state.sample_type == "serum"
        assert state.parameter_ids == (2, 5)
        assert state.lab_code is None
        assert result.audited
        assert audit_trail.get_trace("Sample", state.id).actions == ("SAMPLE_REGISTERED",)

    def test_register_as_draft(self, sample_service, admin, client_id):
        state = sample_service.register_sample(
            admin, client_id, "swab", [1], request_status=RequestStatus.DRAFT,
        ).state
        assert state.request_status is RequestStatus.DRAFT

    def test_register_in_later_status_refused(self, sample_service, admin, client_id):
        with pytest.raises(PreconditionFailedError):
            sample_service.register_sample(
                admin, client_id, "swab", [1], request_status=RequestStatus.INTAKE_VALIDATED,
            )

    def test_blank_sample_type_refused(self, sample_service, admin, client_id):
        with pytest.raises(PreconditionFailedError):
            sample_service.register_sample(admin, client_id, "   ", [1])

    @pytest.mark.parametrize("role", [Role.ANALYST, Role.CLIENT, Role.LABORATORY_HEAD])
    def test_only_administrator_registers(self, sample_service, client_id, role):
        with pytest.raises(PolicyDeniedError):
            sample_service.register_sample(Actor(role, uuid4()), client_id, "swab", [1])


class TestDetailedStatus:

    def test_requires_admin_receipt_first(self, sample_service, register_sample, admin):
        sample = register_sample()
        with pytest.raises(CustodyOrderError) as exc_info:
            sample_service.transition_status(sample.id, admin, SampleStatus.IN_PROGRESS)
        assert exc_info.value.prerequisite == "admin_received_from_client"

    def test_full_review_chain(self, sample_service, received_sample, admin, analyst, om, lh):
        sid = received_sample.id
        sample_service.transition_status(sid, admin, SampleStatus.IN_PROGRESS)
        sample_service.transition_status(sid, analyst, SampleStatus.TESTING_COMPLETED)
        sample_service.transition_status(sid, om, SampleStatus.VERIFIED)
        sample_service.transition_status(sid, lh, SampleStatus.VALIDATED)
        result = sample_service.transition_status(sid, lh, "reported")

        assert result.state.detailed_status is SampleStatus.REPORTED
        assert result.audited

    def test_analyst_cannot_verify(self, sample_service, received_sample, admin, analyst):
        sid = received_sample.id
        sample_service.transition_status(sid, admin, SampleStatus.IN_PROGRESS)
        sample_service.transition_status(sid, analyst, SampleStatus.TESTING_COMPLETED)

        with pytest.raises(PolicyDeniedError):
            sample_service.transition_status(sid, analyst, SampleStatus.VERIFIED)

    def test_denial_is_logged(self, sample_service, received_sample, client_actor, captured_logs):
        with pytest.raises(PolicyDeniedError):
            sample_service.transition_status(
                received_sample.id, client_actor, SampleStatus.IN_PROGRESS,
            )
        denied = [r for r in captured_logs() if r["message"] == "sample_status_transition_denied"]
        assert len(denied) == 1
        assert denied[0]["level"] == "WARNING"

    def test_same_status_refused(self, sample_service, received_sample, admin):
        with pytest.raises(PreconditionFailedError):
            sample_service.transition_status(received_sample.id, admin, SampleStatus.RECEIVED)

    def test_status_note_lands_in_audit(
        self, sample_service, audit_trail, received_sample, admin,
    ):
        sample_service.transition_status(
            received_sample.id, admin, SampleStatus.IN_PROGRESS, note="bench 3",
        )
        trace = audit_trail.get_trace("Sample", received_sample.id)
        assert trace.last_action == "SAMPLE_STATUS_CHANGED"
        assert trace.entries[-1].after["status_note"] == "bench 3"
        assert trace.entries[-1].before["detailed_status"] == "received"
        assert trace.entries[-1].after["detailed_status"] == "in_progress"

    def test_missing_sample(self, sample_service, admin):
        with pytest.raises(NotFoundError):
            sample_service.transition_status(uuid4(), admin, SampleStatus.IN_PROGRESS)


class TestWorkflowGroup:

    def test_derived_once(self, sample_service, register_sample, admin):
        sample = register_sample(parameter_ids=(3, 14))

        first = sample_service.ensure_workflow_group(sample.id, admin)
        second = sample_service.ensure_workflow_group(sample.id, admin)

        assert first.state.workflow_group is WorkflowGroup.WGS_SARS_COV_2
        assert first.audited
        assert second.state.workflow_group is WorkflowGroup.WGS_SARS_COV_2
        assert second.audit_record_id is None

    def test_unmapped_parameters_leave_group_empty(self, sample_service, register_sample, admin):
        sample = register_sample(parameter_ids=(40,))
        result = sample_service.ensure_workflow_group(sample.id, admin)
        assert result.state.workflow_group is None
        assert result.audit_record_id is None

    def test_client_may_not_derive(self, sample_service, register_sample, client_actor):
        sample = register_sample()
        with pytest.raises(PolicyDeniedError):
            sample_service.ensure_workflow_group(sample.id, client_actor)


class TestUnresolvedActor:

    def test_mutation_without_actor_id_is_not_audited(
        self, sample_service, client_id, captured_logs,
    ):
        """An integration acting without a resolved identity still mutates."""
        result = sample_service.register_sample(
            Actor(Role.ADMINISTRATOR), client_id, "swab", [1],
        )
        assert result.audit_record_id is None
        assert any(
            r["message"] == "audit_skipped_unresolved_actor" for r in captured_logs()
        )


class TestSampleSelector:

    def test_available_transitions(self, session, received_sample, register_sample, admin):
        selector = SampleSelector(session)

        assert selector.available_status_transitions(
            received_sample.id, Role.ADMINISTRATOR,
        ) == (SampleStatus.IN_PROGRESS,)
        assert selector.available_status_transitions(received_sample.id, Role.ANALYST) == ()

        untouched = register_sample()
        assert selector.available_status_transitions(untouched.id, Role.ADMINISTRATOR) == ()

    def test_request_transitions_hide_dedicated_targets(self, session, register_sample):
        sample = register_sample()
        targets = SampleSelector(session).available_request_transitions(
            sample.id, Role.ADMINISTRATOR,
        )
        assert set(targets) == {RequestStatus.RETURNED, RequestStatus.READY_FOR_DELIVERY}

    def test_get_state_missing(self, session):
        with pytest.raises(NotFoundError):
            SampleSelector(session).get_state(uuid4())
