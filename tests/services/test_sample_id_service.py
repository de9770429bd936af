"""
SampleIdService tests.

Verifies:
- Codes are reserved after intake validation, under the workflow-group prefix
- Reserving twice is a no-op
- Override proposals are reviewed by OM / LH, with a mandatory rejection note
- Final assignment needs a passed crosscheck, happens once, and syncs the counter
- A code cannot be taken by two samples
"""

import pytest

from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.transitions import RequestStatus
from lims_kernel.exceptions import (
    DuplicateSampleCodeError,
    InvalidSampleCodeError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
    ReasonRequiredError,
)
from lims_kernel.selectors.sample_selector import SampleSelector


class TestReservation:

    def test_pcr_sample_gets_default_prefix(self, sample_id_service, validated_intake_sample, admin):
        sample = validated_intake_sample(parameter_ids=(1, 2))
        result = sample_id_service.reserve_code(sample.id, admin)

        assert result.state.reserved_code == "BML 001"
        assert result.state.workflow_group is WorkflowGroup.PCR_SARS_COV_2
        assert result.state.lab_code is None

    def test_wgs_sample_gets_wgs_prefix(self, sample_id_service, validated_intake_sample, admin):
        sample = validated_intake_sample(parameter_ids=(4, 15))
        code = sample_id_service.reserve_code(sample.id, admin).state.reserved_code
        assert code == "WGS 001"

    def test_consecutive_reservations(self, sample_id_service, validated_intake_sample, admin):
        first = validated_intake_sample()
        second = validated_intake_sample()
        assert sample_id_service.reserve_code(first.id, admin).state.reserved_code == "BML 001"
        assert sample_id_service.reserve_code(second.id, admin).state.reserved_code == "BML 002"

    def test_reserve_twice_is_noop(self, sample_id_service, validated_intake_sample, admin, allocator):
        sample = validated_intake_sample()
        sample_id_service.reserve_code(sample.id, admin)
        again = sample_id_service.reserve_code(sample.id, admin)

        assert again.state.reserved_code == "BML 001"
        assert again.audit_record_id is None
        assert allocator.current("BML") == 1

    def test_before_intake_validation(self, sample_id_service, register_sample, admin):
        sample = register_sample()
        with pytest.raises(PreconditionFailedError):
            sample_id_service.reserve_code(sample.id, admin)

    def test_administrator_only(self, sample_id_service, validated_intake_sample, om):
        sample = validated_intake_sample()
        with pytest.raises(PolicyDeniedError):
            sample_id_service.reserve_code(sample.id, om)


class TestOverride:

    def test_approved_override_becomes_lab_code(
        self, sample_id_service, custody_service, delivered_sample, validated_intake_sample,
        allocator, admin, analyst, om,
    ):
        sample = delivered_sample()
        request = sample_id_service.propose_change(sample.id, admin, "bml-050").state
        assert request.proposed_code == "BML 050"
        assert request.suggested_code == "BML 001"
        assert request.status == "pending"

        reviewed = sample_id_service.approve_change(request.id, om, note="client label").state
        assert reviewed.status == "approved"
        assert reviewed.reviewed_by_id == om.actor_id

        custody_service.crosscheck(sample.id, analyst, "BML 050")
        assigned = sample_id_service.assign_lab_code(sample.id, admin).state
        assert assigned.lab_code == "BML 050"
        assert assigned.request_status is RequestStatus.INTAKE_VALIDATED

        # The counter jumped past the override.
        assert allocator.current("BML") == 50
        other = validated_intake_sample()
        assert sample_id_service.reserve_code(other.id, admin).state.reserved_code == "BML 051"

    def test_proposal_moves_sample_to_verification(
        self, session, sample_id_service, delivered_sample, admin,
    ):
        sample = delivered_sample()
        sample_id_service.propose_change(sample.id, admin, "BML 077")
        state = SampleSelector(session).get_state(sample.id)
        assert state.request_status is RequestStatus.SAMPLE_ID_PENDING_VERIFICATION

    def test_rejection_needs_note(self, sample_id_service, delivered_sample, admin, lh):
        sample = delivered_sample()
        request = sample_id_service.propose_change(sample.id, admin, "BML 077").state
        with pytest.raises(ReasonRequiredError):
            sample_id_service.reject_change(request.id, lh, "  ")

    def test_rejection_returns_to_waiting(
        self, session, sample_id_service, delivered_sample, admin, lh,
    ):
        sample = delivered_sample()
        request = sample_id_service.propose_change(sample.id, admin, "BML 077").state
        reviewed = sample_id_service.reject_change(request.id, lh, "keep reserved code").state

        assert reviewed.status == "rejected"
        assert reviewed.review_note == "keep reserved code"
        state = SampleSelector(session).get_state(sample.id)
        assert state.request_status is RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT

    def test_reviewed_once(self, sample_id_service, delivered_sample, admin, om, lh):
        sample = delivered_sample()
        request = sample_id_service.propose_change(sample.id, admin, "BML 077").state
        sample_id_service.approve_change(request.id, om)
        with pytest.raises(PreconditionFailedError):
            sample_id_service.approve_change(request.id, lh)

    def test_admin_cannot_review(self, sample_id_service, delivered_sample, admin):
        sample = delivered_sample()
        request = sample_id_service.propose_change(sample.id, admin, "BML 077").state
        with pytest.raises(PolicyDeniedError):
            sample_id_service.approve_change(request.id, admin)

    def test_same_code_refused(self, sample_id_service, delivered_sample, admin):
        sample = delivered_sample()
        with pytest.raises(PreconditionFailedError):
            sample_id_service.propose_change(sample.id, admin, "bml 1")

    def test_malformed_code_refused(self, sample_id_service, delivered_sample, admin):
        sample = delivered_sample()
        with pytest.raises(InvalidSampleCodeError):
            sample_id_service.propose_change(sample.id, admin, "??")

    def test_code_held_by_another_sample(self, sample_id_service, delivered_sample, admin):
        first = delivered_sample()
        second = delivered_sample()
        with pytest.raises(DuplicateSampleCodeError):
            sample_id_service.propose_change(second.id, admin, first.reserved_code)


class TestAssignment:

    def test_assign_reserved_code(self, coded_sample, audit_trail):
        sample = coded_sample()
        assert sample.lab_code == "BML 001"
        assert sample.is_finalized
        assert audit_trail.get_trace("Sample", sample.id).last_action == "LAB_CODE_ASSIGNED"

    def test_requires_passed_crosscheck(self, sample_id_service, delivered_sample, admin):
        sample = delivered_sample()
        with pytest.raises(PreconditionFailedError):
            sample_id_service.assign_lab_code(sample.id, admin)

    def test_assigned_once(self, sample_id_service, coded_sample, admin):
        sample = coded_sample()
        with pytest.raises(LabCodeAssignedError):
            sample_id_service.assign_lab_code(sample.id, admin)

    def test_reviewer_cannot_assign(
        self, sample_id_service, custody_service, delivered_sample, analyst, om,
    ):
        sample = delivered_sample()
        custody_service.crosscheck(sample.id, analyst, sample.reserved_code)
        with pytest.raises(PolicyDeniedError):
            sample_id_service.assign_lab_code(sample.id, om)

    def test_lookup_by_lab_code(self, session, coded_sample):
        sample = coded_sample()
        found = SampleSelector(session).get_by_lab_code(" bml 001")
        assert found is not None and found.id == sample.id
