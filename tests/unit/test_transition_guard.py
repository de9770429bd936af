"""
Tests for the role-owned transition tables.

Every table is a closed lookup: an edge is legal only if the role owns it
from the current state.  The client role owns nothing.
"""

import pytest

from lims_kernel.domain.quality_cover import QUALITY_COVER_GUARD, QualityCoverStatus
from lims_kernel.domain.roles import Role
from lims_kernel.domain.transitions import (
    DEDICATED_REQUEST_TARGETS,
    REQUEST_STATUS_GUARD,
    SAMPLE_STATUS_GUARD,
    TEST_STATUS_GUARD,
    RequestStatus,
    SampleStatus,
    TestStatus,
)
from lims_kernel.exceptions import PolicyDeniedError

ALL_GUARDS = [SAMPLE_STATUS_GUARD, REQUEST_STATUS_GUARD, TEST_STATUS_GUARD, QUALITY_COVER_GUARD]


class TestSampleStatusGuard:

    @pytest.mark.parametrize("role", [Role.ADMINISTRATOR, Role.SAMPLE_COLLECTOR])
    def test_intake_roles_start_processing(self, role):
        assert SAMPLE_STATUS_GUARD.can_transition(
            role, SampleStatus.RECEIVED, SampleStatus.IN_PROGRESS,
        )

    def test_analyst_completes_testing(self):
        assert SAMPLE_STATUS_GUARD.can_transition(
            Role.ANALYST, SampleStatus.IN_PROGRESS, SampleStatus.TESTING_COMPLETED,
        )

    def test_analyst_cannot_verify(self):
        assert not SAMPLE_STATUS_GUARD.can_transition(
            Role.ANALYST, SampleStatus.TESTING_COMPLETED, SampleStatus.VERIFIED,
        )

    def test_review_chain(self):
        assert SAMPLE_STATUS_GUARD.can_transition(
            Role.OPERATIONAL_MANAGER, SampleStatus.TESTING_COMPLETED, SampleStatus.VERIFIED,
        )
        assert SAMPLE_STATUS_GUARD.can_transition(
            Role.LABORATORY_HEAD, SampleStatus.VERIFIED, SampleStatus.VALIDATED,
        )
        assert SAMPLE_STATUS_GUARD.can_transition(
            Role.LABORATORY_HEAD, SampleStatus.VALIDATED, SampleStatus.REPORTED,
        )

    def test_no_skipping_verification(self):
        for role in Role:
            assert not SAMPLE_STATUS_GUARD.can_transition(
                role, SampleStatus.TESTING_COMPLETED, SampleStatus.VALIDATED,
            )

    def test_all_states_in_declaration_order(self):
        assert SAMPLE_STATUS_GUARD.all_states() == tuple(SampleStatus)


class TestRequestStatusGuard:

    def test_resubmission_edge(self):
        assert REQUEST_STATUS_GUARD.can_transition(
            Role.ADMINISTRATOR, RequestStatus.RETURNED, RequestStatus.SUBMITTED,
        )

    @pytest.mark.parametrize("role", [Role.OPERATIONAL_MANAGER, Role.LABORATORY_HEAD])
    def test_reviewers_accept_completed_intake(self, role):
        assert REQUEST_STATUS_GUARD.can_transition(
            role,
            RequestStatus.SUBMITTED_FOR_VALIDATION,
            RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
        )

    def test_admin_cannot_accept_own_intake(self):
        assert not REQUEST_STATUS_GUARD.can_transition(
            Role.ADMINISTRATOR,
            RequestStatus.SUBMITTED_FOR_VALIDATION,
            RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
        )

    def test_dedicated_targets_are_real_edges(self):
        reachable = {
            target
            for role in Role
            for state in RequestStatus
            for target in REQUEST_STATUS_GUARD.allowed_targets(role, state)
        }
        assert DEDICATED_REQUEST_TARGETS <= reachable


class TestTestStatusGuard:

    def test_analyst_measures(self):
        assert TEST_STATUS_GUARD.can_transition(
            Role.ANALYST, TestStatus.DRAFT, TestStatus.IN_PROGRESS,
        )
        assert TEST_STATUS_GUARD.allowed_targets(Role.ANALYST, TestStatus.IN_PROGRESS) == {
            TestStatus.MEASURED, TestStatus.FAILED,
        }

    def test_failed_is_terminal(self):
        for role in Role:
            assert TEST_STATUS_GUARD.allowed_targets(role, TestStatus.FAILED) == frozenset()


class TestGuardContract:

    @pytest.mark.parametrize("guard", ALL_GUARDS, ids=lambda g: g.name)
    def test_client_owns_no_edge(self, guard):
        for state in guard.all_states():
            assert guard.allowed_targets(Role.CLIENT, state) == frozenset()

    def test_require_raises_policy_denied_with_context(self):
        with pytest.raises(PolicyDeniedError) as exc_info:
            SAMPLE_STATUS_GUARD.require(
                Role.CLIENT, SampleStatus.RECEIVED, SampleStatus.IN_PROGRESS,
            )
        assert exc_info.value.role == "client"
        assert exc_info.value.state == "received"
        assert exc_info.value.code == "POLICY_DENIED"

    def test_require_passes_silently_on_owned_edge(self):
        QUALITY_COVER_GUARD.require(
            Role.ANALYST, QualityCoverStatus.DRAFT, QualityCoverStatus.SUBMITTED,
        )

    def test_roles_for_edge(self):
        assert SAMPLE_STATUS_GUARD.roles_for(
            SampleStatus.RECEIVED, SampleStatus.IN_PROGRESS,
        ) == {Role.ADMINISTRATOR, Role.SAMPLE_COLLECTOR}


class TestQualityCoverGuard:

    def test_validated_only_from_verified(self):
        for role in Role:
            for state in QualityCoverStatus:
                if QUALITY_COVER_GUARD.can_transition(role, state, QualityCoverStatus.VALIDATED):
                    assert state is QualityCoverStatus.VERIFIED
                    assert role is Role.LABORATORY_HEAD

    def test_reject_owned_per_stage(self):
        assert QUALITY_COVER_GUARD.roles_for(
            QualityCoverStatus.SUBMITTED, QualityCoverStatus.REJECTED,
        ) == {Role.OPERATIONAL_MANAGER}
        assert QUALITY_COVER_GUARD.roles_for(
            QualityCoverStatus.VERIFIED, QualityCoverStatus.REJECTED,
        ) == {Role.LABORATORY_HEAD}

    def test_rejected_cover_resubmittable(self):
        assert QUALITY_COVER_GUARD.can_transition(
            Role.ANALYST, QualityCoverStatus.REJECTED, QualityCoverStatus.SUBMITTED,
        )
