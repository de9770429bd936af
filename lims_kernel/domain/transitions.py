"""
Role-gated status machines (``lims_kernel.domain.transitions``).

Responsibility
--------------
One generic ``TransitionGuard`` parameterised by a lookup table, and the
three fixed tables it is instantiated with: detailed sample status, intake
request status, and per-test status.

Architecture position
---------------------
**Kernel domain layer** -- pure functions and frozen tables.  ZERO I/O.

Invariants enforced
-------------------
* A transition is legal iff the role has an entry for the current state and
  the target is a member of that entry's set.  Roles or states absent from
  a table always reject.
* ``Role.CLIENT`` owns no entry in any table.
* Tables are module constants; there is no runtime registration.

Failure modes
-------------
* ``PolicyDeniedError`` from ``TransitionGuard.require``.  Callers must
  surface it distinctly from ``NotFoundError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Generic, TypeVar

from lims_kernel.domain.roles import Role
from lims_kernel.exceptions import PolicyDeniedError

S = TypeVar("S", bound=Enum)


class SampleStatus(str, Enum):
    """Detailed (laboratory-side) sample status."""

    RECEIVED = "received"
    IN_PROGRESS = "in_progress"
    TESTING_COMPLETED = "testing_completed"
    VERIFIED = "verified"
    VALIDATED = "validated"
    REPORTED = "reported"


class RequestStatus(str, Enum):
    """Intake-side status of the sample request.

    ``SUBMITTED`` is the client's submission of a request;
    ``SUBMITTED_FOR_VALIDATION`` is the collector's submission of a
    completed intake for review.  They are distinct states.
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    RETURNED = "returned"
    READY_FOR_DELIVERY = "ready_for_delivery"
    PHYSICALLY_RECEIVED = "physically_received"
    IN_TRANSIT_TO_COLLECTOR = "in_transit_to_collector"
    UNDER_INSPECTION = "under_inspection"
    SUBMITTED_FOR_VALIDATION = "submitted_for_validation"
    INSPECTION_FAILED = "inspection_failed"
    REJECTED = "rejected"
    RETURNED_TO_ADMIN = "returned_to_admin"
    WAITING_SAMPLE_ID_ASSIGNMENT = "waiting_sample_id_assignment"
    SAMPLE_ID_PENDING_VERIFICATION = "sample_id_pending_verification"
    SAMPLE_ID_APPROVED_FOR_ASSIGNMENT = "sample_id_approved_for_assignment"
    INTAKE_VALIDATED = "intake_validated"


class TestStatus(str, Enum):
    """Status of one requested parameter test on a sample."""

    __test__ = False  # not a pytest test class

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    MEASURED = "measured"
    VERIFIED = "verified"
    VALIDATED = "validated"
    CANCELLED = "cancelled"
    FAILED = "failed"


TransitionTable = Mapping[Role, Mapping[S, frozenset[S]]]


class TransitionGuard(Generic[S]):
    """Pure ``(role, current, target) -> bool`` check over a fixed table.

    Contract:
        ``can_transition`` never raises for well-typed input; ``require``
        raises ``PolicyDeniedError`` instead of returning False.
    """

    def __init__(self, name: str, states: type[S], table: TransitionTable):
        self._name = name
        self._states = states
        self._table = table

    @property
    def name(self) -> str:
        return self._name

    def all_states(self) -> tuple[S, ...]:
        """All states in declaration order."""
        return tuple(self._states)

    def allowed_targets(self, role: Role, current: S) -> frozenset[S]:
        return self._table.get(role, {}).get(current, frozenset())

    def can_transition(self, role: Role, current: S, target: S) -> bool:
        return target in self.allowed_targets(role, current)

    def require(self, role: Role, current: S, target: S) -> None:
        if not self.can_transition(role, current, target):
            raise PolicyDeniedError(
                role.value,
                f"move {self._name} to {target.value}",
                current.value,
            )

    def roles_for(self, current: S, target: S) -> frozenset[Role]:
        """Roles that own the edge ``current -> target``."""
        return frozenset(
            role for role, edges in self._table.items()
            if target in edges.get(current, frozenset())
        )


# =========================================================================
# Detailed sample status
# =========================================================================

_RECEIVED_TO_IN_PROGRESS = {
    SampleStatus.RECEIVED: frozenset({SampleStatus.IN_PROGRESS}),
}

SAMPLE_STATUS_TRANSITIONS: dict[Role, dict[SampleStatus, frozenset[SampleStatus]]] = {
    Role.ADMINISTRATOR: dict(_RECEIVED_TO_IN_PROGRESS),
    Role.SAMPLE_COLLECTOR: dict(_RECEIVED_TO_IN_PROGRESS),
    Role.ANALYST: {
        SampleStatus.IN_PROGRESS: frozenset({SampleStatus.TESTING_COMPLETED}),
    },
    Role.OPERATIONAL_MANAGER: {
        SampleStatus.TESTING_COMPLETED: frozenset({SampleStatus.VERIFIED}),
    },
    Role.LABORATORY_HEAD: {
        SampleStatus.VERIFIED: frozenset({SampleStatus.VALIDATED}),
        SampleStatus.VALIDATED: frozenset({SampleStatus.REPORTED}),
    },
}


# =========================================================================
# Intake request status
# =========================================================================

_INTAKE_REVIEW = {
    RequestStatus.SUBMITTED_FOR_VALIDATION: frozenset({
        RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
    }),
    RequestStatus.SAMPLE_ID_PENDING_VERIFICATION: frozenset({
        RequestStatus.SAMPLE_ID_APPROVED_FOR_ASSIGNMENT,
        RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
    }),
}

REQUEST_STATUS_TRANSITIONS: dict[Role, dict[RequestStatus, frozenset[RequestStatus]]] = {
    Role.ADMINISTRATOR: {
        RequestStatus.SUBMITTED: frozenset({
            RequestStatus.RETURNED,
            RequestStatus.READY_FOR_DELIVERY,
        }),
        RequestStatus.RETURNED: frozenset({RequestStatus.SUBMITTED}),
        RequestStatus.READY_FOR_DELIVERY: frozenset({
            RequestStatus.PHYSICALLY_RECEIVED,
        }),
        RequestStatus.PHYSICALLY_RECEIVED: frozenset({
            RequestStatus.IN_TRANSIT_TO_COLLECTOR,
        }),
        RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT: frozenset({
            RequestStatus.INTAKE_VALIDATED,
            RequestStatus.SAMPLE_ID_PENDING_VERIFICATION,
        }),
        RequestStatus.SAMPLE_ID_APPROVED_FOR_ASSIGNMENT: frozenset({
            RequestStatus.INTAKE_VALIDATED,
        }),
    },
    Role.SAMPLE_COLLECTOR: {
        RequestStatus.PHYSICALLY_RECEIVED: frozenset({RequestStatus.REJECTED}),
        RequestStatus.IN_TRANSIT_TO_COLLECTOR: frozenset({
            RequestStatus.UNDER_INSPECTION,
        }),
        RequestStatus.UNDER_INSPECTION: frozenset({
            RequestStatus.SUBMITTED_FOR_VALIDATION,
            RequestStatus.INSPECTION_FAILED,
        }),
    },
    Role.OPERATIONAL_MANAGER: dict(_INTAKE_REVIEW),
    Role.LABORATORY_HEAD: dict(_INTAKE_REVIEW),
}


# =========================================================================
# Per-test status
# =========================================================================

TEST_STATUS_TRANSITIONS: dict[Role, dict[TestStatus, frozenset[TestStatus]]] = {
    Role.ANALYST: {
        TestStatus.DRAFT: frozenset({TestStatus.IN_PROGRESS}),
        TestStatus.IN_PROGRESS: frozenset({
            TestStatus.MEASURED,
            TestStatus.FAILED,
        }),
    },
    Role.OPERATIONAL_MANAGER: {
        TestStatus.MEASURED: frozenset({TestStatus.VERIFIED}),
    },
    Role.LABORATORY_HEAD: {
        TestStatus.VERIFIED: frozenset({TestStatus.VALIDATED}),
    },
}


SAMPLE_STATUS_GUARD: TransitionGuard[SampleStatus] = TransitionGuard(
    "sample_status", SampleStatus, SAMPLE_STATUS_TRANSITIONS,
)
REQUEST_STATUS_GUARD: TransitionGuard[RequestStatus] = TransitionGuard(
    "request_status", RequestStatus, REQUEST_STATUS_TRANSITIONS,
)
TEST_STATUS_GUARD: TransitionGuard[TestStatus] = TransitionGuard(
    "test_status", TestStatus, TEST_STATUS_TRANSITIONS,
)

# Request-status targets owned by custody checkpoints or the sample ID
# workflow.  The generic request-status move refuses them.
DEDICATED_REQUEST_TARGETS: frozenset[RequestStatus] = frozenset({
    RequestStatus.IN_TRANSIT_TO_COLLECTOR,
    RequestStatus.UNDER_INSPECTION,
    RequestStatus.SUBMITTED_FOR_VALIDATION,
    RequestStatus.INSPECTION_FAILED,
    RequestStatus.SAMPLE_ID_PENDING_VERIFICATION,
    RequestStatus.SAMPLE_ID_APPROVED_FOR_ASSIGNMENT,
    RequestStatus.INTAKE_VALIDATED,
})
