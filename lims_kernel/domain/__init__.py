"""
Pure domain layer.

Transition tables, the custody graph, classification ranges, code
formatting and DTOs.  Nothing here touches the ORM, the database, the
clock or any other I/O.
"""

from lims_kernel.domain.classification import WorkflowGroup, resolve_workflow_group
from lims_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lims_kernel.domain.custody import (
    CUSTODY_STEPS,
    CrosscheckStatus,
    CustodyEvent,
    CustodySnapshot,
    check_custody_event,
)
from lims_kernel.domain.dtos import (
    CustodyCheckpoint,
    LetterOfOrderState,
    MutationResult,
    PreApprovalState,
    QualityCoverState,
    SampleIdChangeRequestState,
    SampleState,
    SampleTestState,
    SignatureSlotState,
)
from lims_kernel.domain.letter_of_order import LetterOfOrderStatus
from lims_kernel.domain.quality_cover import QualityCoverStatus
from lims_kernel.domain.roles import Actor, Role, normalize_role
from lims_kernel.domain.transitions import (
    REQUEST_STATUS_GUARD,
    SAMPLE_STATUS_GUARD,
    TEST_STATUS_GUARD,
    RequestStatus,
    SampleStatus,
    TestStatus,
    TransitionGuard,
)

__all__ = [
    "Actor",
    "CUSTODY_STEPS",
    "Clock",
    "CrosscheckStatus",
    "CustodyCheckpoint",
    "CustodyEvent",
    "CustodySnapshot",
    "DeterministicClock",
    "LetterOfOrderState",
    "LetterOfOrderStatus",
    "MutationResult",
    "PreApprovalState",
    "QualityCoverState",
    "QualityCoverStatus",
    "REQUEST_STATUS_GUARD",
    "RequestStatus",
    "Role",
    "SAMPLE_STATUS_GUARD",
    "SampleIdChangeRequestState",
    "SampleState",
    "SampleStatus",
    "SampleTestState",
    "SignatureSlotState",
    "SystemClock",
    "TEST_STATUS_GUARD",
    "TestStatus",
    "TransitionGuard",
    "WorkflowGroup",
    "check_custody_event",
    "normalize_role",
    "resolve_workflow_group",
]
