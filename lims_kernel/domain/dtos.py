"""
DTOs -- immutable state snapshots returned across the kernel boundary.

Responsibility:
    Frozen views of samples, tests, quality covers, letters of order and
    pre-approvals, plus ``MutationResult``, the envelope every mutating
    service operation returns.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Models build these through
    ``to_dto()``; services and selectors hand them to callers.  No ORM
    instance ever leaves the kernel.

Invariants enforced:
    - ``MutationResult.audit_record_id`` is None only when the acting
      identity was unresolved and the audit trail wrote nothing.
    - ``PreApprovalState.ready`` is derived, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.custody import CrosscheckStatus, CustodyEvent
from lims_kernel.domain.letter_of_order import LetterOfOrderStatus
from lims_kernel.domain.quality_cover import QualityCoverStatus
from lims_kernel.domain.roles import Role
from lims_kernel.domain.transitions import RequestStatus, SampleStatus, TestStatus

T = TypeVar("T")


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """New state of the mutated entity plus the audit record written for it."""

    state: T
    audit_record_id: UUID | None

    @property
    def audited(self) -> bool:
        return self.audit_record_id is not None


@dataclass(frozen=True)
class CustodyCheckpoint:
    event: CustodyEvent
    recorded_at: datetime | None
    recorded_by_id: UUID | None

    @property
    def is_recorded(self) -> bool:
        return self.recorded_at is not None


@dataclass(frozen=True)
class SampleState:
    id: UUID
    client_id: UUID
    sample_type: str
    parameter_ids: tuple[int, ...]
    detailed_status: SampleStatus
    request_status: RequestStatus
    crosscheck_status: CrosscheckStatus
    physical_label_code: str | None
    crosscheck_note: str | None
    intake_passed: bool | None
    reserved_code: str | None
    lab_code: str | None
    workflow_group: WorkflowGroup | None
    custody: tuple[CustodyCheckpoint, ...]
    created_by_id: UUID | None = None

    def checkpoint(self, event: CustodyEvent) -> CustodyCheckpoint:
        for cp in self.custody:
            if cp.event is event:
                return cp
        raise KeyError(event)

    def custody_timestamps(self) -> dict[CustodyEvent, datetime | None]:
        return {cp.event: cp.recorded_at for cp in self.custody}

    @property
    def is_finalized(self) -> bool:
        return self.lab_code is not None


@dataclass(frozen=True)
class SampleTestState:
    id: UUID
    sample_id: UUID
    parameter_id: int
    assignee_id: UUID | None
    status: TestStatus
    started_at: datetime | None
    completed_at: datetime | None


@dataclass(frozen=True)
class SampleIdChangeRequestState:
    id: UUID
    sample_id: UUID
    suggested_code: str
    proposed_code: str
    status: str
    requested_by_id: UUID | None
    reviewed_by_id: UUID | None
    reviewed_at: datetime | None
    review_note: str | None


@dataclass(frozen=True)
class QualityCoverState:
    id: UUID
    sample_id: UUID
    status: QualityCoverStatus
    method_of_analysis: str | None
    payload: dict[str, Any]
    payload_hash: str | None
    checked_by_id: UUID | None
    checked_at: datetime | None
    verified_by_id: UUID | None
    verified_at: datetime | None
    validated_by_id: UUID | None
    validated_at: datetime | None
    rejected_by_id: UUID | None
    rejected_at: datetime | None
    reject_reason: str | None
    generated_document_id: str | None
    generation_error: str | None

    @property
    def is_editable(self) -> bool:
        return self.status in (QualityCoverStatus.DRAFT, QualityCoverStatus.REJECTED)


@dataclass(frozen=True)
class SignatureSlotState:
    role: Role
    signed_by_id: UUID | None
    signed_at: datetime | None
    signature_hash: str | None

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None


@dataclass(frozen=True)
class LetterOfOrderState:
    id: UUID
    number: str
    status: LetterOfOrderStatus
    sample_ids: tuple[UUID, ...]
    signatures: tuple[SignatureSlotState, ...]
    payload: dict[str, Any]
    payload_hash: str | None
    sent_to_client_at: datetime | None
    client_signed_at: datetime | None
    locked_at: datetime | None

    def slot(self, role: Role) -> SignatureSlotState:
        for s in self.signatures:
            if s.role is role:
                return s
        raise KeyError(role)

    @property
    def is_locked(self) -> bool:
        return self.status is LetterOfOrderStatus.LOCKED


@dataclass(frozen=True)
class PreApprovalState:
    sample_id: UUID
    om_approved: bool
    om_approved_at: datetime | None
    om_approved_by_id: UUID | None
    lh_approved: bool
    lh_approved_at: datetime | None
    lh_approved_by_id: UUID | None

    @property
    def ready(self) -> bool:
        return self.om_approved and self.lh_approved
