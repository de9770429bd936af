"""
SampleIdService -- reservation, override review and final assignment of
sample codes.

Responsibility:
    Once intake is validated by a reviewer, the Administrator reserves a
    code from the allocator under the sample's workflow-group prefix.  The
    Administrator may propose a different code, which a reviewer approves or
    rejects.  After a passed crosscheck the Administrator assigns the final
    lab code, which freezes the sample's custody and intake.

Architecture position:
    Kernel > Services.  Uses SampleIdAllocator for minting and counter
    reconciliation, REQUEST_STATUS_GUARD for the intake edges it drives.

Invariants enforced:
    - A sample reserves at most one code; reserving again is a no-op.
    - A lab code is assigned at most once and is unique across samples.
    - Assigning a code syncs the counter, so later allocations never
      collide with an override.
    - Proposed codes are valid, differ from the reservation and are unused.

Failure modes:
    - LabCodeAssignedError, PolicyDeniedError, PreconditionFailedError,
      InvalidSampleCodeError, DuplicateSampleCodeError, ReasonRequiredError,
      AllocationConflictError, NotFoundError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from lims_kernel.domain.classification import WorkflowGroup, resolve_workflow_group
from lims_kernel.domain.clock import Clock
from lims_kernel.domain.codes import normalize_code, parse_code
from lims_kernel.domain.custody import CrosscheckStatus
from lims_kernel.domain.dtos import MutationResult, SampleIdChangeRequestState, SampleState
from lims_kernel.domain.roles import REVIEWING_ROLES, Actor, Role
from lims_kernel.domain.transitions import REQUEST_STATUS_GUARD, RequestStatus
from lims_kernel.exceptions import (
    DuplicateSampleCodeError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
    ReasonRequiredError,
)
from lims_kernel.logging_config import get_logger
from lims_kernel.models.sample import Sample
from lims_kernel.models.sample_id import ChangeRequestStatus, SampleIdChangeRequest
from lims_kernel.services.audit_trail import AuditTrail
from lims_kernel.services.base import BaseService
from lims_kernel.services.sequence_allocator import SampleIdAllocator

logger = get_logger("services.sample_id")

RESERVABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
    RequestStatus.SAMPLE_ID_PENDING_VERIFICATION,
    RequestStatus.SAMPLE_ID_APPROVED_FOR_ASSIGNMENT,
})


def approved_override(session: Session, sample_id: UUID) -> str | None:
    """Most recently approved replacement code for the sample, if any."""
    row = session.execute(
        select(SampleIdChangeRequest)
        .where(
            SampleIdChangeRequest.sample_id == sample_id,
            SampleIdChangeRequest.status == ChangeRequestStatus.APPROVED.value,
        )
        .order_by(SampleIdChangeRequest.reviewed_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    return row.proposed_code if row else None


class SampleIdService(BaseService[Sample]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditTrail | None = None,
        allocator: SampleIdAllocator | None = None,
    ):
        super().__init__(session, clock=clock, auditor=auditor)
        self.allocator = allocator or SampleIdAllocator(session)

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def reserve_code(self, sample_id: UUID, actor: Actor) -> MutationResult[SampleState]:
        """
        Reserve the sample's suggested code from the allocator.

        The prefix follows the workflow group, which is derived here if it
        was never set.  Idempotent: a sample that already holds a
        reservation is returned unchanged with no audit record.
        """
        if actor.role is not Role.ADMINISTRATOR:
            raise PolicyDeniedError(actor.role.value, "reserve a sample code")

        sample = self._load_for_update(Sample, sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample_id), sample.lab_code)
        if RequestStatus(sample.request_status) not in RESERVABLE_STATUSES:
            raise PreconditionFailedError(
                str(sample_id),
                f"codes are reserved after intake validation, not in {sample.request_status}",
            )
        if sample.reserved_code:
            return MutationResult(sample.to_dto(), None)

        before = sample.audit_snapshot()
        if sample.workflow_group is None:
            group = resolve_workflow_group(sample.parameter_ids)
            if group is not None:
                sample.workflow_group = group.value

        group = WorkflowGroup(sample.workflow_group) if sample.workflow_group else None
        code = self.allocator.next(self.allocator.settings.prefix_for_group(group))
        parsed = parse_code(code)

        sample.reserved_code = code
        sample.sample_id_prefix = parsed.prefix
        sample.sample_id_number = parsed.number
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "Sample", sample.id, "SAMPLE_CODE_RESERVED", before, sample.audit_snapshot(),
        )
        logger.info("sample_code_reserved", extra={"sample_id": str(sample_id), "code": code})
        return MutationResult(sample.to_dto(), audit_id)

    # ------------------------------------------------------------------
    # Override proposals
    # ------------------------------------------------------------------

    def propose_change(
        self,
        sample_id: UUID,
        actor: Actor,
        proposed_code: str,
    ) -> MutationResult[SampleIdChangeRequestState]:
        """Propose replacing the reserved code; sends the sample for verification."""
        sample = self._load_for_update(Sample, sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample_id), sample.lab_code)

        current = RequestStatus(sample.request_status)
        REQUEST_STATUS_GUARD.require(
            actor.role, current, RequestStatus.SAMPLE_ID_PENDING_VERIFICATION,
        )
        if not sample.reserved_code:
            raise PreconditionFailedError(str(sample_id), "no reserved code to replace")

        padding = self.allocator.settings.padding
        code = normalize_code(proposed_code, padding)
        if code == normalize_code(sample.reserved_code, padding):
            raise PreconditionFailedError(str(sample_id), "proposed code equals the reserved code")
        self._ensure_code_unused(code, sample.id)

        request = SampleIdChangeRequest(
            sample_id=sample.id,
            suggested_code=sample.reserved_code,
            proposed_code=code,
            status=ChangeRequestStatus.PENDING.value,
            requested_by_id=actor.actor_id,
            created_by_id=actor.actor_id,
        )
        self.session.add(request)
        sample.request_status = RequestStatus.SAMPLE_ID_PENDING_VERIFICATION.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "SampleIdChangeRequest", request.id, "SAMPLE_CODE_CHANGE_PROPOSED",
            {"request_status": current.value},
            {**request.audit_snapshot(), "request_status": sample.request_status},
        )
        logger.info(
            "sample_code_change_proposed",
            extra={"sample_id": str(sample_id), "code": code},
        )
        return MutationResult(request.to_dto(), audit_id)

    def approve_change(
        self,
        request_id: UUID,
        actor: Actor,
        note: str | None = None,
    ) -> MutationResult[SampleIdChangeRequestState]:
        return self._review_change(
            request_id, actor, note,
            ChangeRequestStatus.APPROVED,
            RequestStatus.SAMPLE_ID_APPROVED_FOR_ASSIGNMENT,
        )

    def reject_change(
        self,
        request_id: UUID,
        actor: Actor,
        note: str,
    ) -> MutationResult[SampleIdChangeRequestState]:
        if not note or not note.strip():
            raise ReasonRequiredError(str(request_id), "reject sample code change")
        return self._review_change(
            request_id, actor, note,
            ChangeRequestStatus.REJECTED,
            RequestStatus.WAITING_SAMPLE_ID_ASSIGNMENT,
        )

    def _review_change(
        self,
        request_id: UUID,
        actor: Actor,
        note: str | None,
        decision: ChangeRequestStatus,
        next_status: RequestStatus,
    ) -> MutationResult[SampleIdChangeRequestState]:
        if actor.role not in REVIEWING_ROLES:
            raise PolicyDeniedError(actor.role.value, "review a sample code change")

        request = self._load_for_update(SampleIdChangeRequest, request_id)
        if request.status != ChangeRequestStatus.PENDING.value:
            raise PreconditionFailedError(
                str(request_id), f"change request already {request.status}",
            )
        sample = self._load_for_update(Sample, request.sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample.id), sample.lab_code)

        current = RequestStatus(sample.request_status)
        REQUEST_STATUS_GUARD.require(actor.role, current, next_status)
        if decision is ChangeRequestStatus.APPROVED:
            self._ensure_code_unused(request.proposed_code, sample.id)

        before = {**request.audit_snapshot(), "request_status": current.value}
        request.status = decision.value
        request.reviewed_by_id = actor.actor_id
        request.reviewed_at = self.clock.now()
        request.review_note = note.strip() if note else None
        request.updated_by_id = actor.actor_id
        sample.request_status = next_status.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "SampleIdChangeRequest", request.id,
            f"SAMPLE_CODE_CHANGE_{decision.value}",
            before,
            {**request.audit_snapshot(), "request_status": sample.request_status},
        )
        logger.info(
            "sample_code_change_reviewed",
            extra={"sample_id": str(sample.id), "decision": decision.value},
        )
        return MutationResult(request.to_dto(), audit_id)

    # ------------------------------------------------------------------
    # Final assignment
    # ------------------------------------------------------------------

    def assign_lab_code(self, sample_id: UUID, actor: Actor) -> MutationResult[SampleState]:
        """
        Assign the final lab code and close intake.

        Uses the approved override if there is one, else the reservation.
        """
        sample = self._load_for_update(Sample, sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample_id), sample.lab_code)

        current = RequestStatus(sample.request_status)
        REQUEST_STATUS_GUARD.require(actor.role, current, RequestStatus.INTAKE_VALIDATED)

        if not sample.reserved_code:
            raise PreconditionFailedError(str(sample_id), "no reserved code to assign")
        if sample.crosscheck_status != CrosscheckStatus.PASSED.value:
            raise PreconditionFailedError(str(sample_id), "crosscheck has not passed")

        code = approved_override(self.session, sample.id) or sample.reserved_code
        self._ensure_code_unused(code, sample.id)
        self.allocator.sync_counter_from_code(code)

        before = sample.audit_snapshot()
        sample.lab_code = code
        sample.request_status = RequestStatus.INTAKE_VALIDATED.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "Sample", sample.id, "LAB_CODE_ASSIGNED", before, sample.audit_snapshot(),
        )
        logger.info("lab_code_assigned", extra={"sample_id": str(sample_id), "lab_code": code})
        return MutationResult(sample.to_dto(), audit_id)

    def _ensure_code_unused(self, code: str, sample_id: UUID) -> None:
        clash = self.session.execute(
            select(Sample.id)
            .where(
                Sample.id != sample_id,
                or_(Sample.lab_code == code, Sample.reserved_code == code),
            )
            .limit(1)
        ).scalar_one_or_none()
        if clash is not None:
            raise DuplicateSampleCodeError(code)
