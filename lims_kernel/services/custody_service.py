"""
CustodyService -- physical handoff checkpoints and identity crosscheck.

Responsibility:
    Records custody checkpoints in the fixed order of the custody graph and
    runs the analyst's crosscheck of the physical label against the
    expected sample code.

Architecture position:
    Kernel > Services.  Legality comes from ``domain.custody``; this
    service only loads, persists and audits.

Invariants enforced:
    - A checkpoint timestamp is written with ``UPDATE ... WHERE <field> IS
      NULL``.  Two concurrent firings set it exactly once; the loser gets
      ``CustodyEventAlreadyRecordedError``.
    - Checkpoints and crosschecks are refused once a lab code is assigned.
    - Intake checkpoints drive the request status: brought to collector ->
      in_transit_to_collector, collector received -> under_inspection,
      intake completed -> submitted_for_validation or inspection_failed,
      return legs -> returned_to_admin.

Failure modes:
    - LabCodeAssignedError, PolicyDeniedError, CustodyOrderError,
      CustodyEventAlreadyRecordedError, PreconditionFailedError,
      ReasonRequiredError, NotFoundError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import update

from lims_kernel.domain.codes import codes_match
from lims_kernel.domain.custody import (
    CrosscheckStatus,
    CustodyEvent,
    check_custody_event,
)
from lims_kernel.domain.dtos import MutationResult, SampleState
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.domain.transitions import RequestStatus
from lims_kernel.exceptions import (
    CustodyEventAlreadyRecordedError,
    CustodyOrderError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
    ReasonRequiredError,
)
from lims_kernel.logging_config import LogContext, get_logger
from lims_kernel.models.sample import Sample
from lims_kernel.services.base import BaseService
from lims_kernel.services.sample_id_service import approved_override

logger = get_logger("services.custody")

_REQUEST_STATUS_SIDE_EFFECTS: dict[CustodyEvent, RequestStatus] = {
    CustodyEvent.ADMIN_BROUGHT_TO_COLLECTOR: RequestStatus.IN_TRANSIT_TO_COLLECTOR,
    CustodyEvent.COLLECTOR_RECEIVED: RequestStatus.UNDER_INSPECTION,
    CustodyEvent.COLLECTOR_RETURNED_TO_ADMIN: RequestStatus.RETURNED_TO_ADMIN,
    CustodyEvent.ADMIN_RECEIVED_FROM_COLLECTOR: RequestStatus.RETURNED_TO_ADMIN,
    CustodyEvent.CLIENT_PICKED_UP: RequestStatus.RETURNED_TO_ADMIN,
}


class CustodyService(BaseService[Sample]):

    def apply_custody_event(
        self,
        sample_id: UUID,
        event: CustodyEvent | str,
        actor: Actor,
        intake_passed: bool | None = None,
    ) -> MutationResult[SampleState]:
        """
        Record one custody checkpoint.

        ``intake_passed`` is required for ``collector_intake_completed`` and
        ignored for every other event.
        """
        event = CustodyEvent(event)
        sample = self._load_for_update(Sample, sample_id)

        with LogContext.bind_actor(actor, sample_id=sample_id):
            try:
                step = check_custody_event(event, actor.role, sample.custody_snapshot())
            except PolicyDeniedError:
                logger.warning(
                    "custody_event_denied",
                    extra={"event": event.value, "role": actor.role.value},
                )
                raise

            values: dict[str, object] = {
                step.timestamp_field: self.clock.now(),
                step.actor_field: actor.actor_id,
                "updated_by_id": actor.actor_id,
            }
            if event is CustodyEvent.COLLECTOR_INTAKE_COMPLETED:
                if not isinstance(intake_passed, bool):
                    raise PreconditionFailedError(
                        str(sample_id), "collector_intake_completed requires intake_passed",
                    )
                values["intake_passed"] = intake_passed
                values["request_status"] = (
                    RequestStatus.SUBMITTED_FOR_VALIDATION.value
                    if intake_passed
                    else RequestStatus.INSPECTION_FAILED.value
                )
            elif event in _REQUEST_STATUS_SIDE_EFFECTS:
                values["request_status"] = _REQUEST_STATUS_SIDE_EFFECTS[event].value

            before = sample.audit_snapshot()

            timestamp_column = getattr(Sample, step.timestamp_field)
            result = self.session.execute(
                update(Sample)
                .where(Sample.id == sample.id, timestamp_column.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CustodyEventAlreadyRecordedError(str(sample_id), event.value)
            self.session.refresh(sample)

            audit_id = self._audit(
                actor, "Sample", sample.id, f"CUSTODY_{event.value}",
                before, sample.audit_snapshot(),
            )
            logger.info(
                "custody_event_applied",
                extra={
                    "event": event.value,
                    "request_status": sample.request_status,
                },
            )
            return MutationResult(sample.to_dto(), audit_id)

    def crosscheck(
        self,
        sample_id: UUID,
        actor: Actor,
        physical_label_code: str,
        note: str | None = None,
    ) -> MutationResult[SampleState]:
        """
        Compare the physically read label against the expected code.

        The expected code is the approved override, if any, else the
        reserved code.  A match passes and clears the note; a mismatch
        needs a note and fails.
        """
        if actor.role is not Role.ANALYST:
            raise PolicyDeniedError(actor.role.value, "crosscheck a sample")

        sample = self._load_for_update(Sample, sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample_id), sample.lab_code)
        if sample.analyst_received_at is None:
            raise CustodyOrderError(
                str(sample_id), "crosscheck", CustodyEvent.ANALYST_RECEIVED.value,
            )
        if sample.crosscheck_status == CrosscheckStatus.PASSED.value:
            raise PreconditionFailedError(str(sample_id), "crosscheck already passed")

        expected = approved_override(self.session, sample.id) or sample.reserved_code
        if not expected:
            raise PreconditionFailedError(str(sample_id), "no sample code to crosscheck against")

        entered = (physical_label_code or "").strip()
        before = sample.audit_snapshot()

        if codes_match(entered, expected):
            sample.crosscheck_status = CrosscheckStatus.PASSED.value
            sample.crosscheck_note = None
        else:
            if not note or not note.strip():
                raise ReasonRequiredError(str(sample_id), "crosscheck mismatch")
            sample.crosscheck_status = CrosscheckStatus.FAILED.value
            sample.crosscheck_note = note.strip()

        sample.physical_label_code = entered
        sample.crosschecked_at = self.clock.now()
        sample.crosschecked_by_id = actor.actor_id
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        action = (
            "CROSSCHECK_PASSED"
            if sample.crosscheck_status == CrosscheckStatus.PASSED.value
            else "CROSSCHECK_FAILED"
        )
        audit_id = self._audit(actor, "Sample", sample.id, action, before, sample.audit_snapshot())
        logger.info(
            "crosscheck_recorded",
            extra={"sample_id": str(sample_id), "crosscheck_status": sample.crosscheck_status},
        )
        return MutationResult(sample.to_dto(), audit_id)
