"""
IntakeService -- guarded moves of the intake request status.

Covers the request-status edges no dedicated operation owns: the
Administrator's handling of client submissions, the collector's rejection
at reception, and the reviewers' acceptance of a completed intake
(submitted_for_validation -> waiting_sample_id_assignment).

Edges driven by custody checkpoints or by the sample ID workflow are
refused here, so the status and its evidence cannot drift apart.
"""

from __future__ import annotations

from uuid import UUID

from lims_kernel.domain.dtos import MutationResult, SampleState
from lims_kernel.domain.roles import Actor
from lims_kernel.domain.transitions import (
    DEDICATED_REQUEST_TARGETS,
    REQUEST_STATUS_GUARD,
    RequestStatus,
)
from lims_kernel.exceptions import (
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
)
from lims_kernel.logging_config import get_logger
from lims_kernel.models.sample import Sample
from lims_kernel.services.base import BaseService

logger = get_logger("services.intake")


class IntakeService(BaseService[Sample]):

    def transition_request_status(
        self,
        sample_id: UUID,
        actor: Actor,
        target: RequestStatus | str,
        note: str | None = None,
    ) -> MutationResult[SampleState]:
        """
        Move ``request_status`` to ``target`` along a REQUEST_STATUS_GUARD edge.

        Raises:
            LabCodeAssignedError: intake is closed for this sample.
            PreconditionFailedError: ``target`` belongs to a dedicated
                operation, or equals the current status.
            PolicyDeniedError: the role does not own the edge.
        """
        target = RequestStatus(target)
        sample = self._load_for_update(Sample, sample_id)
        if sample.lab_code:
            raise LabCodeAssignedError(str(sample_id), sample.lab_code)

        current = RequestStatus(sample.request_status)
        if target in DEDICATED_REQUEST_TARGETS:
            raise PreconditionFailedError(
                str(sample_id), f"{target.value} is set by its own operation",
            )
        if current is target:
            raise PreconditionFailedError(str(sample_id), f"request is already {target.value}")

        try:
            REQUEST_STATUS_GUARD.require(actor.role, current, target)
        except PolicyDeniedError:
            logger.warning(
                "request_status_transition_denied",
                extra={
                    "sample_id": str(sample_id),
                    "role": actor.role.value,
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise

        before = sample.audit_snapshot()
        sample.request_status = target.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        after = sample.audit_snapshot()
        if note:
            after["status_note"] = note
        audit_id = self._audit(
            actor, "Sample", sample.id, "REQUEST_STATUS_CHANGED", before, after,
        )
        logger.info(
            "request_status_changed",
            extra={
                "sample_id": str(sample_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return MutationResult(sample.to_dto(), audit_id)
