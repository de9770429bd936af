"""
SampleService -- sample registration, detailed status, workflow group.

Responsibility:
    Registers samples, moves the laboratory-side ``detailed_status`` through
    the sample status table, and derives the workflow group once.

Architecture position:
    Kernel > Services.  Uses SAMPLE_STATUS_GUARD and the classification
    resolver from the domain layer.

Invariants enforced:
    - Detailed status moves only along SAMPLE_STATUS_GUARD edges owned by
      the actor's role, and only after the sample was received from the
      client (``admin_received_from_client``).
    - workflow_group is written at most once.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from lims_kernel.domain.classification import normalize_parameter_ids, resolve_workflow_group
from lims_kernel.domain.custody import CustodyEvent
from lims_kernel.domain.dtos import MutationResult, SampleState
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.domain.transitions import SAMPLE_STATUS_GUARD, RequestStatus, SampleStatus
from lims_kernel.exceptions import (
    CustodyOrderError,
    PolicyDeniedError,
    PreconditionFailedError,
)
from lims_kernel.logging_config import get_logger
from lims_kernel.models.sample import Sample
from lims_kernel.services.base import BaseService

logger = get_logger("services.sample")

REGISTERING_ROLES: frozenset[Role] = frozenset({Role.ADMINISTRATOR})


class SampleService(BaseService[Sample]):

    def register_sample(
        self,
        actor: Actor,
        client_id: UUID,
        sample_type: str,
        parameter_ids: Iterable[int],
        request_status: RequestStatus = RequestStatus.SUBMITTED,
    ) -> MutationResult[SampleState]:
        """Create a sample in ``received`` with the given request status."""
        if actor.role not in REGISTERING_ROLES:
            raise PolicyDeniedError(actor.role.value, "register a sample")
        if request_status not in (RequestStatus.DRAFT, RequestStatus.SUBMITTED):
            raise PreconditionFailedError(
                str(client_id), f"new samples start in draft or submitted, not {request_status.value}",
            )
        if not sample_type or not sample_type.strip():
            raise PreconditionFailedError(str(client_id), "sample_type is required")

        sample = Sample(
            client_id=client_id,
            sample_type=sample_type.strip(),
            parameter_ids=sorted(normalize_parameter_ids(parameter_ids)),
            detailed_status=SampleStatus.RECEIVED.value,
            request_status=RequestStatus(request_status).value,
            created_by_id=actor.actor_id,
        )
        self.session.add(sample)
        self.session.flush()

        audit_id = self._audit(
            actor, "Sample", sample.id, "SAMPLE_REGISTERED", {}, sample.audit_snapshot(),
        )
        logger.info(
            "sample_registered",
            extra={"sample_id": str(sample.id), "client_id": str(client_id)},
        )
        return MutationResult(sample.to_dto(), audit_id)

    def transition_status(
        self,
        sample_id: UUID,
        actor: Actor,
        target: SampleStatus | str,
        note: str | None = None,
    ) -> MutationResult[SampleState]:
        """
        Move ``detailed_status`` to ``target``.

        Raises:
            CustodyOrderError: the sample has not been received from the client.
            PreconditionFailedError: ``target`` is the current status.
            PolicyDeniedError: the role does not own the edge.
        """
        target = SampleStatus(target)
        sample = self._load_for_update(Sample, sample_id)
        current = SampleStatus(sample.detailed_status)

        if sample.admin_received_from_client_at is None:
            raise CustodyOrderError(
                str(sample_id),
                f"detailed status {target.value}",
                CustodyEvent.ADMIN_RECEIVED_FROM_CLIENT.value,
            )
        if current is target:
            raise PreconditionFailedError(str(sample_id), f"sample is already {target.value}")

        try:
            SAMPLE_STATUS_GUARD.require(actor.role, current, target)
        except PolicyDeniedError:
            logger.warning(
                "sample_status_transition_denied",
                extra={
                    "sample_id": str(sample_id),
                    "role": actor.role.value,
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise

        before = sample.audit_snapshot()
        sample.detailed_status = target.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        after = sample.audit_snapshot()
        if note:
            after["status_note"] = note
        audit_id = self._audit(actor, "Sample", sample.id, "SAMPLE_STATUS_CHANGED", before, after)

        logger.info(
            "sample_status_changed",
            extra={
                "sample_id": str(sample_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return MutationResult(sample.to_dto(), audit_id)

    def ensure_workflow_group(self, sample_id: UUID, actor: Actor) -> MutationResult[SampleState]:
        """
        Derive and store the workflow group if it is not set yet.

        Idempotent: when the group is already set, or no parameter maps to a
        group, nothing is written and ``audit_record_id`` is None.
        """
        if actor.role is Role.CLIENT:
            raise PolicyDeniedError(actor.role.value, "derive workflow group")

        sample = self._load_for_update(Sample, sample_id)
        if sample.workflow_group is not None:
            return MutationResult(sample.to_dto(), None)

        group = resolve_workflow_group(sample.parameter_ids)
        if group is None:
            return MutationResult(sample.to_dto(), None)

        before = sample.audit_snapshot()
        sample.workflow_group = group.value
        sample.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(
            actor, "Sample", sample.id, "WORKFLOW_GROUP_SET", before, sample.audit_snapshot(),
        )
        logger.info(
            "workflow_group_set",
            extra={"sample_id": str(sample_id), "workflow_group": group.value},
        )
        return MutationResult(sample.to_dto(), audit_id)
