"""
LetterOfOrderService -- pre-approval gate and dual-signature release.

Responsibility:
    Records each reviewing role's per-sample readiness flag, generates a
    numbered Letter of Order over ready samples, collects the two internal
    signatures, releases the letter to the client, records the client's
    counter-signature and locks the letter.

Architecture position:
    Kernel > Services.  Numbers come from SampleIdAllocator under the letter
    prefix.  Lock enforcement is duplicated at the ORM layer
    (db/immutability.py) so no code path can edit a locked letter.

Invariants enforced:
    - Only samples with both pre-approvals may be included; a sample is in
      at most one letter, and its flags freeze once it is.
    - Each signature slot is filled once, by its own role, via
      ``UPDATE ... WHERE signed_at IS NULL``.
    - draft -> signed_internal -> sent_to_client -> client_signed -> locked,
      with no skipped step.
    - Every mutation on a locked letter raises DocumentLockedError.

Failure modes:
    - PolicyDeniedError, SignatureSlotRoleError, SamplesNotReadyError,
      SignatureAlreadyPresentError, PreconditionFailedError,
      AlreadyFinalizedError, DocumentLockedError, AllocationConflictError,
      NotFoundError.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lims_kernel.domain.clock import Clock
from lims_kernel.domain.dtos import LetterOfOrderState, MutationResult, PreApprovalState
from lims_kernel.domain.letter_of_order import (
    GENERATING_ROLES,
    INTERNAL_SIGNATURE_ROLES,
    PRE_APPROVAL_ROLES,
    SENDING_ROLES,
    SIGNATURE_SLOT_ROLES,
    LetterOfOrderStatus,
    internal_signatures_complete,
)
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.exceptions import (
    AlreadyFinalizedError,
    DocumentLockedError,
    PolicyDeniedError,
    PreconditionFailedError,
    SamplesNotReadyError,
    SignatureAlreadyPresentError,
    SignatureSlotRoleError,
)
from lims_kernel.logging_config import LogContext, get_logger
from lims_kernel.models.letter_of_order import (
    LetterOfOrder,
    LetterOfOrderSample,
    LetterOfOrderSignature,
    PreApproval,
)
from lims_kernel.models.sample import Sample
from lims_kernel.selectors.document_selector import LetterOfOrderSelector, PreApprovalSelector
from lims_kernel.services.audit_trail import AuditTrail
from lims_kernel.services.base import BaseService
from lims_kernel.services.sequence_allocator import SampleIdAllocator
from lims_kernel.utils.hashing import hash_payload, new_signature_hash

logger = get_logger("services.letter_of_order")


class LetterOfOrderService(BaseService[LetterOfOrder]):

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
    # Pre-approval
    # ------------------------------------------------------------------

    def set_pre_approval(
        self,
        sample_id: UUID,
        actor: Actor,
        approved: bool,
    ) -> MutationResult[PreApprovalState]:
        """
        Set or revoke the actor's own readiness flag on a sample.

        Setting a flag to the value it already has writes nothing and
        returns ``audit_record_id=None``.
        """
        if actor.role not in PRE_APPROVAL_ROLES:
            raise PolicyDeniedError(actor.role.value, "pre-approve a sample")

        sample = self._load_for_update(Sample, sample_id)
        if not sample.lab_code:
            raise PreconditionFailedError(str(sample_id), "sample has no lab code yet")
        letter_number = self._letter_number_for(sample.id)
        if letter_number is not None:
            raise AlreadyFinalizedError(
                "Sample", str(sample_id), f"included in letter of order {letter_number}",
            )

        approval = self.session.execute(
            select(PreApproval)
            .where(PreApproval.sample_id == sample.id, PreApproval.role == actor.role.value)
            .with_for_update()
        ).scalar_one_or_none()

        current = bool(approval.approved) if approval is not None else False
        if current == bool(approved):
            return MutationResult(self._pre_approval_state(sample.id), None)

        before = {f"{actor.role.value}_approved": current}
        if approval is None:
            approval = PreApproval(
                sample_id=sample.id,
                role=actor.role.value,
                created_by_id=actor.actor_id,
            )
            self.session.add(approval)
        approval.approved = bool(approved)
        approval.approved_at = self.clock.now() if approved else None
        approval.approved_by_id = actor.actor_id if approved else None
        approval.updated_by_id = actor.actor_id
        self.session.flush()

        state = self._pre_approval_state(sample.id)
        audit_id = self._audit(
            actor, "Sample", sample.id,
            "PRE_APPROVAL_SET" if approved else "PRE_APPROVAL_REVOKED",
            before,
            {f"{actor.role.value}_approved": bool(approved), "ready": state.ready},
        )
        logger.info(
            "pre_approval_changed",
            extra={
                "sample_id": str(sample_id),
                "role": actor.role.value,
                "approved": bool(approved),
                "ready": state.ready,
            },
        )
        return MutationResult(state, audit_id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        sample_ids: Iterable[UUID],
        actor: Actor,
    ) -> MutationResult[LetterOfOrderState]:
        """
        Generate a draft letter covering ``sample_ids``.

        Duplicated ids are collapsed.  Every sample must be ready and not
        yet included in another letter.
        """
        if actor.role not in GENERATING_ROLES:
            raise PolicyDeniedError(actor.role.value, "generate a letter of order")

        ids = list(dict.fromkeys(sample_ids))
        if not ids:
            raise PreconditionFailedError("letter_of_order", "no samples selected")

        # Rows are locked in id order.
        samples = [self._load_for_update(Sample, sid) for sid in sorted(ids, key=str)]
        by_id = {s.id: s for s in samples}

        ready = set(PreApprovalSelector(self.session).ready_sample_ids(ids))
        not_ready = [str(sid) for sid in ids if sid not in ready]
        if not_ready:
            logger.warning(
                "letter_of_order_samples_not_ready",
                extra={"sample_ids": not_ready},
            )
            raise SamplesNotReadyError(not_ready)

        for sid in ids:
            number = self._letter_number_for(sid)
            if number is not None:
                raise PreconditionFailedError(
                    str(sid), f"sample already included in letter of order {number}",
                )

        number = self.allocator.next(self.allocator.settings.letter_prefix)
        payload = {
            "number": number,
            "items": [self._payload_item(by_id[sid]) for sid in ids],
        }
        letter = LetterOfOrder(
            number=number,
            status=LetterOfOrderStatus.DRAFT.value,
            payload=payload,
            payload_hash=hash_payload(payload),
            created_by_id=actor.actor_id,
        )
        letter.samples = [
            LetterOfOrderSample(sample_id=sid, created_by_id=actor.actor_id) for sid in ids
        ]
        letter.signatures = [
            LetterOfOrderSignature(role=role.value, created_by_id=actor.actor_id)
            for role in SIGNATURE_SLOT_ROLES
        ]
        self.session.add(letter)
        self.session.flush()

        audit_id = self._audit(
            actor, "LetterOfOrder", letter.id, "LOO_GENERATED", {}, letter.audit_snapshot(),
        )
        logger.info(
            "letter_of_order_generated",
            extra={"document_id": str(letter.id), "number": number, "sample_count": len(ids)},
        )
        return MutationResult(letter.to_dto(), audit_id)

    # ------------------------------------------------------------------
    # Signatures and release
    # ------------------------------------------------------------------

    def sign_internal(self, loo_id: UUID, actor: Actor) -> MutationResult[LetterOfOrderState]:
        """Fill the actor's internal signature slot."""
        letter = self._load_for_update(LetterOfOrder, loo_id)
        with LogContext.bind_actor(actor, document_id=loo_id):
            self._ensure_unlocked(letter)
            if actor.role not in INTERNAL_SIGNATURE_ROLES:
                logger.warning("signature_slot_role_mismatch", extra={"role": actor.role.value})
                raise SignatureSlotRoleError(str(loo_id), actor.role.value)

            before = letter.audit_snapshot()
            self._fill_slot(letter, actor, LetterOfOrderStatus.DRAFT)

            if internal_signatures_complete(letter.signed_roles()):
                letter.status = LetterOfOrderStatus.SIGNED_INTERNAL.value
            letter.updated_by_id = actor.actor_id
            self.session.flush()

            return self._finish(actor, letter, "LOO_SIGNED_INTERNAL", before)

    def send_to_client(self, loo_id: UUID, actor: Actor) -> MutationResult[LetterOfOrderState]:
        letter = self._load_for_update(LetterOfOrder, loo_id)
        self._ensure_unlocked(letter)
        if actor.role not in SENDING_ROLES:
            raise PolicyDeniedError(actor.role.value, "send a letter of order", letter.status)
        if (
            letter.status != LetterOfOrderStatus.SIGNED_INTERNAL.value
            or not internal_signatures_complete(letter.signed_roles())
        ):
            raise PreconditionFailedError(
                str(loo_id), "both internal signatures are required before sending",
            )

        before = letter.audit_snapshot()
        letter.status = LetterOfOrderStatus.SENT_TO_CLIENT.value
        letter.sent_to_client_at = self.clock.now()
        letter.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, letter, "LOO_SENT_TO_CLIENT", before)

    def client_sign(self, loo_id: UUID, actor: Actor) -> MutationResult[LetterOfOrderState]:
        """Record the client's counter-signature on a released letter."""
        letter = self._load_for_update(LetterOfOrder, loo_id)
        self._ensure_unlocked(letter)
        if actor.role is not Role.CLIENT:
            raise SignatureSlotRoleError(str(loo_id), actor.role.value)

        before = letter.audit_snapshot()
        self._fill_slot(letter, actor, LetterOfOrderStatus.SENT_TO_CLIENT)
        letter.status = LetterOfOrderStatus.CLIENT_SIGNED.value
        letter.client_signed_at = self.clock.now()
        letter.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, letter, "LOO_CLIENT_SIGNED", before)

    def lock(self, loo_id: UUID, actor: Actor) -> MutationResult[LetterOfOrderState]:
        letter = self._load_for_update(LetterOfOrder, loo_id)
        self._ensure_unlocked(letter)
        if actor.role is not Role.ADMINISTRATOR:
            raise PolicyDeniedError(actor.role.value, "lock a letter of order", letter.status)
        if letter.status != LetterOfOrderStatus.CLIENT_SIGNED.value:
            raise PreconditionFailedError(str(loo_id), "letter must be client_signed to lock")

        before = letter.audit_snapshot()
        letter.status = LetterOfOrderStatus.LOCKED.value
        letter.locked_at = self.clock.now()
        letter.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, letter, "LOO_LOCKED", before)

    def get_state(self, loo_id: UUID) -> LetterOfOrderState:
        return LetterOfOrderSelector(self.session).get_state(loo_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_unlocked(self, letter: LetterOfOrder) -> None:
        if letter.is_locked:
            raise DocumentLockedError(str(letter.id))

    def _fill_slot(
        self,
        letter: LetterOfOrder,
        actor: Actor,
        required_status: LetterOfOrderStatus,
    ) -> None:
        slot = letter.slot(actor.role)
        if slot is None:
            raise SignatureSlotRoleError(str(letter.id), actor.role.value)
        if slot.signed_at is not None:
            raise SignatureAlreadyPresentError(str(letter.id), actor.role.value)
        if letter.status != required_status.value:
            raise PreconditionFailedError(
                str(letter.id),
                f"{actor.role.value} signs in {required_status.value}, letter is {letter.status}",
            )

        result = self.session.execute(
            update(LetterOfOrderSignature)
            .where(
                LetterOfOrderSignature.id == slot.id,
                LetterOfOrderSignature.signed_at.is_(None),
            )
            .values(
                signed_at=self.clock.now(),
                signed_by_id=actor.actor_id,
                signature_hash=new_signature_hash(),
                updated_by_id=actor.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SignatureAlreadyPresentError(str(letter.id), actor.role.value)
        self.session.refresh(slot)

    def _letter_number_for(self, sample_id: UUID) -> str | None:
        return self.session.execute(
            select(LetterOfOrder.number)
            .join(LetterOfOrderSample, LetterOfOrderSample.letter_id == LetterOfOrder.id)
            .where(LetterOfOrderSample.sample_id == sample_id)
        ).scalar_one_or_none()

    def _pre_approval_state(self, sample_id: UUID) -> PreApprovalState:
        return PreApprovalSelector(self.session).get_state(sample_id)

    @staticmethod
    def _payload_item(sample: Sample) -> dict[str, Any]:
        return {
            "sample_id": str(sample.id),
            "lab_code": sample.lab_code,
            "sample_type": sample.sample_type,
            "parameter_ids": list(sample.parameter_ids or []),
            "workflow_group": sample.workflow_group,
        }

    def _finish(
        self,
        actor: Actor,
        letter: LetterOfOrder,
        action: str,
        before: dict[str, Any],
    ) -> MutationResult[LetterOfOrderState]:
        audit_id = self._audit(
            actor, "LetterOfOrder", letter.id, action, before, letter.audit_snapshot(),
        )
        logger.info(
            "letter_of_order_status_changed",
            extra={
                "document_id": str(letter.id),
                "number": letter.number,
                "status": letter.status,
                "action": action,
            },
        )
        return MutationResult(letter.to_dto(), audit_id)
