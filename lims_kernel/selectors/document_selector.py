"""
Module: lims_kernel.selectors.document_selector
Responsibility: Read access to quality covers, Letters of Order and
    pre-approval readiness.
Architecture position: Kernel > Selectors.

Failure modes:
    - ``get_state`` raises NotFoundError for an unknown id.
    - ``verify_signature`` returns None for a token no slot carries.
    - ``PreApprovalSelector.get_state`` never raises: a sample nobody has
      flagged yet is simply not ready.
"""

from uuid import UUID

from sqlalchemy import select

from lims_kernel.domain.dtos import (
    LetterOfOrderState,
    PreApprovalState,
    QualityCoverState,
    SignatureSlotState,
)
from lims_kernel.domain.roles import Role
from lims_kernel.models.letter_of_order import (
    LetterOfOrder,
    LetterOfOrderSample,
    LetterOfOrderSignature,
    PreApproval,
)
from lims_kernel.models.quality_cover import QualityCover
from lims_kernel.selectors.base import BaseSelector


class QualityCoverSelector(BaseSelector[QualityCover]):

    def get_state(self, cover_id: UUID) -> QualityCoverState:
        return self._get_or_raise(QualityCover, cover_id).to_dto()

    def for_sample(self, sample_id: UUID) -> QualityCoverState | None:
        cover = self.session.execute(
            select(QualityCover).where(QualityCover.sample_id == sample_id)
        ).scalar_one_or_none()
        return cover.to_dto() if cover else None


class LetterOfOrderSelector(BaseSelector[LetterOfOrder]):

    def get_state(self, loo_id: UUID) -> LetterOfOrderState:
        return self._get_or_raise(LetterOfOrder, loo_id).to_dto()

    def get_by_number(self, number: str) -> LetterOfOrderState | None:
        letter = self.session.execute(
            select(LetterOfOrder).where(LetterOfOrder.number == number)
        ).scalar_one_or_none()
        return letter.to_dto() if letter else None

    def for_sample(self, sample_id: UUID) -> LetterOfOrderState | None:
        """The letter that includes ``sample_id``, if one was generated."""
        letter = self.session.execute(
            select(LetterOfOrder)
            .join(LetterOfOrderSample, LetterOfOrderSample.letter_id == LetterOfOrder.id)
            .where(LetterOfOrderSample.sample_id == sample_id)
        ).scalar_one_or_none()
        return letter.to_dto() if letter else None

    def verify_signature(
        self,
        signature_hash: str,
    ) -> tuple[SignatureSlotState, LetterOfOrderState] | None:
        """
        Resolve a printed signature token to its slot and letter.

        Backs the public verification link on a signed letter, so an
        unknown or blank token yields None instead of raising.
        """
        token = (signature_hash or "").strip()
        if not token:
            return None
        signature = self.session.execute(
            select(LetterOfOrderSignature).where(
                LetterOfOrderSignature.signature_hash == token
            )
        ).scalar_one_or_none()
        if signature is None:
            return None
        return signature.to_dto(), signature.letter.to_dto()


class PreApprovalSelector(BaseSelector[PreApproval]):

    def get_state(self, sample_id: UUID) -> PreApprovalState:
        rows = {
            row.role: row
            for row in self.session.execute(
                select(PreApproval).where(PreApproval.sample_id == sample_id)
            ).scalars()
        }
        om = rows.get(Role.OPERATIONAL_MANAGER.value)
        lh = rows.get(Role.LABORATORY_HEAD.value)
        return PreApprovalState(
            sample_id=sample_id,
            om_approved=bool(om and om.approved),
            om_approved_at=om.approved_at if om else None,
            om_approved_by_id=om.approved_by_id if om else None,
            lh_approved=bool(lh and lh.approved),
            lh_approved_at=lh.approved_at if lh else None,
            lh_approved_by_id=lh.approved_by_id if lh else None,
        )

    def ready_sample_ids(self, sample_ids: list[UUID]) -> list[UUID]:
        return [sid for sid in sample_ids if self.get_state(sid).ready]
