"""
QualityCoverService -- the checker / reviewer / reviewer review pipeline.

Responsibility:
    Drafts and submits a sample's quality cover (Analyst), verifies it
    (Operational Manager), validates it (Laboratory Head) and rejects it
    back to an editable state with a mandatory reason.

Architecture position:
    Kernel > Services.  Legality comes from QUALITY_COVER_GUARD; payload
    completeness from ``missing_payload_fields``.  Document generation is
    delegated to an injected ``DocumentGenerator``.

Invariants enforced:
    - ``validated`` is reachable only from ``verified``.
    - A rejection always stores and audits a non-empty reason.
    - The document generator runs exactly once per validation.  Its failure
      is stored on the cover and returned; the validation itself stands.
    - A resubmitted cover starts its review again: verification and
      rejection fields from the previous round are cleared.
    - Saving a draft that changes nothing writes no audit record.

Failure modes:
    - PolicyDeniedError, PreconditionFailedError, InvalidPayloadError,
      ReasonRequiredError, NotFoundError.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lims_kernel.domain.classification import WorkflowGroup, resolve_workflow_group
from lims_kernel.domain.clock import Clock
from lims_kernel.domain.dtos import MutationResult, QualityCoverState
from lims_kernel.domain.quality_cover import (
    EDITABLE_STATUSES,
    QUALITY_COVER_GUARD,
    QualityCoverStatus,
    missing_payload_fields,
)
from lims_kernel.domain.roles import Actor, Role
from lims_kernel.exceptions import (
    InvalidPayloadError,
    PolicyDeniedError,
    PreconditionFailedError,
    ReasonRequiredError,
)
from lims_kernel.logging_config import get_logger
from lims_kernel.models.quality_cover import QualityCover
from lims_kernel.models.sample import Sample
from lims_kernel.selectors.document_selector import QualityCoverSelector
from lims_kernel.services.audit_trail import AuditTrail
from lims_kernel.services.base import BaseService
from lims_kernel.services.document_generation import DocumentGenerator
from lims_kernel.utils.hashing import hash_payload

logger = get_logger("services.quality_cover")


class QualityCoverService(BaseService[QualityCover]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditTrail | None = None,
        document_generator: DocumentGenerator | None = None,
    ):
        super().__init__(session, clock=clock, auditor=auditor)
        self.document_generator = document_generator

    # ------------------------------------------------------------------
    # Checker
    # ------------------------------------------------------------------

    def save_draft(
        self,
        sample_id: UUID,
        actor: Actor,
        method_of_analysis: str | None,
        payload: dict[str, Any] | None,
    ) -> MutationResult[QualityCoverState]:
        """
        Create or update the sample's cover while it is editable.

        The first call creates the cover in ``draft``.  Later calls replace
        the method and payload as long as the cover is draft or rejected.
        """
        if actor.role is not Role.ANALYST:
            raise PolicyDeniedError(actor.role.value, "edit a quality cover")

        sample = self._load_for_update(Sample, sample_id)
        if not sample.lab_code:
            raise PreconditionFailedError(str(sample_id), "sample has no lab code yet")

        cover = self.session.execute(
            select(QualityCover)
            .where(QualityCover.sample_id == sample.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if cover is None:
            cover = QualityCover(
                sample_id=sample.id,
                status=QualityCoverStatus.DRAFT.value,
                created_by_id=actor.actor_id,
            )
            self.session.add(cover)
            before: dict[str, Any] = {}
            action = "QUALITY_COVER_CREATED"
        else:
            status = QualityCoverStatus(cover.status)
            if status not in EDITABLE_STATUSES:
                raise PreconditionFailedError(
                    str(cover.id), f"cover is {status.value} and cannot be edited",
                )
            before = cover.audit_snapshot()
            action = "QUALITY_COVER_DRAFT_SAVED"

        cover.method_of_analysis = method_of_analysis.strip() if method_of_analysis else None
        cover.payload = dict(payload) if payload else None
        cover.payload_hash = hash_payload(cover.payload) if cover.payload else None
        after = cover.audit_snapshot()
        if after == before:
            return MutationResult(cover.to_dto(), None)

        cover.updated_by_id = actor.actor_id
        self.session.flush()

        audit_id = self._audit(actor, "QualityCover", cover.id, action, before, after)
        logger.info(
            "quality_cover_draft_saved",
            extra={"sample_id": str(sample_id), "cover_id": str(cover.id)},
        )
        return MutationResult(cover.to_dto(), audit_id)

    def submit(self, cover_id: UUID, actor: Actor) -> MutationResult[QualityCoverState]:
        """Submit an editable cover for verification."""
        cover = self._load_for_update(QualityCover, cover_id)
        current = self._require_edge(cover, actor, QualityCoverStatus.SUBMITTED)

        if not cover.method_of_analysis:
            raise PreconditionFailedError(str(cover_id), "method_of_analysis is required")
        if not cover.payload:
            raise PreconditionFailedError(str(cover_id), "payload is required")
        missing = missing_payload_fields(cover.payload, self._workflow_group(cover.sample_id))
        if missing:
            raise InvalidPayloadError(str(cover_id), missing)

        before = cover.audit_snapshot()
        now = self.clock.now()
        cover.status = QualityCoverStatus.SUBMITTED.value
        cover.checked_by_id = actor.actor_id
        cover.checked_at = now
        cover.verified_by_id = None
        cover.verified_at = None
        cover.rejected_by_id = None
        cover.rejected_at = None
        cover.reject_reason = None
        cover.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, cover, current, "QUALITY_COVER_SUBMITTED", before)

    # ------------------------------------------------------------------
    # Reviewers
    # ------------------------------------------------------------------

    def verify(self, cover_id: UUID, actor: Actor) -> MutationResult[QualityCoverState]:
        cover = self._load_for_update(QualityCover, cover_id)
        current = self._require_edge(cover, actor, QualityCoverStatus.VERIFIED)

        before = cover.audit_snapshot()
        cover.status = QualityCoverStatus.VERIFIED.value
        cover.verified_by_id = actor.actor_id
        cover.verified_at = self.clock.now()
        cover.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, cover, current, "QUALITY_COVER_VERIFIED", before)

    def validate(self, cover_id: UUID, actor: Actor) -> MutationResult[QualityCoverState]:
        """
        Validate a verified cover and request its certificate.

        A failing generator does not undo the validation: the error text is
        stored in ``generation_error`` and the returned state carries it.
        """
        cover = self._load_for_update(QualityCover, cover_id)
        current = self._require_edge(cover, actor, QualityCoverStatus.VALIDATED)

        before = cover.audit_snapshot()
        cover.status = QualityCoverStatus.VALIDATED.value
        cover.validated_by_id = actor.actor_id
        cover.validated_at = self.clock.now()
        cover.generated_document_id = None
        cover.generation_error = None

        if self.document_generator is not None:
            try:
                cover.generated_document_id = self.document_generator.generate_certificate(
                    cover.sample_id,
                )
            except Exception as exc:
                cover.generation_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "certificate_generation_failed",
                    extra={
                        "cover_id": str(cover_id),
                        "sample_id": str(cover.sample_id),
                        "error": cover.generation_error,
                    },
                )

        cover.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, cover, current, "QUALITY_COVER_VALIDATED", before)

    def reject(
        self,
        cover_id: UUID,
        actor: Actor,
        reason: str,
    ) -> MutationResult[QualityCoverState]:
        """Send a submitted or verified cover back to the analyst."""
        if not reason or not reason.strip():
            raise ReasonRequiredError(str(cover_id), "reject quality cover")

        cover = self._load_for_update(QualityCover, cover_id)
        current = self._require_edge(cover, actor, QualityCoverStatus.REJECTED)

        before = cover.audit_snapshot()
        cover.status = QualityCoverStatus.REJECTED.value
        cover.rejected_by_id = actor.actor_id
        cover.rejected_at = self.clock.now()
        cover.reject_reason = reason.strip()
        cover.updated_by_id = actor.actor_id
        self.session.flush()

        return self._finish(actor, cover, current, "QUALITY_COVER_REJECTED", before)

    def get_state(self, cover_id: UUID) -> QualityCoverState:
        return QualityCoverSelector(self.session).get_state(cover_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_edge(
        self,
        cover: QualityCover,
        actor: Actor,
        target: QualityCoverStatus,
    ) -> QualityCoverStatus:
        current = QualityCoverStatus(cover.status)
        try:
            QUALITY_COVER_GUARD.require(actor.role, current, target)
        except PolicyDeniedError:
            logger.warning(
                "quality_cover_transition_denied",
                extra={
                    "cover_id": str(cover.id),
                    "role": actor.role.value,
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise
        return current

    def _workflow_group(self, sample_id: UUID) -> WorkflowGroup | None:
        sample = self.session.get(Sample, sample_id)
        if sample is None:
            return None
        if sample.workflow_group:
            return WorkflowGroup(sample.workflow_group)
        return resolve_workflow_group(sample.parameter_ids)

    def _finish(
        self,
        actor: Actor,
        cover: QualityCover,
        previous: QualityCoverStatus,
        action: str,
        before: dict[str, Any],
    ) -> MutationResult[QualityCoverState]:
        audit_id = self._audit(
            actor, "QualityCover", cover.id, action, before, cover.audit_snapshot(),
        )
        logger.info(
            "quality_cover_status_changed",
            extra={
                "cover_id": str(cover.id),
                "from_status": previous.value,
                "to_status": cover.status,
            },
        )
        return MutationResult(cover.to_dto(), audit_id)
