"""
Module: lims_kernel.models.quality_cover
Responsibility: ORM persistence for a sample's quality-control cover sheet.
Architecture position: Kernel > Models.

Invariants enforced:
    - One cover per sample (UNIQUE sample_id).
    - Each review stage keeps its own actor and timestamp columns, so a later
      stage never overwrites an earlier one.

Audit relevance:
    The payload is opaque to the kernel.  Only its hash enters the audit
    snapshot, so audit records stay small and the payload stays verifiable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lims_kernel.db.base import TrackedBase, UUIDString
from lims_kernel.domain.dtos import QualityCoverState
from lims_kernel.domain.quality_cover import QualityCoverStatus


class QualityCover(TrackedBase):
    __tablename__ = "quality_covers"

    sample_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("samples.id"), nullable=False, unique=True,
    )
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=QualityCoverStatus.DRAFT.value,
    )
    method_of_analysis: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    checked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    checked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verified_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    validated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    generated_document_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    generation_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<QualityCover {self.id} sample={self.sample_id} status={self.status}>"

    def audit_snapshot(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "status": self.status,
            "method_of_analysis": self.method_of_analysis,
            "payload_hash": self.payload_hash,
            "checked_at": _iso(self.checked_at),
            "verified_at": _iso(self.verified_at),
            "validated_at": _iso(self.validated_at),
            "rejected_at": _iso(self.rejected_at),
            "reject_reason": self.reject_reason,
            "generated_document_id": self.generated_document_id,
            "generation_error": self.generation_error,
        }

    def to_dto(self) -> QualityCoverState:
        return QualityCoverState(
            id=self.id,
            sample_id=self.sample_id,
            status=QualityCoverStatus(self.status),
            method_of_analysis=self.method_of_analysis,
            payload=dict(self.payload or {}),
            payload_hash=self.payload_hash,
            checked_by_id=self.checked_by_id,
            checked_at=self.checked_at,
            verified_by_id=self.verified_by_id,
            verified_at=self.verified_at,
            validated_by_id=self.validated_by_id,
            validated_at=self.validated_at,
            rejected_by_id=self.rejected_by_id,
            rejected_at=self.rejected_at,
            reject_reason=self.reject_reason,
            generated_document_id=self.generated_document_id,
            generation_error=self.generation_error,
        )
