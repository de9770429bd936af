"""
Module: lims_kernel.models.sample_id
Responsibility: ORM persistence for per-prefix code counters and for
    proposals to replace a reserved sample code.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - SampleIdCounter.prefix is UNIQUE; its row is the sole source of truth
      for the next number under that prefix.
    - last_number never decreases (SampleIdAllocator only ever increments or
      advances it).

Failure modes:
    - IntegrityError on concurrent creation of the same counter row; the
      allocator retries under a savepoint.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lims_kernel.db.base import Base, TrackedBase, UUIDString
from lims_kernel.domain.dtos import SampleIdChangeRequestState


class SampleIdCounter(Base):
    """
    Counter row keyed by a normalized prefix (or an internal sequence key).

    Row-level locking serializes allocation per key; distinct keys never
    contend.
    """

    __tablename__ = "sample_id_counters"

    prefix: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    last_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SampleIdCounter {self.prefix}={self.last_number}>"


class ChangeRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SampleIdChangeRequest(TrackedBase):
    """Administrator's proposal to use a different code than the reserved one."""

    __tablename__ = "sample_id_change_requests"

    __table_args__ = (
        Index("idx_id_change_sample_status", "sample_id", "status"),
    )

    sample_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("samples.id"), nullable=False,
    )
    suggested_code: Mapped[str] = mapped_column(String(40), nullable=False)
    proposed_code: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ChangeRequestStatus.PENDING.value,
    )
    requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def audit_snapshot(self) -> dict[str, Any]:
        return {
            "sample_id": str(self.sample_id),
            "suggested_code": self.suggested_code,
            "proposed_code": self.proposed_code,
            "status": self.status,
            "reviewed_by_id": str(self.reviewed_by_id) if self.reviewed_by_id else None,
            "review_note": self.review_note,
        }

    def to_dto(self) -> SampleIdChangeRequestState:
        return SampleIdChangeRequestState(
            id=self.id,
            sample_id=self.sample_id,
            suggested_code=self.suggested_code,
            proposed_code=self.proposed_code,
            status=self.status,
            requested_by_id=self.requested_by_id,
            reviewed_by_id=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
            review_note=self.review_note,
        )
