"""
Module: lims_kernel.models.audit_record
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Hash chain integrity: hash = H(entity_kind | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditTrail.
    - seq is monotonically increasing, allocated from the counter table.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditRecord IS the audit trail.  Every custody checkpoint, status move,
    review, signature and code assignment produces exactly one row, unless
    the acting identity was unresolved.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lims_kernel.db.base import Base, UUIDString


class AuditRecord(Base):
    """
    Audit record with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - before/after hold only the fields that changed.
        - prev_hash is None only for the genesis record.
    """

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_entity", "entity_kind", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)

    # Kind of entity audited (e.g. "Sample", "QualityCover", "LetterOfOrder")
    entity_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Normalized: uppercase, bounded length
    action: Mapped[str] = mapped_column(String(40), nullable=False)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord #{self.seq} {self.action} on {self.entity_kind}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
