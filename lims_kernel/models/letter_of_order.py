"""
Module: lims_kernel.models.letter_of_order
Responsibility: ORM persistence for Letters of Order, their sample links,
    their signature slots, and the per-sample pre-approval flags that gate
    which samples a new letter may include.
Architecture position: Kernel > Models.

Invariants enforced:
    - LetterOfOrder.number is UNIQUE (allocated from the counter table).
    - A sample belongs to at most one letter (UNIQUE sample_id on the link).
    - One signature slot per (letter, role) and one pre-approval flag per
      (sample, role).
    - Once a letter is locked, the letter, its links and its signatures are
      immutable (db/immutability.py).

Failure modes:
    - IntegrityError when a sample is linked twice.
    - ImmutabilityViolationError on any change after lock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lims_kernel.db.base import TrackedBase, UUIDString
from lims_kernel.domain.dtos import LetterOfOrderState, SignatureSlotState
from lims_kernel.domain.letter_of_order import (
    SIGNATURE_SLOT_ROLES,
    LetterOfOrderStatus,
)
from lims_kernel.domain.roles import Role


class LetterOfOrder(TrackedBase):
    """
    A generated release document covering one or more samples.

    Contract:
        draft -> signed_internal -> sent_to_client -> client_signed -> locked.
        ``payload`` snapshots the included items at generation time; the
        kernel stores it and its hash without interpreting it.
    """

    __tablename__ = "letters_of_order"

    number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LetterOfOrderStatus.DRAFT.value,
    )
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sent_to_client_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_signed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    samples: Mapped[list[LetterOfOrderSample]] = relationship(
        back_populates="letter",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    signatures: Mapped[list[LetterOfOrderSignature]] = relationship(
        back_populates="letter",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<LetterOfOrder {self.number} status={self.status}>"

    @property
    def is_locked(self) -> bool:
        return self.status == LetterOfOrderStatus.LOCKED.value

    def slot(self, role: Role) -> LetterOfOrderSignature | None:
        for sig in self.signatures:
            if sig.role == role.value:
                return sig
        return None

    def signed_roles(self) -> frozenset[Role]:
        return frozenset(
            Role(sig.role) for sig in self.signatures if sig.signed_at is not None
        )

    def audit_snapshot(self) -> dict[str, Any]:
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        snap: dict[str, Any] = {
            "number": self.number,
            "status": self.status,
            "payload_hash": self.payload_hash,
            "sample_ids": sorted(str(link.sample_id) for link in self.samples),
            "sent_to_client_at": _iso(self.sent_to_client_at),
            "client_signed_at": _iso(self.client_signed_at),
            "locked_at": _iso(self.locked_at),
        }
        for sig in self.signatures:
            snap[f"signature_{sig.role}_at"] = _iso(sig.signed_at)
        return snap

    def to_dto(self) -> LetterOfOrderState:
        order = {role.value: i for i, role in enumerate(SIGNATURE_SLOT_ROLES)}
        return LetterOfOrderState(
            id=self.id,
            number=self.number,
            status=LetterOfOrderStatus(self.status),
            sample_ids=tuple(sorted((link.sample_id for link in self.samples), key=str)),
            signatures=tuple(
                sig.to_dto()
                for sig in sorted(self.signatures, key=lambda s: order.get(s.role, 99))
            ),
            payload=dict(self.payload or {}),
            payload_hash=self.payload_hash,
            sent_to_client_at=self.sent_to_client_at,
            client_signed_at=self.client_signed_at,
            locked_at=self.locked_at,
        )


class LetterOfOrderSample(TrackedBase):
    """Link from a letter to one of its samples."""

    __tablename__ = "letter_of_order_samples"

    letter_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("letters_of_order.id"), nullable=False,
    )
    sample_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("samples.id"), nullable=False, unique=True,
    )

    letter: Mapped[LetterOfOrder] = relationship(back_populates="samples")


class LetterOfOrderSignature(TrackedBase):
    """One signature slot.  Empty until the owning role signs."""

    __tablename__ = "letter_of_order_signatures"

    __table_args__ = (
        UniqueConstraint("letter_id", "role", name="uq_loo_signature_slot"),
        Index("idx_loo_signature_hash", "signature_hash"),
    )

    letter_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("letters_of_order.id"), nullable=False,
    )
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    signed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    signature_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    letter: Mapped[LetterOfOrder] = relationship(back_populates="signatures")

    def to_dto(self) -> SignatureSlotState:
        return SignatureSlotState(
            role=Role(self.role),
            signed_by_id=self.signed_by_id,
            signed_at=self.signed_at,
            signature_hash=self.signature_hash,
        )


class PreApproval(TrackedBase):
    """A reviewing role's readiness flag for one sample."""

    __tablename__ = "pre_approvals"

    __table_args__ = (
        UniqueConstraint("sample_id", "role", name="uq_pre_approval_sample_role"),
    )

    sample_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("samples.id"), nullable=False,
    )
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<PreApproval sample={self.sample_id} {self.role}={self.approved}>"
