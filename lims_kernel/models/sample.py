"""
Module: lims_kernel.models.sample
Responsibility: ORM persistence for samples and their requested tests.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (enums and DTOs) only.

Invariants enforced:
    - lab_code is UNIQUE and write-once (ORM listener in db/immutability.py).
    - reserved_code is UNIQUE: a minted code belongs to exactly one sample.
    - Every custody checkpoint has one ``<event>_at`` and one ``<event>_by_id``
      column; the timestamp is write-once.
    - workflow_group is set at most once.

Failure modes:
    - IntegrityError on a duplicate lab_code or reserved_code.
    - ImmutabilityViolationError when a set checkpoint or lab_code changes.

Audit relevance:
    ``audit_snapshot()`` is the before/after image every sample mutation
    hands to the audit trail.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lims_kernel.db.base import TrackedBase, UUIDString
from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.custody import CrosscheckStatus, CustodyEvent, CustodySnapshot
from lims_kernel.domain.dtos import CustodyCheckpoint, SampleState, SampleTestState
from lims_kernel.domain.transitions import RequestStatus, SampleStatus, TestStatus

CUSTODY_TIMESTAMP_FIELDS: tuple[str, ...] = tuple(f"{e.value}_at" for e in CustodyEvent)
CUSTODY_ACTOR_FIELDS: tuple[str, ...] = tuple(f"{e.value}_by_id" for e in CustodyEvent)


def _ts():
    return mapped_column(nullable=True)


def _by():
    return mapped_column(UUIDString(), nullable=True)


class Sample(TrackedBase):
    """
    A physical laboratory sample and its request.

    Contract:
        Status columns hold enum values as strings; ``to_dto()`` converts
        them back.  Services write custody checkpoints through conditional
        UPDATE statements, never by assigning attributes on a loaded row.
    """

    __tablename__ = "samples"

    __table_args__ = (
        Index("idx_sample_client", "client_id"),
        Index("idx_sample_request_status", "request_status"),
        Index("idx_sample_detailed_status", "detailed_status"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sample_type: Mapped[str] = mapped_column(String(100), nullable=False)
    parameter_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)

    detailed_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=SampleStatus.RECEIVED.value,
    )
    request_status: Mapped[str] = mapped_column(
        String(40), nullable=False, default=RequestStatus.SUBMITTED.value,
    )

    # Identity crosscheck
    crosscheck_status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=CrosscheckStatus.PENDING.value,
    )
    physical_label_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    crosscheck_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    crosschecked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    crosschecked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    intake_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Sample ID reservation and final code
    sample_id_prefix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    sample_id_number: Mapped[int | None] = mapped_column(nullable=True)
    reserved_code: Mapped[str | None] = mapped_column(String(40), nullable=True, unique=True)
    lab_code: Mapped[str | None] = mapped_column(String(40), nullable=True, unique=True)

    workflow_group: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Custody checkpoints (write-once)
    admin_received_from_client_at: Mapped[datetime | None] = _ts()
    admin_received_from_client_by_id: Mapped[UUID | None] = _by()
    admin_brought_to_collector_at: Mapped[datetime | None] = _ts()
    admin_brought_to_collector_by_id: Mapped[UUID | None] = _by()
    collector_received_at: Mapped[datetime | None] = _ts()
    collector_received_by_id: Mapped[UUID | None] = _by()
    collector_intake_completed_at: Mapped[datetime | None] = _ts()
    collector_intake_completed_by_id: Mapped[UUID | None] = _by()
    collector_returned_to_admin_at: Mapped[datetime | None] = _ts()
    collector_returned_to_admin_by_id: Mapped[UUID | None] = _by()
    admin_received_from_collector_at: Mapped[datetime | None] = _ts()
    admin_received_from_collector_by_id: Mapped[UUID | None] = _by()
    client_picked_up_at: Mapped[datetime | None] = _ts()
    client_picked_up_by_id: Mapped[UUID | None] = _by()
    sc_delivered_to_analyst_at: Mapped[datetime | None] = _ts()
    sc_delivered_to_analyst_by_id: Mapped[UUID | None] = _by()
    analyst_received_at: Mapped[datetime | None] = _ts()
    analyst_received_by_id: Mapped[UUID | None] = _by()
    analyst_returned_to_sc_at: Mapped[datetime | None] = _ts()
    analyst_returned_to_sc_by_id: Mapped[UUID | None] = _by()
    sc_received_from_analyst_at: Mapped[datetime | None] = _ts()
    sc_received_from_analyst_by_id: Mapped[UUID | None] = _by()

    tests: Mapped[list[SampleTest]] = relationship(
        back_populates="sample",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SampleTest.parameter_id",
    )

    def __repr__(self) -> str:
        return f"<Sample {self.id} {self.lab_code or self.reserved_code or '-'}>"

    def custody_timestamp(self, event: CustodyEvent) -> datetime | None:
        return getattr(self, f"{event.value}_at")

    def custody_snapshot(self) -> CustodySnapshot:
        return CustodySnapshot(
            sample_id=str(self.id),
            timestamps={e: self.custody_timestamp(e) for e in CustodyEvent},
            lab_code=self.lab_code,
            intake_passed=self.intake_passed,
            crosscheck_status=CrosscheckStatus(self.crosscheck_status),
        )

    def audit_snapshot(self) -> dict[str, Any]:
        """JSON-ready image of every business field."""
        snap: dict[str, Any] = {
            "client_id": str(self.client_id),
            "sample_type": self.sample_type,
            "parameter_ids": list(self.parameter_ids or []),
            "detailed_status": self.detailed_status,
            "request_status": self.request_status,
            "crosscheck_status": self.crosscheck_status,
            "physical_label_code": self.physical_label_code,
            "crosscheck_note": self.crosscheck_note,
            "intake_passed": self.intake_passed,
            "reserved_code": self.reserved_code,
            "lab_code": self.lab_code,
            "workflow_group": self.workflow_group,
        }
        for event in CustodyEvent:
            ts = self.custody_timestamp(event)
            snap[f"{event.value}_at"] = ts.isoformat() if ts else None
        return snap

    def to_dto(self) -> SampleState:
        return SampleState(
            id=self.id,
            client_id=self.client_id,
            created_by_id=self.created_by_id,
            sample_type=self.sample_type,
            parameter_ids=tuple(self.parameter_ids or ()),
            detailed_status=SampleStatus(self.detailed_status),
            request_status=RequestStatus(self.request_status),
            crosscheck_status=CrosscheckStatus(self.crosscheck_status),
            physical_label_code=self.physical_label_code,
            crosscheck_note=self.crosscheck_note,
            intake_passed=self.intake_passed,
            reserved_code=self.reserved_code,
            lab_code=self.lab_code,
            workflow_group=(
                WorkflowGroup(self.workflow_group) if self.workflow_group else None
            ),
            custody=tuple(
                CustodyCheckpoint(
                    event=e,
                    recorded_at=getattr(self, f"{e.value}_at"),
                    recorded_by_id=getattr(self, f"{e.value}_by_id"),
                )
                for e in CustodyEvent
            ),
        )


class SampleTest(TrackedBase):
    """One requested parameter test on a sample."""

    __tablename__ = "sample_tests"

    __table_args__ = (
        Index("idx_sample_test_sample", "sample_id"),
    )

    sample_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("samples.id"), nullable=False,
    )
    parameter_id: Mapped[int] = mapped_column(Integer, nullable=False)
    assignee_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TestStatus.DRAFT.value,
    )
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    sample: Mapped[Sample] = relationship(back_populates="tests")

    def __repr__(self) -> str:
        return f"<SampleTest {self.id} param={self.parameter_id} status={self.status}>"

    def audit_snapshot(self) -> dict[str, Any]:
        return {
            "sample_id": str(self.sample_id),
            "parameter_id": self.parameter_id,
            "assignee_id": str(self.assignee_id) if self.assignee_id else None,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def to_dto(self) -> SampleTestState:
        return SampleTestState(
            id=self.id,
            sample_id=self.sample_id,
            parameter_id=self.parameter_id,
            assignee_id=self.assignee_id,
            status=TestStatus(self.status),
            started_at=self.started_at,
            completed_at=self.completed_at,
        )
