"""
AuditTrail -- tamper-evident, append-only record of every mutation.

Responsibility:
    Writes one hash-chained ``AuditRecord`` per state-changing operation,
    holding the field-level diff between the entity's before and after
    images.  Provides chain validation and per-entity traces.

Architecture position:
    Kernel > Services -- imperative shell, called by every mutating service
    after it has applied its change and before it returns.

Invariants enforced:
    - Exactly one record per mutation, except when the acting identity or
      the entity id is unresolved.  That exemption is logged at WARNING
      (``audit_skipped_unresolved_actor``), never silent.
    - Audit chain integrity: ``hash = H(entity_kind | entity_id | action |
      payload_hash | prev_hash)``.
    - seq comes from the allocator's ``_audit`` sequence (locked counter
      row), never from max(seq)+1.
    - Append-only: no update or delete API; ORM listeners forbid both.
    - Action names are stripped, uppercased and truncated; normalization
      never raises.

Failure modes:
    - AuditChainBrokenError from ``validate_chain``.
    - AllocationConflictError if the sequence row cannot be locked.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lims_kernel.domain.audit import DEFAULT_ACTION_MAX_LENGTH, compute_diff, normalize_action
from lims_kernel.domain.clock import Clock, SystemClock
from lims_kernel.domain.roles import Actor
from lims_kernel.exceptions import AuditChainBrokenError
from lims_kernel.logging_config import get_logger
from lims_kernel.models.audit_record import AuditRecord
from lims_kernel.services.sequence_allocator import SampleIdAllocator
from lims_kernel.utils.hashing import hash_audit_record, hash_payload, to_json_safe

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditSettings:
    action_max_length: int = DEFAULT_ACTION_MAX_LENGTH


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    actor_role: str
    before: dict[str, Any]
    after: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit records for one entity, in sequence order."""

    entity_kind: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


def _payload(record_actor_id: str, actor_role: str, before: Any, after: Any) -> dict[str, Any]:
    return {
        "actor_id": record_actor_id,
        "actor_role": actor_role,
        "before": before,
        "after": after,
    }


class AuditTrail:
    """
    Append-only audit writer and reader.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT interpret records; that is forensic tooling.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: AuditSettings | None = None,
        allocator: SampleIdAllocator | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or AuditSettings()
        self._allocator = allocator or SampleIdAllocator(session)

    def record(
        self,
        actor: Actor | None,
        entity_kind: str,
        entity_id: UUID | None,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> AuditRecord | None:
        """
        Append one audit record for a mutation.

        Returns:
            The flushed record, or None when the actor or entity id is
            unresolved.
        """
        normalized_action = normalize_action(action, self._settings.action_max_length)

        if actor is None or actor.actor_id is None or entity_id is None:
            logger.warning(
                "audit_skipped_unresolved_actor",
                extra={
                    "entity_kind": entity_kind,
                    "entity_id": str(entity_id) if entity_id else None,
                    "action": normalized_action,
                },
            )
            return None

        changed_before, changed_after = compute_diff(
            to_json_safe(before or {}), to_json_safe(after or {}),
        )

        seq = self._allocator.next_number(SampleIdAllocator.AUDIT_SEQUENCE)
        prev_hash = self._get_last_hash()

        payload_hash = hash_payload(
            _payload(str(actor.actor_id), actor.role.value, changed_before, changed_after)
        )
        record_hash = hash_audit_record(
            entity_kind=entity_kind,
            entity_id=str(entity_id),
            action=normalized_action,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        record = AuditRecord(
            seq=seq,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            entity_kind=entity_kind,
            entity_id=entity_id,
            action=normalized_action,
            before=changed_before,
            after=changed_after,
            occurred_at=self._clock.now(),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=record_hash,
        )
        self._session.add(record)
        self._session.flush()

        logger.info(
            "audit_record_created",
            extra={
                "entity_kind": entity_kind,
                "entity_id": str(entity_id),
                "action": normalized_action,
                "seq": seq,
            },
        )
        return record

    def _get_last_hash(self) -> str | None:
        last = self._session.execute(
            select(AuditRecord).order_by(AuditRecord.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last.hash if last else None

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Recomputes each record's payload hash from its stored diff, then its
        chain hash, then checks linkage to the predecessor.

        Raises:
            AuditChainBrokenError: at the first record that fails.
        """
        records = self._session.execute(
            select(AuditRecord).order_by(AuditRecord.seq)
        ).scalars().all()

        if not records:
            return True

        if records[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": records[0].seq})
            raise AuditChainBrokenError(str(records[0].id), "None", records[0].prev_hash)

        for i, rec in enumerate(records):
            expected_payload_hash = hash_payload(
                _payload(str(rec.actor_id), rec.actor_role, rec.before or {}, rec.after or {})
            )
            if rec.payload_hash != expected_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": rec.seq})
                raise AuditChainBrokenError(str(rec.id), expected_payload_hash, rec.payload_hash)

            expected_hash = hash_audit_record(
                entity_kind=rec.entity_kind,
                entity_id=str(rec.entity_id),
                action=rec.action,
                payload_hash=rec.payload_hash,
                prev_hash=rec.prev_hash,
            )
            if rec.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": rec.seq})
                raise AuditChainBrokenError(str(rec.id), expected_hash, rec.hash)

            if i > 0 and rec.prev_hash != records[i - 1].hash:
                logger.critical("audit_chain_broken", extra={"seq": rec.seq})
                raise AuditChainBrokenError(
                    str(rec.id), records[i - 1].hash, rec.prev_hash or "None",
                )

        logger.info("audit_chain_valid", extra={"record_count": len(records)})
        return True

    # Trace and query methods

    def get_trace(self, entity_kind: str, entity_id: UUID) -> AuditTrace:
        records = self._session.execute(
            select(AuditRecord)
            .where(
                AuditRecord.entity_kind == entity_kind,
                AuditRecord.entity_id == entity_id,
            )
            .order_by(AuditRecord.seq)
        ).scalars().all()

        return AuditTrace(
            entity_kind=entity_kind,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=r.seq,
                    action=r.action,
                    occurred_at=r.occurred_at,
                    actor_id=r.actor_id,
                    actor_role=r.actor_role,
                    before=r.before or {},
                    after=r.after or {},
                    hash=r.hash,
                )
                for r in records
            ),
        )

    def get_recent_records(self, limit: int = 100) -> list[AuditRecord]:
        """Most recent records first."""
        return list(
            self._session.execute(
                select(AuditRecord).order_by(AuditRecord.seq.desc()).limit(limit)
            ).scalars().all()
        )
