"""
BaseService -- abstract base for all mutating kernel services.

Responsibility:
    Provides the common constructor (session, clock, audit trail) and the
    two helpers every mutation needs: load a row under lock, and append
    its audit record.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.
    - Every mutation ends with exactly one ``_audit`` call.
    - A missing entity raises ``NotFoundError``; nothing is defaulted.

Failure modes:
    - If a subclass calls ``session.commit()``, a mutation and its audit
      record may persist separately, breaking the one-record guarantee.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lims_kernel.db.base import Base
from lims_kernel.domain.clock import Clock, SystemClock
from lims_kernel.domain.roles import Actor
from lims_kernel.exceptions import NotFoundError
from lims_kernel.services.audit_trail import AuditTrail

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models -- those belong in
          ``lims_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditTrail | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.auditor = auditor or AuditTrail(session, clock=self.clock)

    def _load_for_update(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        """Load ``entity_id`` with a row lock and fresh column values."""
        row = self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(model.__name__, str(entity_id))
        return row

    def _audit(
        self,
        actor: Actor,
        entity_kind: str,
        entity_id: UUID,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> UUID | None:
        record = self.auditor.record(actor, entity_kind, entity_id, action, before, after)
        return record.id if record is not None else None
