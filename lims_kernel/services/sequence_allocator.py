"""
SampleIdAllocator -- human-readable code allocation via locked counter rows.

Responsibility:
    Mints ``PREFIX NNN`` codes (sample codes, letter-of-order numbers) and
    raw integers for internal sequences (the audit ``seq``).  Reconciles the
    counter with codes issued outside the allocator.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by SampleIdService, LetterOfOrderService and AuditTrail.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      number.  The SQL aggregate-max-plus-one anti-pattern is FORBIDDEN.
    - last_number never decreases, including through
      ``sync_counter_from_code``.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the number.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
    - AllocationConflictError: lock timeout or deadlock while locking the
      counter row.  Retryable; no number was consumed.
    - InvalidSampleCodeError: empty prefix or unparseable code.

Audit relevance:
    Allocation is logged at DEBUG level with the counter key and value.
    Audit record ordering rests on the ``_audit`` sequence.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.codes import (
    DEFAULT_PADDING,
    format_code,
    normalize_prefix,
    parse_code,
)
from lims_kernel.exceptions import AllocationConflictError
from lims_kernel.logging_config import get_logger
from lims_kernel.models.sample_id import SampleIdCounter

logger = get_logger("services.allocator")


@dataclass(frozen=True)
class AllocatorSettings:
    """Code formatting and prefix policy.

    ``lock_timeout_ms`` bounds the wait for a counter row lock on
    PostgreSQL; None leaves the server default.  SQLite waits are bounded
    by the engine's busy timeout instead.
    """

    padding: int = DEFAULT_PADDING
    default_prefix: str = "BML"
    group_prefixes: dict[str, str] = field(
        default_factory=lambda: {WorkflowGroup.WGS_SARS_COV_2.value: "WGS"}
    )
    letter_prefix: str = "LOO"
    lock_timeout_ms: int | None = None

    def prefix_for_group(self, group: WorkflowGroup | str | None) -> str:
        if group is None:
            return self.default_prefix
        key = group.value if isinstance(group, WorkflowGroup) else str(group)
        return self.group_prefixes.get(key, self.default_prefix)


class SampleIdAllocator:
    """
    Allocates numbers from per-key counter rows.

    Contract:
        ``next(prefix)`` returns the next formatted code for the normalized
        prefix.  Concurrent calls for the same prefix serialize on the row
        lock; different prefixes lock different rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    # Internal sequence keys start with "_", which no normalized prefix can.
    AUDIT_SEQUENCE = "_audit"

    def __init__(self, session: Session, settings: AllocatorSettings | None = None):
        self._session = session
        self._settings = settings or AllocatorSettings()

    @property
    def settings(self) -> AllocatorSettings:
        return self._settings

    def next(self, prefix: str) -> str:
        """
        Allocate the next code under ``prefix``.

        Postconditions:
            - Returns ``"PREFIX NNN"``; the number is strictly greater than
              any number previously allocated under the prefix.

        Raises:
            InvalidSampleCodeError: prefix is not 2-6 letters.
            AllocationConflictError: counter row could not be locked.
        """
        key = normalize_prefix(prefix)
        number = self._increment(key)
        return format_code(key, number, self._settings.padding)

    def next_number(self, key: str) -> int:
        """Allocate the next raw integer for an internal sequence key."""
        if not key:
            raise ValueError("sequence key must be non-empty")
        return self._increment(key)

    def sync_counter_from_code(self, code: str) -> int:
        """
        Advance the counter to the number in ``code`` if it is ahead.

        Never regresses the counter: syncing ``ABC 003`` against a stored 5
        leaves 5; syncing ``ABC 009`` stores 9.

        Returns:
            The stored value after the sync.
        """
        parsed = parse_code(code)
        counter = self._lock_counter(parsed.prefix)
        if parsed.number > counter.last_number:
            counter.last_number = parsed.number
            self._session.flush()
            logger.info(
                "counter_synced",
                extra={"counter_key": parsed.prefix, "value": counter.last_number},
            )
        return counter.last_number

    def current(self, prefix: str) -> int | None:
        """Current value for ``prefix`` without locking, or None if unused."""
        key = normalize_prefix(prefix)
        counter = self._session.execute(
            select(SampleIdCounter)
            .where(SampleIdCounter.prefix == key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return counter.last_number if counter else None

    # ------------------------------------------------------------------

    def _increment(self, key: str) -> int:
        counter = self._lock_counter(key)
        counter.last_number = max(counter.last_number or 0, 0) + 1
        self._session.flush()
        logger.debug(
            "counter_allocated",
            extra={"counter_key": key, "value": counter.last_number},
        )
        return counter.last_number

    def _apply_lock_timeout(self) -> None:
        timeout = self._settings.lock_timeout_ms
        bind = self._session.get_bind()
        if timeout is not None and bind.dialect.name == "postgresql":
            self._session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout)}ms'"))

    def _select_locked(self, key: str) -> SampleIdCounter | None:
        return self._session.execute(
            select(SampleIdCounter)
            .where(SampleIdCounter.prefix == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_counter(self, key: str) -> SampleIdCounter:
        """Lock the counter row for ``key``, creating it at zero if absent."""
        try:
            self._apply_lock_timeout()
            counter = self._select_locked(key)
            if counter is not None:
                return counter

            # First use of this key.  Another transaction may create it
            # concurrently; the savepoint keeps the caller's work intact.
            savepoint = self._session.begin_nested()
            try:
                counter = SampleIdCounter(prefix=key, last_number=0)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                return counter
            except IntegrityError:
                logger.debug("counter_create_race_retry", extra={"counter_key": key})
                savepoint.rollback()
                return self._session.execute(
                    select(SampleIdCounter)
                    .where(SampleIdCounter.prefix == key)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()
        except OperationalError as exc:
            logger.warning(
                "counter_lock_conflict",
                extra={"counter_key": key, "detail": str(exc.orig)},
            )
            raise AllocationConflictError(key, str(exc.orig)) from exc
