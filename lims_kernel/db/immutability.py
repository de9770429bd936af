"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Custody checkpoints, assigned lab codes, released documents and the audit
trail are evidence.  Once written they must not change: a corrected custody
time or a re-signed letter would make the audit trail describe a history
that no longer matches the rows.

Services already refuse such mutations.  This module catches the ones that
bypass a service (application bugs, ad-hoc scripts using the ORM):

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable                      | What
------------------------|-------------------------------------|----------------------------
AuditRecord             | ALWAYS (from creation)              | every field, no delete
Sample                  | per field, once set                 | lab_code, custody checkpoints,
                        |                                     | workflow_group; no delete
                        |                                     | once lab_code is set
LetterOfOrder           | after status = locked               | every field, no delete
LetterOfOrderSignature  | once signed, or letter locked       | signer fields, no delete
LetterOfOrderSample     | letter locked                       | every field, no delete

updated_at / updated_by_id are tracking metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from lims_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from lims_kernel.exceptions import ImmutabilityViolationError
from lims_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TRACKING_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _overwritten(target, field: str) -> bool:
    """True if ``field`` had a non-null value and is being changed."""
    hist = get_history(target, field)
    if not hist.has_changes():
        return False
    return any(old is not None for old in hist.deleted)


# =============================================================================
# AuditRecord: always immutable
# =============================================================================


def _check_audit_record_immutability(mapper, connection, target):
    _block(
        "AuditRecord", target.id, "UPDATE",
        "Audit records are immutable and cannot be modified",
    )


def _check_audit_record_delete(mapper, connection, target):
    _block("AuditRecord", target.id, "DELETE", "Audit records cannot be deleted")


# =============================================================================
# Sample: write-once fields
# =============================================================================


def _sample_write_once_fields() -> tuple[str, ...]:
    from lims_kernel.models.sample import CUSTODY_ACTOR_FIELDS, CUSTODY_TIMESTAMP_FIELDS

    return ("lab_code", "workflow_group") + CUSTODY_TIMESTAMP_FIELDS + CUSTODY_ACTOR_FIELDS


def _check_sample_immutability(mapper, connection, target):
    """Lab code, workflow group and custody checkpoints are write-once."""
    for field in _sample_write_once_fields():
        if _overwritten(target, field):
            _block(
                "Sample", target.id, "UPDATE",
                f"Cannot modify write-once field '{field}' once set",
                field=field,
            )


def _check_sample_delete(mapper, connection, target):
    if target.lab_code is not None:
        _block(
            "Sample", target.id, "DELETE",
            "Samples with an assigned lab code cannot be deleted",
        )


# =============================================================================
# LetterOfOrder: immutable once locked
# =============================================================================


def _was_locked_before(target) -> bool:
    """
    True if the letter was already locked before this flush.

    The lock operation itself (client_signed -> locked) must be allowed;
    anything after it must not.
    """
    from lims_kernel.domain.letter_of_order import LetterOfOrderStatus

    locked = LetterOfOrderStatus.LOCKED.value
    status_history = get_history(target, "status")
    if status_history.deleted:
        return status_history.deleted[0] == locked
    if not status_history.added:
        return target.status == locked
    return False


def _check_letter_immutability(mapper, connection, target):
    if not _was_locked_before(target):
        return
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _TRACKING_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "LetterOfOrder", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on locked letter of order",
                field=attr.key,
            )


def _check_letter_delete(mapper, connection, target):
    from lims_kernel.domain.letter_of_order import LetterOfOrderStatus

    if target.status == LetterOfOrderStatus.LOCKED.value:
        _block(
            "LetterOfOrder", target.id, "DELETE",
            "Locked letters of order cannot be deleted",
        )


def _parent_locked(target) -> bool:
    letter = target.letter
    return letter is not None and letter.is_locked


def _check_signature_immutability(mapper, connection, target):
    if _parent_locked(target):
        _block(
            "LetterOfOrderSignature", target.id, "UPDATE",
            "Signatures cannot be modified on a locked letter of order",
        )
    for field in ("signed_at", "signed_by_id", "signature_hash", "role"):
        if _overwritten(target, field):
            _block(
                "LetterOfOrderSignature", target.id, "UPDATE",
                f"Cannot modify '{field}' on a filled signature slot",
                field=field,
            )


def _check_signature_delete(mapper, connection, target):
    if _parent_locked(target) or target.signed_at is not None:
        _block(
            "LetterOfOrderSignature", target.id, "DELETE",
            "Filled signature slots cannot be deleted",
        )


def _check_letter_sample_immutability(mapper, connection, target):
    if _parent_locked(target):
        _block(
            "LetterOfOrderSample", target.id, "UPDATE",
            "Sample links cannot be modified on a locked letter of order",
        )


def _check_letter_sample_delete(mapper, connection, target):
    if _parent_locked(target):
        _block(
            "LetterOfOrderSample", target.id, "DELETE",
            "Sample links cannot be deleted from a locked letter of order",
        )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from lims_kernel.models.audit_record import AuditRecord
    from lims_kernel.models.letter_of_order import (
        LetterOfOrder,
        LetterOfOrderSample,
        LetterOfOrderSignature,
    )
    from lims_kernel.models.sample import Sample

    return (
        (AuditRecord, "before_update", _check_audit_record_immutability),
        (AuditRecord, "before_delete", _check_audit_record_delete),
        (Sample, "before_update", _check_sample_immutability),
        (Sample, "before_delete", _check_sample_delete),
        (LetterOfOrder, "before_update", _check_letter_immutability),
        (LetterOfOrder, "before_delete", _check_letter_delete),
        (LetterOfOrderSignature, "before_update", _check_signature_immutability),
        (LetterOfOrderSignature, "before_delete", _check_signature_delete),
        (LetterOfOrderSample, "before_update", _check_letter_sample_immutability),
        (LetterOfOrderSample, "before_delete", _check_letter_sample_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable and before any database
    operations begin.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    rules to verify detection.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
