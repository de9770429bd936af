"""
Typed Exception Hierarchy for the LIMS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Request handlers sitting above this kernel must tell a forbidden action apart
from an out-of-order action, a finalized sample, a busy counter row, and a
missing entity.  Each of those maps to a different response and a different
retry policy, so they are separate types:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception declares whether it is safe to retry

Example:
    try:
        custody.apply_custody_event(sample_id, CustodyEvent.COLLECTOR_RECEIVED, actor)
    except CustodyOrderError as e:
        return api_response(409, code=e.code, missing=e.prerequisite)
    except PolicyDeniedError as e:
        return api_response(403, code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LimsKernelError (base)
    |
    +-- PolicyDeniedError                  role/state combination not permitted
    |   +-- UnknownRoleError
    |   +-- SignatureSlotRoleError
    |
    +-- PreconditionFailedError            operation fired out of order
    |   +-- CustodyOrderError
    |   +-- CustodyEventAlreadyRecordedError
    |   +-- ReasonRequiredError
    |   +-- SamplesNotReadyError
    |   +-- SignatureAlreadyPresentError
    |   +-- InvalidSampleCodeError
    |   +-- DuplicateSampleCodeError
    |   +-- InvalidPayloadError
    |
    +-- AlreadyFinalizedError              target can no longer change
    |   +-- LabCodeAssignedError
    |   +-- DocumentLockedError
    |
    +-- AllocationConflictError            counter lock timeout (RETRYABLE)
    |
    +-- NotFoundError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
RETRY POLICY
===============================================================================

PolicyDenied, PreconditionFailed and AlreadyFinalized indicate that the caller
(usually a UI) is out of sync with the entity's state.  They are never retried
and must be surfaced verbatim.  AllocationConflictError is the only error with
``retryable = True``; callers may retry it with backoff.  NotFoundError is
always surfaced, never defaulted.

===============================================================================
"""


class LimsKernelError(Exception):
    """
    Base exception for all LIMS kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LIMS_KERNEL_ERROR"
    retryable: bool = False


# Policy exceptions


class PolicyDeniedError(LimsKernelError):
    """The actor's role may not perform this operation in the current state."""

    code: str = "POLICY_DENIED"

    def __init__(
        self,
        role: str,
        operation: str,
        state: str | None = None,
        message: str | None = None,
    ):
        self.role = role
        self.operation = operation
        self.state = state
        where = f" from state {state}" if state is not None else ""
        super().__init__(message or f"Role {role} may not {operation}{where}")


class UnknownRoleError(PolicyDeniedError):
    """A role label could not be mapped onto a known role."""

    code: str = "UNKNOWN_ROLE"

    def __init__(self, label: str):
        self.label = label
        super().__init__(
            label, "resolve_role", message=f"Unknown role label: {label!r}"
        )


class SignatureSlotRoleError(PolicyDeniedError):
    """Only the role owning a signature slot may fill it."""

    code: str = "SIGNATURE_SLOT_ROLE_MISMATCH"

    def __init__(self, document_id: str, role: str):
        self.document_id = document_id
        super().__init__(
            role,
            "sign",
            message=f"Role {role} owns no signature slot on document {document_id}",
        )


# Precondition exceptions


class PreconditionFailedError(LimsKernelError):
    """An operation was requested before its preconditions were met."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, entity_id: str, reason: str):
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Precondition failed for {entity_id}: {reason}")


class CustodyOrderError(PreconditionFailedError):
    """A custody event fired before its prerequisite checkpoint."""

    code: str = "CUSTODY_OUT_OF_ORDER"

    def __init__(self, sample_id: str, event: str, prerequisite: str):
        self.event = event
        self.prerequisite = prerequisite
        super().__init__(
            sample_id, f"custody event {event} requires {prerequisite} first"
        )


class CustodyEventAlreadyRecordedError(PreconditionFailedError):
    """A custody checkpoint timestamp is already set."""

    code: str = "CUSTODY_EVENT_ALREADY_RECORDED"

    def __init__(self, sample_id: str, event: str):
        self.event = event
        super().__init__(sample_id, f"custody event {event} already recorded")


class ReasonRequiredError(PreconditionFailedError):
    """A rejection or mismatch was submitted without a reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, entity_id: str, operation: str):
        self.operation = operation
        super().__init__(entity_id, f"{operation} requires a non-empty reason")


class SamplesNotReadyError(PreconditionFailedError):
    """Document generation was attempted with samples lacking pre-approval."""

    code: str = "SAMPLES_NOT_READY"

    def __init__(self, sample_ids: list[str]):
        self.sample_ids = sample_ids
        super().__init__(
            ",".join(sample_ids),
            "samples are not ready (both pre-approvals required)",
        )


class SignatureAlreadyPresentError(PreconditionFailedError):
    """The signature slot for this role is already filled."""

    code: str = "SIGNATURE_ALREADY_PRESENT"

    def __init__(self, document_id: str, slot: str):
        self.slot = slot
        super().__init__(document_id, f"signature slot {slot} already signed")


class InvalidSampleCodeError(PreconditionFailedError):
    """A sample code or prefix does not match the expected format."""

    code: str = "INVALID_SAMPLE_CODE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(value, "not a valid sample code or prefix")


class DuplicateSampleCodeError(PreconditionFailedError):
    """A sample code is already assigned to another sample."""

    code: str = "DUPLICATE_SAMPLE_CODE"

    def __init__(self, lab_code: str):
        self.lab_code = lab_code
        super().__init__(lab_code, "code already assigned to another sample")


class InvalidPayloadError(PreconditionFailedError):
    """A quality-cover payload is missing required fields."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, entity_id: str, missing: list[str]):
        self.missing = missing
        super().__init__(entity_id, f"payload missing: {', '.join(missing)}")


# Finalization exceptions


class AlreadyFinalizedError(LimsKernelError):
    """The target entity is finalized and can no longer be mutated."""

    code: str = "ALREADY_FINALIZED"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is finalized: {reason}")


class LabCodeAssignedError(AlreadyFinalizedError):
    """The sample already carries its lab code."""

    code: str = "LAB_CODE_ASSIGNED"

    def __init__(self, sample_id: str, lab_code: str):
        self.lab_code = lab_code
        super().__init__("Sample", sample_id, f"lab code {lab_code} already assigned")


class DocumentLockedError(AlreadyFinalizedError):
    """The Letter of Order is locked."""

    code: str = "DOCUMENT_LOCKED"

    def __init__(self, document_id: str):
        super().__init__("LetterOfOrder", document_id, "document is locked")


# Allocation exceptions


class AllocationConflictError(LimsKernelError):
    """
    The counter row could not be locked in time.

    Safe to retry with backoff: no number was consumed.
    """

    code: str = "ALLOCATION_CONFLICT"
    retryable: bool = True

    def __init__(self, counter_key: str, detail: str = ""):
        self.counter_key = counter_key
        self.detail = detail
        super().__init__(
            f"Could not lock counter {counter_key}"
            + (f": {detail}" if detail else "")
        )


# Lookup exceptions


class NotFoundError(LimsKernelError):
    """Entity with the given ID does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Audit exceptions


class AuditError(LimsKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_record_id: str, expected_hash: str, actual_hash: str):
        self.audit_record_id = audit_record_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_record_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability exceptions


class ImmutabilityError(LimsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    AuditRecord rows are immutable from creation; LetterOfOrder rows once
    locked; custody checkpoints and lab codes once set.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
