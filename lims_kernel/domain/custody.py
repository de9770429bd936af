"""
Custody checkpoint graph (``lims_kernel.domain.custody``).

Responsibility
--------------
The fixed partial order of physical handoffs between Administrator, Sample
Collector and Analyst, and the pure legality check for firing one
checkpoint against a snapshot of a sample's custody state.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ``CustodyService`` loads the sample,
builds a ``CustodySnapshot``, calls ``check_custody_event`` and persists.

Invariants enforced
-------------------
* Each event owns exactly one timestamp field and one actor field.
* An event is legal iff the sample has no lab code, the role matches, its
  own timestamp is unset, its prerequisite timestamp is set, and its branch
  condition (intake outcome or crosscheck outcome) holds.
* Checks run in that order, so the most final reason is reported first.

Failure modes
-------------
* ``LabCodeAssignedError``, ``PolicyDeniedError``,
  ``CustodyEventAlreadyRecordedError``, ``CustodyOrderError`` and
  ``PreconditionFailedError`` (branch condition not met).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from lims_kernel.domain.roles import Role
from lims_kernel.exceptions import (
    CustodyEventAlreadyRecordedError,
    CustodyOrderError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
)


class CustodyEvent(str, Enum):
    ADMIN_RECEIVED_FROM_CLIENT = "admin_received_from_client"
    ADMIN_BROUGHT_TO_COLLECTOR = "admin_brought_to_collector"
    COLLECTOR_RECEIVED = "collector_received"
    COLLECTOR_INTAKE_COMPLETED = "collector_intake_completed"
    COLLECTOR_RETURNED_TO_ADMIN = "collector_returned_to_admin"
    ADMIN_RECEIVED_FROM_COLLECTOR = "admin_received_from_collector"
    CLIENT_PICKED_UP = "client_picked_up"
    SC_DELIVERED_TO_ANALYST = "sc_delivered_to_analyst"
    ANALYST_RECEIVED = "analyst_received"
    ANALYST_RETURNED_TO_SC = "analyst_returned_to_sc"
    SC_RECEIVED_FROM_ANALYST = "sc_received_from_analyst"


class CrosscheckStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class IntakeBranch(str, Enum):
    """Which intake outcome an event requires, if any."""

    ANY = "any"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class CustodyStep:
    """One edge of the custody graph."""

    event: CustodyEvent
    role: Role
    prerequisite: CustodyEvent | None
    intake_branch: IntakeBranch = IntakeBranch.ANY
    requires_failed_crosscheck: bool = False

    @property
    def timestamp_field(self) -> str:
        return f"{self.event.value}_at"

    @property
    def actor_field(self) -> str:
        return f"{self.event.value}_by_id"


_E = CustodyEvent

CUSTODY_STEPS: dict[CustodyEvent, CustodyStep] = {
    step.event: step
    for step in (
        CustodyStep(_E.ADMIN_RECEIVED_FROM_CLIENT, Role.ADMINISTRATOR, None),
        CustodyStep(
            _E.ADMIN_BROUGHT_TO_COLLECTOR, Role.ADMINISTRATOR,
            _E.ADMIN_RECEIVED_FROM_CLIENT,
        ),
        CustodyStep(
            _E.COLLECTOR_RECEIVED, Role.SAMPLE_COLLECTOR,
            _E.ADMIN_BROUGHT_TO_COLLECTOR,
        ),
        CustodyStep(
            _E.COLLECTOR_INTAKE_COMPLETED, Role.SAMPLE_COLLECTOR,
            _E.COLLECTOR_RECEIVED,
        ),
        CustodyStep(
            _E.COLLECTOR_RETURNED_TO_ADMIN, Role.SAMPLE_COLLECTOR,
            _E.COLLECTOR_INTAKE_COMPLETED, intake_branch=IntakeBranch.FAILED,
        ),
        CustodyStep(
            _E.ADMIN_RECEIVED_FROM_COLLECTOR, Role.ADMINISTRATOR,
            _E.COLLECTOR_RETURNED_TO_ADMIN,
        ),
        CustodyStep(
            _E.CLIENT_PICKED_UP, Role.ADMINISTRATOR,
            _E.ADMIN_RECEIVED_FROM_COLLECTOR,
        ),
        CustodyStep(
            _E.SC_DELIVERED_TO_ANALYST, Role.SAMPLE_COLLECTOR,
            _E.COLLECTOR_INTAKE_COMPLETED, intake_branch=IntakeBranch.PASSED,
        ),
        CustodyStep(
            _E.ANALYST_RECEIVED, Role.ANALYST,
            _E.SC_DELIVERED_TO_ANALYST,
        ),
        CustodyStep(
            _E.ANALYST_RETURNED_TO_SC, Role.ANALYST,
            _E.ANALYST_RECEIVED, requires_failed_crosscheck=True,
        ),
        CustodyStep(
            _E.SC_RECEIVED_FROM_ANALYST, Role.SAMPLE_COLLECTOR,
            _E.ANALYST_RETURNED_TO_SC,
        ),
    )
}

del _E


@dataclass(frozen=True)
class CustodySnapshot:
    """The custody-relevant slice of a sample at one instant."""

    sample_id: str
    timestamps: dict[CustodyEvent, datetime | None] = field(default_factory=dict)
    lab_code: str | None = None
    intake_passed: bool | None = None
    crosscheck_status: CrosscheckStatus = CrosscheckStatus.PENDING

    def is_recorded(self, event: CustodyEvent) -> bool:
        return self.timestamps.get(event) is not None


def get_step(event: CustodyEvent | str) -> CustodyStep:
    return CUSTODY_STEPS[CustodyEvent(event)]


def check_custody_event(
    event: CustodyEvent,
    role: Role,
    snapshot: CustodySnapshot,
) -> CustodyStep:
    """Raise unless ``role`` may fire ``event`` on ``snapshot`` now.

    Returns:
        The ``CustodyStep`` for the event, so the caller knows which
        fields to write.
    """
    step = CUSTODY_STEPS[event]

    if snapshot.lab_code:
        raise LabCodeAssignedError(snapshot.sample_id, snapshot.lab_code)

    if role != step.role:
        raise PolicyDeniedError(role.value, f"record custody event {event.value}")

    if snapshot.is_recorded(event):
        raise CustodyEventAlreadyRecordedError(snapshot.sample_id, event.value)

    if step.prerequisite is not None and not snapshot.is_recorded(step.prerequisite):
        raise CustodyOrderError(
            snapshot.sample_id, event.value, step.prerequisite.value,
        )

    if step.intake_branch is IntakeBranch.PASSED and snapshot.intake_passed is not True:
        raise PreconditionFailedError(
            snapshot.sample_id, f"{event.value} requires a passed intake",
        )
    if step.intake_branch is IntakeBranch.FAILED and snapshot.intake_passed is not False:
        raise PreconditionFailedError(
            snapshot.sample_id, f"{event.value} requires a failed intake",
        )

    if (
        step.requires_failed_crosscheck
        and snapshot.crosscheck_status is not CrosscheckStatus.FAILED
    ):
        raise PreconditionFailedError(
            snapshot.sample_id, f"{event.value} requires a failed crosscheck",
        )

    return step


def can_apply(event: CustodyEvent, role: Role, snapshot: CustodySnapshot) -> bool:
    """Boolean form of ``check_custody_event`` for enabling UI actions."""
    try:
        check_custody_event(event, role, snapshot)
    except (PolicyDeniedError, PreconditionFailedError, LabCodeAssignedError):
        return False
    return True


def available_events(role: Role, snapshot: CustodySnapshot) -> tuple[CustodyEvent, ...]:
    return tuple(e for e in CustodyEvent if can_apply(e, role, snapshot))
