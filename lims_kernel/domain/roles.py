"""
Roles and actors (``lims_kernel.domain.roles``).

Responsibility
--------------
Closed enumeration of the organizational roles that may act on a sample,
plus the ``Actor`` value object every service operation receives.  Loose
role labels coming from an identity provider ("Admin", "OM", "Lab Head")
are normalized here, at the boundary, so transition logic only ever sees
``Role`` members.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Unknown role labels are rejected with ``UnknownRoleError`` at the
  boundary; they never reach a transition table.
* ``CLIENT`` owns no internal transition; it may only counter-sign a
  Letter of Order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from lims_kernel.exceptions import UnknownRoleError


class Role(str, Enum):
    """Organizational roles recognised by the kernel."""

    ADMINISTRATOR = "administrator"
    SAMPLE_COLLECTOR = "sample_collector"
    ANALYST = "analyst"
    OPERATIONAL_MANAGER = "operational_manager"
    LABORATORY_HEAD = "laboratory_head"
    CLIENT = "client"


# The two reviewing roles: quality-cover reviewers, pre-approvers and
# internal signatories of a Letter of Order.
REVIEWING_ROLES: frozenset[Role] = frozenset({
    Role.OPERATIONAL_MANAGER,
    Role.LABORATORY_HEAD,
})


ROLE_ALIASES: dict[str, Role] = {
    "ADMINISTRATOR": Role.ADMINISTRATOR,
    "ADMIN": Role.ADMINISTRATOR,
    "FRONT_OFFICE": Role.ADMINISTRATOR,
    "SAMPLE_COLLECTOR": Role.SAMPLE_COLLECTOR,
    "COLLECTOR": Role.SAMPLE_COLLECTOR,
    "SC": Role.SAMPLE_COLLECTOR,
    "ANALYST": Role.ANALYST,
    "OPERATIONAL_MANAGER": Role.OPERATIONAL_MANAGER,
    "OPERATION_MANAGER": Role.OPERATIONAL_MANAGER,
    "OM": Role.OPERATIONAL_MANAGER,
    "LABORATORY_HEAD": Role.LABORATORY_HEAD,
    "LAB_HEAD": Role.LABORATORY_HEAD,
    "LH": Role.LABORATORY_HEAD,
    "CLIENT": Role.CLIENT,
    "CUSTOMER": Role.CLIENT,
}


def normalize_role(value: str | Role) -> Role:
    """Map a loose role label onto ``Role``.

    Case, surrounding whitespace, spaces and hyphens are ignored.

    Raises:
        UnknownRoleError: if the label matches no known role.
    """
    if isinstance(value, Role):
        return value
    raw = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
    role = ROLE_ALIASES.get(raw)
    if role is None:
        raise UnknownRoleError(str(value))
    return role


@dataclass(frozen=True)
class Actor:
    """The authenticated identity performing an operation.

    ``actor_id`` is None when the identity could not be resolved (for
    example a system integration acting under a role).  Role checks still
    apply; the audit trail writes no record for such operations.
    """

    role: Role
    actor_id: UUID | None = None

    @classmethod
    def from_label(cls, role_label: str | Role, actor_id: UUID | None = None) -> Actor:
        return cls(role=normalize_role(role_label), actor_id=actor_id)

    @property
    def is_resolved(self) -> bool:
        return self.actor_id is not None
