"""
Letter-of-Order release rules.

Two approval layers: per-sample pre-approval flags gate which samples a new
letter may include, then per-slot signatures gate release to the client.
"""

from __future__ import annotations

from enum import Enum

from lims_kernel.domain.roles import Role


class LetterOfOrderStatus(str, Enum):
    DRAFT = "draft"
    SIGNED_INTERNAL = "signed_internal"
    SENT_TO_CLIENT = "sent_to_client"
    CLIENT_SIGNED = "client_signed"
    LOCKED = "locked"


# Signature slots, one per signing role. The two internal slots precede release.
INTERNAL_SIGNATURE_ROLES: tuple[Role, ...] = (
    Role.OPERATIONAL_MANAGER,
    Role.LABORATORY_HEAD,
)
SIGNATURE_SLOT_ROLES: tuple[Role, ...] = INTERNAL_SIGNATURE_ROLES + (Role.CLIENT,)

PRE_APPROVAL_ROLES: frozenset[Role] = frozenset(INTERNAL_SIGNATURE_ROLES)

GENERATING_ROLES: frozenset[Role] = frozenset({
    Role.ADMINISTRATOR,
    Role.OPERATIONAL_MANAGER,
    Role.LABORATORY_HEAD,
})

SENDING_ROLES: frozenset[Role] = GENERATING_ROLES


def is_ready(om_approved: bool, lh_approved: bool) -> bool:
    return bool(om_approved) and bool(lh_approved)


def internal_signatures_complete(signed_roles: set[Role] | frozenset[Role]) -> bool:
    return all(role in signed_roles for role in INTERNAL_SIGNATURE_ROLES)
