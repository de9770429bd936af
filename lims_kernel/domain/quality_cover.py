"""
Quality-cover review rules (``lims_kernel.domain.quality_cover``).

Responsibility
--------------
Status space of a quality cover, which role may move it where, and which
payload fields each workflow group must supply before submission.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Used by ``QualityCoverService``.

Invariants enforced
-------------------
* ``validated`` is reachable only from ``verified``.
* ``rejected`` is editable again, like ``draft``.
* Reject edges are owned per source state: Operational Manager rejects a
  submitted cover, Laboratory Head a verified one.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.roles import Role
from lims_kernel.domain.transitions import TransitionGuard


class QualityCoverStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    VALIDATED = "validated"
    REJECTED = "rejected"


EDITABLE_STATUSES: frozenset[QualityCoverStatus] = frozenset({
    QualityCoverStatus.DRAFT,
    QualityCoverStatus.REJECTED,
})

QUALITY_COVER_TRANSITIONS: dict[Role, dict[QualityCoverStatus, frozenset[QualityCoverStatus]]] = {
    Role.ANALYST: {
        QualityCoverStatus.DRAFT: frozenset({QualityCoverStatus.SUBMITTED}),
        QualityCoverStatus.REJECTED: frozenset({QualityCoverStatus.SUBMITTED}),
    },
    Role.OPERATIONAL_MANAGER: {
        QualityCoverStatus.SUBMITTED: frozenset({
            QualityCoverStatus.VERIFIED,
            QualityCoverStatus.REJECTED,
        }),
    },
    Role.LABORATORY_HEAD: {
        QualityCoverStatus.VERIFIED: frozenset({
            QualityCoverStatus.VALIDATED,
            QualityCoverStatus.REJECTED,
        }),
    },
}


PCR_TARGETS: tuple[str, ...] = ("ORF1b", "RdRp", "RPP30")
PCR_TARGET_FIELDS: tuple[str, ...] = ("value", "result", "interpretation")
WGS_FIELDS: tuple[str, ...] = ("lineage", "variant")
DEFAULT_FIELDS: tuple[str, ...] = ("notes",)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def missing_payload_fields(
    payload: Mapping[str, Any] | None,
    workflow_group: WorkflowGroup | None,
) -> list[str]:
    """Return dotted paths of required payload fields that are absent or blank.

    PCR covers need ``value``, ``result`` and ``interpretation`` for each of
    the ``ORF1b``, ``RdRp`` and ``RPP30`` targets.  WGS covers need
    ``lineage`` and ``variant``.  Every other group needs ``notes``.
    """
    payload = payload or {}
    missing: list[str] = []

    if workflow_group is WorkflowGroup.PCR_SARS_COV_2:
        for target in PCR_TARGETS:
            entry = payload.get(target)
            if not isinstance(entry, Mapping):
                missing.extend(f"{target}.{f}" for f in PCR_TARGET_FIELDS)
                continue
            missing.extend(
                f"{target}.{f}" for f in PCR_TARGET_FIELDS if _blank(entry.get(f))
            )
    elif workflow_group is WorkflowGroup.WGS_SARS_COV_2:
        missing.extend(f for f in WGS_FIELDS if _blank(payload.get(f)))
    else:
        missing.extend(f for f in DEFAULT_FIELDS if _blank(payload.get(f)))

    return missing


QUALITY_COVER_GUARD: TransitionGuard[QualityCoverStatus] = TransitionGuard(
    "quality_cover", QualityCoverStatus, QUALITY_COVER_TRANSITIONS,
)
