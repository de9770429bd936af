"""
Workflow classification of a sample from its requested parameters.

Ranges are checked in a fixed business precedence, not numeric order: a
sample asking for both a PCR and a WGS parameter is a WGS sample.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


class WorkflowGroup(str, Enum):
    WGS_SARS_COV_2 = "wgs_sars_cov_2"
    PCR_SARS_COV_2 = "pcr_sars_cov_2"
    ANTIGEN = "antigen"
    GROUP_23_32 = "group_23_32"
    GROUP_19_22 = "group_19_22"


@dataclass(frozen=True)
class ParameterRange:
    group: WorkflowGroup
    low: int
    high: int

    def contains(self, parameter_id: int) -> bool:
        return self.low <= parameter_id <= self.high


# Precedence order. Do not sort.
CLASSIFICATION_RANGES: tuple[ParameterRange, ...] = (
    ParameterRange(WorkflowGroup.WGS_SARS_COV_2, 12, 17),
    ParameterRange(WorkflowGroup.PCR_SARS_COV_2, 1, 11),
    ParameterRange(WorkflowGroup.ANTIGEN, 18, 18),
    ParameterRange(WorkflowGroup.GROUP_23_32, 23, 32),
    ParameterRange(WorkflowGroup.GROUP_19_22, 19, 22),
)


def normalize_parameter_ids(parameter_ids: Iterable[object] | None) -> frozenset[int]:
    """Keep positive ints; drop bools, non-ints and non-positive values."""
    if not parameter_ids:
        return frozenset()
    return frozenset(
        p for p in parameter_ids
        if isinstance(p, int) and not isinstance(p, bool) and p > 0
    )


def resolve_workflow_group(parameter_ids: Iterable[object] | None) -> WorkflowGroup | None:
    ids = normalize_parameter_ids(parameter_ids)
    if not ids:
        return None
    for rng in CLASSIFICATION_RANGES:
        if any(rng.contains(p) for p in ids):
            return rng.group
    return None
