"""
LabConfiguration schema.

Defines the human-authored, reviewable configuration for a laboratory
deployment.  YAML is parsed into these types by the loader, checked by the
validator, and converted into kernel settings by the bridges.

Only formatting and operational knobs live here.  Transition tables, the
custody graph and the classification ranges are code, not configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SampleCodeConfig:
    """How sample and letter codes are minted."""

    padding: int = 3
    default_prefix: str = "BML"
    # (workflow_group value, prefix)
    group_prefixes: tuple[tuple[str, str], ...] = (("wgs_sars_cov_2", "WGS"),)
    letter_prefix: str = "LOO"

    def prefix_map(self) -> dict[str, str]:
        return dict(self.group_prefixes)


@dataclass(frozen=True)
class AuditConfig:
    action_max_length: int = 40


@dataclass(frozen=True)
class AllocationConfig:
    """Counter-row locking behaviour.  ``None`` keeps the server default."""

    lock_timeout_ms: int | None = None


@dataclass(frozen=True)
class LabConfiguration:
    """
    Root configuration artifact.

    ``checksum`` is the SHA-256 of the canonical source document and
    identifies the exact configuration a process ran with.
    """

    config_id: str
    version: int
    sample_codes: SampleCodeConfig = field(default_factory=SampleCodeConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    description: str = ""
    checksum: str = ""
