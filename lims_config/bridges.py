"""
Config -> Kernel Bridges.

Functions that convert a ``LabConfiguration`` into kernel settings objects.
These live in lims_config (the producer) because the kernel must NEVER
import lims_config.

Usage:
    from lims_config.bridges import build_allocator_settings, build_audit_settings

    config = get_active_config()
    allocator = SampleIdAllocator(session, build_allocator_settings(config))
    auditor = AuditTrail(session, clock, build_audit_settings(config), allocator)
"""

from __future__ import annotations

from lims_config.schema import LabConfiguration
from lims_kernel.services.audit_trail import AuditSettings
from lims_kernel.services.sequence_allocator import AllocatorSettings


def build_allocator_settings(config: LabConfiguration) -> AllocatorSettings:
    codes = config.sample_codes
    return AllocatorSettings(
        padding=codes.padding,
        default_prefix=codes.default_prefix,
        group_prefixes=codes.prefix_map(),
        letter_prefix=codes.letter_prefix,
        lock_timeout_ms=config.allocation.lock_timeout_ms,
    )


def build_audit_settings(config: LabConfiguration) -> AuditSettings:
    return AuditSettings(action_max_length=config.audit.action_max_length)
