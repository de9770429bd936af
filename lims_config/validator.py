"""
Configuration validation (``lims_config.validator``).

Checks a parsed ``LabConfiguration`` before it is handed to the kernel:
prefixes must be mintable codes, group overrides must name real workflow
groups, and the numeric knobs must be in range.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lims_config.schema import LabConfiguration
from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.domain.codes import PREFIX_RE


MAX_PADDING = 9
MIN_ACTION_LENGTH = 8


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: LabConfiguration) -> ConfigValidationResult:
    result = ConfigValidationResult()

    _validate_sample_codes(config, result)
    _validate_audit(config, result)
    _validate_allocation(config, result)

    return result


def _validate_sample_codes(config: LabConfiguration, result: ConfigValidationResult) -> None:
    codes = config.sample_codes
    if not 1 <= codes.padding <= MAX_PADDING:
        result.add_error(f"sample_codes.padding must be 1..{MAX_PADDING}, got {codes.padding}")

    for name, prefix in (
        ("default_prefix", codes.default_prefix),
        ("letter_prefix", codes.letter_prefix),
    ):
        if not PREFIX_RE.match(prefix):
            result.add_error(f"sample_codes.{name} {prefix!r} must be 2-6 uppercase letters")

    known = {g.value for g in WorkflowGroup}
    seen: dict[str, str] = {}
    for group, prefix in codes.group_prefixes:
        if group not in known:
            result.add_error(f"sample_codes.group_prefixes: unknown workflow group {group!r}")
        if not PREFIX_RE.match(prefix):
            result.add_error(
                f"sample_codes.group_prefixes[{group}] {prefix!r} must be 2-6 uppercase letters"
            )
        if prefix == codes.letter_prefix:
            result.add_error(
                f"sample_codes.group_prefixes[{group}] reuses the letter prefix {prefix!r}"
            )
        if prefix in seen:
            result.add_warning(
                f"workflow groups {seen[prefix]!r} and {group!r} share prefix {prefix!r}"
            )
        seen[prefix] = group

    if codes.default_prefix == codes.letter_prefix:
        result.add_error("sample_codes.default_prefix and letter_prefix must differ")


def _validate_audit(config: LabConfiguration, result: ConfigValidationResult) -> None:
    if config.audit.action_max_length < MIN_ACTION_LENGTH:
        result.add_error(
            f"audit.action_max_length must be at least {MIN_ACTION_LENGTH}, "
            f"got {config.audit.action_max_length}"
        )


def _validate_allocation(config: LabConfiguration, result: ConfigValidationResult) -> None:
    timeout = config.allocation.lock_timeout_ms
    if timeout is not None and timeout <= 0:
        result.add_error(f"allocation.lock_timeout_ms must be positive, got {timeout}")
