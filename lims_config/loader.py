"""
Configuration Loader (``lims_config.loader``).

Responsibility
--------------
Loads a configuration set's ``root.yaml`` and parses it into the frozen
``lims_config.schema`` dataclasses.  Runtime callers go through
``lims_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from lims_config.schema import (
    AllocationConfig,
    AuditConfig,
    LabConfiguration,
    SampleCodeConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


def parse_sample_codes(data: dict[str, Any]) -> SampleCodeConfig:
    defaults = SampleCodeConfig()
    prefixes = data.get("group_prefixes")
    if prefixes is None:
        group_prefixes = defaults.group_prefixes
    elif isinstance(prefixes, dict):
        group_prefixes = tuple(sorted((str(k), str(v)) for k, v in prefixes.items()))
    else:
        raise ValueError(f"sample_codes.group_prefixes must be a mapping, got {prefixes!r}")

    return SampleCodeConfig(
        padding=_int(data.get("padding", defaults.padding), "sample_codes.padding"),
        default_prefix=str(data.get("default_prefix", defaults.default_prefix)),
        group_prefixes=group_prefixes,
        letter_prefix=str(data.get("letter_prefix", defaults.letter_prefix)),
    )


def parse_audit(data: dict[str, Any]) -> AuditConfig:
    return AuditConfig(
        action_max_length=_int(
            data.get("action_max_length", AuditConfig.action_max_length),
            "audit.action_max_length",
        ),
    )


def parse_allocation(data: dict[str, Any]) -> AllocationConfig:
    timeout = data.get("lock_timeout_ms")
    return AllocationConfig(
        lock_timeout_ms=None if timeout is None else _int(timeout, "allocation.lock_timeout_ms"),
    )


def parse_configuration(data: dict[str, Any]) -> LabConfiguration:
    """Parse a root document into a ``LabConfiguration`` with its checksum."""
    return LabConfiguration(
        config_id=data["config_id"],
        version=_int(data.get("version", 1), "version"),
        description=data.get("description", ""),
        sample_codes=parse_sample_codes(data.get("sample_codes") or {}),
        audit=parse_audit(data.get("audit") or {}),
        allocation=parse_allocation(data.get("allocation") or {}),
        checksum=compute_checksum(data),
    )


def load_configuration_set(directory: Path) -> LabConfiguration:
    """Load ``<directory>/root.yaml``."""
    return parse_configuration(load_yaml_file(directory / "root.yaml"))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
