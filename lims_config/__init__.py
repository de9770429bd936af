"""
lims_config -- single public entrypoint for laboratory configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``LabConfiguration``.

Architecture position:
    Configuration.  This package sits above ``lims_kernel``.  The kernel
    MUST NEVER import from ``lims_config``; ``lims_config.bridges``
    translates the configuration into kernel settings objects.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` -- parse or validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LIMS_CONFIG_TRACE`` log entry carrying the config id, version and
    checksum, tying each process run to the exact configuration it used.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lims_config.loader import load_configuration_set
from lims_config.schema import (
    AllocationConfig,
    AuditConfig,
    LabConfiguration,
    SampleCodeConfig,
)
from lims_config.validator import validate_configuration

_logger = logging.getLogger("lims_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "AllocationConfig",
    "AuditConfig",
    "LabConfiguration",
    "SampleCodeConfig",
    "get_active_config",
]


def get_active_config(
    config_dir: Path | None = None,
    name: str = "default",
) -> LabConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to lims_config/sets/.
        name: Name of the configuration set (subdirectory).

    Raises:
        FileNotFoundError: If ``<config_dir>/<name>/root.yaml`` is missing.
        ValueError: If the configuration fails validation.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    set_dir = sets_dir / name
    if not (set_dir / "root.yaml").is_file():
        raise FileNotFoundError(f"Configuration set {name!r} not found in {sets_dir}")

    config = load_configuration_set(set_dir)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"detail": warning})

    _logger.info(
        "LIMS_CONFIG_TRACE",
        extra={
            "trace_type": "LIMS_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "padding": config.sample_codes.padding,
            "default_prefix": config.sample_codes.default_prefix,
        },
    )

    return config
