"""
Laboratory configuration tests.

Verifies:
- The shipped default set loads, validates and traces its checksum
- Invalid sets are refused with every problem listed
- Bridges hand the configured values to the kernel's settings objects
- A configured allocator mints codes with the configured padding and prefixes
"""

from textwrap import dedent

import pytest

from lims_config import get_active_config
from lims_config.bridges import build_allocator_settings, build_audit_settings
from lims_config.loader import compute_checksum, parse_configuration
from lims_config.validator import validate_configuration
from lims_kernel.domain.classification import WorkflowGroup
from lims_kernel.services.sequence_allocator import SampleIdAllocator


def write_set(tmp_path, body: str, name: str = "lab"):
    set_dir = tmp_path / name
    set_dir.mkdir()
    (set_dir / "root.yaml").write_text(dedent(body))
    return tmp_path


class TestDefaultSet:

    def test_loads(self):
        config = get_active_config()
        assert config.config_id == "lims-default"
        assert config.version == 1
        assert config.sample_codes.padding == 3
        assert config.sample_codes.default_prefix == "BML"
        assert config.sample_codes.letter_prefix == "LOO"
        assert config.sample_codes.prefix_map() == {"wgs_sars_cov_2": "WGS"}
        assert config.audit.action_max_length == 40
        assert config.allocation.lock_timeout_ms is None
        assert len(config.checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "LIMS_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["config_set_id"] == "lims-default"

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(config_dir=tmp_path, name="nope")


class TestValidation:

    def test_custom_set(self, tmp_path):
        sets = write_set(tmp_path, """
            config_id: lab-b
            version: 4
            sample_codes:
              padding: 5
              default_prefix: LAB
              letter_prefix: ORD
              group_prefixes:
                wgs_sars_cov_2: SEQ
                antigen: AG
            allocation:
              lock_timeout_ms: 2000
        """)
        config = get_active_config(config_dir=sets, name="lab")
        assert config.version == 4
        assert config.sample_codes.prefix_map() == {"antigen": "AG", "wgs_sars_cov_2": "SEQ"}
        assert config.allocation.lock_timeout_ms == 2000
        assert config.audit.action_max_length == 40

    def test_errors_collected(self, tmp_path):
        sets = write_set(tmp_path, """
            config_id: broken
            sample_codes:
              padding: 0
              default_prefix: bml
              letter_prefix: LOO
              group_prefixes:
                unknown_group: LOO
            audit:
              action_max_length: 3
            allocation:
              lock_timeout_ms: -5
        """)
        with pytest.raises(ValueError) as exc_info:
            get_active_config(config_dir=sets, name="lab")
        message = str(exc_info.value)
        assert "padding" in message
        assert "default_prefix" in message
        assert "unknown workflow group" in message
        assert "reuses the letter prefix" in message
        assert "action_max_length" in message
        assert "lock_timeout_ms" in message

    def test_shared_group_prefix_is_warning(self):
        config = parse_configuration({
            "config_id": "shared",
            "sample_codes": {
                "group_prefixes": {"antigen": "VIR", "group_19_22": "VIR"},
            },
        })
        result = validate_configuration(config)
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_bool_is_not_an_int(self):
        with pytest.raises(ValueError):
            parse_configuration({"config_id": "x", "sample_codes": {"padding": True}})

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})


class TestBridges:

    def test_allocator_settings(self, tmp_path):
        sets = write_set(tmp_path, """
            config_id: lab-c
            sample_codes:
              padding: 4
              default_prefix: LAB
              letter_prefix: ORD
              group_prefixes:
                antigen: AG
            allocation:
              lock_timeout_ms: 500
        """)
        settings = build_allocator_settings(get_active_config(config_dir=sets, name="lab"))

        assert settings.padding == 4
        assert settings.letter_prefix == "ORD"
        assert settings.lock_timeout_ms == 500
        assert settings.prefix_for_group(WorkflowGroup.ANTIGEN) == "AG"
        assert settings.prefix_for_group(WorkflowGroup.WGS_SARS_COV_2) == "LAB"
        assert settings.prefix_for_group(None) == "LAB"

    def test_audit_settings(self):
        assert build_audit_settings(get_active_config()).action_max_length == 40

    def test_configured_allocator(self, session):
        config = parse_configuration({
            "config_id": "padded",
            "sample_codes": {"padding": 5, "letter_prefix": "ORD"},
        })
        allocator = SampleIdAllocator(session, build_allocator_settings(config))
        assert allocator.next("bml") == "BML 00001"
        assert allocator.next(allocator.settings.letter_prefix) == "ORD 00001"
