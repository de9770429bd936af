"""
Pure helpers for audit payloads: field-level diffs and action names.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

DEFAULT_ACTION_MAX_LENGTH = 40


def compute_diff(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Field-level before/after maps.

    Unions the key sets of both snapshots and keeps only keys whose values
    differ.  A key missing on one side is reported as None on that side.
    """
    before = before or {}
    after = after or {}
    changed_before: dict[str, Any] = {}
    changed_after: dict[str, Any] = {}
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old != new:
            changed_before[key] = old
            changed_after[key] = new
    return changed_before, changed_after


def normalize_action(action: str | None, max_length: int = DEFAULT_ACTION_MAX_LENGTH) -> str:
    """Strip, uppercase and truncate.  Never raises."""
    text = str(action or "").strip().upper()
    if max_length > 0:
        text = text[:max_length]
    return text
