"""
Hypothesis-based fuzzing of the pure domain layer.

Properties checked:
- Classification depends only on the normalized parameter set, and the
  WGS range wins whenever it is present
- Code normalization is idempotent and never truncates wide numbers
- Any prefix that normalizes mints codes the parser accepts
- Action names never exceed the configured length
- Applying the after-side of a diff to the before snapshot reproduces the
  after snapshot
- Guard queries never raise and agree with ``roles_for``
- No sequence of custody firings records an event before its prerequisite,
  or takes both intake branches
"""

from dataclasses import replace
from datetime import UTC, datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lims_kernel.domain.audit import compute_diff, normalize_action
from lims_kernel.domain.classification import (
    WorkflowGroup,
    normalize_parameter_ids,
    resolve_workflow_group,
)
from lims_kernel.domain.codes import format_code, normalize_code, normalize_prefix, parse_code
from lims_kernel.domain.custody import (
    CUSTODY_STEPS,
    CrosscheckStatus,
    CustodyEvent,
    CustodySnapshot,
    check_custody_event,
)
from lims_kernel.domain.roles import Role
from lims_kernel.domain.transitions import (
    REQUEST_STATUS_GUARD,
    SAMPLE_STATUS_GUARD,
    TEST_STATUS_GUARD,
)
from lims_kernel.exceptions import (
    InvalidSampleCodeError,
    LabCodeAssignedError,
    PolicyDeniedError,
    PreconditionFailedError,
)

prefixes = st.from_regex(r"[A-Z]{2,6}", fullmatch=True)
junk = st.one_of(
    st.booleans(),
    st.text(max_size=3),
    st.floats(allow_nan=False),
    st.integers(max_value=0),
    st.none(),
)
snapshot_values = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=5))
snapshots = st.dictionaries(st.sampled_from("abcdef"), snapshot_values, max_size=6)


class TestClassificationProperties:

    @given(ids=st.lists(st.integers(min_value=1, max_value=40), max_size=12), noise=st.lists(junk, max_size=6))
    def test_junk_never_changes_result(self, ids, noise):
        assert resolve_workflow_group(ids + noise) == resolve_workflow_group(ids)

    @given(ids=st.lists(st.integers(min_value=1, max_value=40), max_size=12))
    def test_order_independent(self, ids):
        assert resolve_workflow_group(ids) == resolve_workflow_group(list(reversed(ids)))
        assert resolve_workflow_group(ids) == resolve_workflow_group(normalize_parameter_ids(ids))

    @given(
        wgs=st.integers(min_value=12, max_value=17),
        others=st.lists(st.integers(min_value=1, max_value=40), max_size=12),
    )
    def test_wgs_has_precedence(self, wgs, others):
        assert resolve_workflow_group(others + [wgs]) is WorkflowGroup.WGS_SARS_COV_2

    @given(ids=st.lists(st.integers(min_value=33, max_value=10_000), max_size=8))
    def test_out_of_range_unclassified(self, ids):
        assert resolve_workflow_group(ids) is None


class TestCodeProperties:

    @given(prefix=prefixes, number=st.integers(min_value=0, max_value=10**8), padding=st.integers(1, 9))
    def test_parse_recovers_parts(self, prefix, number, padding):
        code = format_code(prefix, number, padding)
        parsed = parse_code(code)
        assert (parsed.prefix, parsed.number) == (prefix, number)
        assert len(code.split(" ")[1]) == max(padding, len(str(number)))

    @given(
        prefix=prefixes,
        number=st.integers(min_value=0, max_value=99_999),
        sep=st.sampled_from(["", " ", "-", " - "]),
    )
    def test_normalize_idempotent(self, prefix, number, sep):
        raw = f"  {prefix.lower()}{sep}{number} "
        once = normalize_code(raw)
        assert normalize_code(once) == once
        assert once.startswith(prefix + " ")

    @given(raw=st.text(max_size=10), number=st.integers(min_value=1, max_value=10**6))
    def test_accepted_prefix_mints_parseable_codes(self, raw, number):
        try:
            prefix = normalize_prefix(raw)
        except InvalidSampleCodeError:
            return
        parsed = parse_code(format_code(prefix, number))
        assert (parsed.prefix, parsed.number) == (prefix, number)


class TestAuditHelperProperties:

    @given(action=st.text(max_size=80), limit=st.integers(min_value=1, max_value=60))
    def test_action_bounded(self, action, limit):
        assert len(normalize_action(action, limit)) <= limit

    @given(before=snapshots, after=snapshots)
    def test_diff_reconstructs_after(self, before, after):
        old, new = compute_diff(before, after)
        assert set(old) == set(new)

        merged = {**before, **new}
        keys = set(before) | set(after)
        assert {k: merged.get(k) for k in keys} == {k: after.get(k) for k in keys}


class TestGuardProperties:

    @pytest.mark.parametrize("guard", [SAMPLE_STATUS_GUARD, REQUEST_STATUS_GUARD, TEST_STATUS_GUARD])
    @settings(max_examples=50)
    @given(data=st.data())
    def test_queries_consistent(self, guard, data):
        states = guard.all_states()
        role = data.draw(st.sampled_from(list(Role)))
        current = data.draw(st.sampled_from(states))
        target = data.draw(st.sampled_from(states))

        allowed = guard.can_transition(role, current, target)
        assert allowed == (role in guard.roles_for(current, target))
        assert allowed == (target in guard.allowed_targets(role, current))
        if role is Role.CLIENT or current == target:
            assert not allowed


class TestCustodyProperties:

    @given(
        events=st.lists(st.sampled_from(list(CustodyEvent)), max_size=25),
        intake_passed=st.booleans(),
        crosscheck=st.sampled_from(list(CrosscheckStatus)),
    )
    def test_no_sequence_breaks_order(self, events, intake_passed, crosscheck):
        snapshot = CustodySnapshot(sample_id="s", crosscheck_status=crosscheck)
        order: list[CustodyEvent] = []
        now = datetime(2026, 1, 1, tzinfo=UTC)

        for event in events:
            role = CUSTODY_STEPS[event].role
            try:
                check_custody_event(event, role, snapshot)
            except (PolicyDeniedError, PreconditionFailedError, LabCodeAssignedError):
                continue
            order.append(event)
            snapshot = replace(
                snapshot,
                timestamps={**snapshot.timestamps, event: now},
                intake_passed=(
                    intake_passed
                    if event is CustodyEvent.COLLECTOR_INTAKE_COMPLETED
                    else snapshot.intake_passed
                ),
            )

        assert len(order) == len(set(order))
        for index, event in enumerate(order):
            prerequisite = CUSTODY_STEPS[event].prerequisite
            if prerequisite is not None:
                assert prerequisite in order[:index]
        assert not (
            CustodyEvent.COLLECTOR_RETURNED_TO_ADMIN in order
            and CustodyEvent.SC_DELIVERED_TO_ANALYST in order
        )
