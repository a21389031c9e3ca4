"""Tests for the three-way decision function."""

import pytest

from dotvault.engine import Decision, decide

L = "sha256:local"
R = "sha256:remote"
B = "sha256:base"


@pytest.mark.parametrize(
    "local,remote,baseline,expected",
    [
        (None, None, None, Decision.SKIP),
        (None, None, B, Decision.SKIP),
        (L, L, None, Decision.SKIP),
        (L, L, B, Decision.SKIP),
        (L, None, None, Decision.PUSH),
        (None, R, None, Decision.PULL),
        (L, R, None, Decision.CONFLICT),
        (None, B, B, Decision.PULL),
        (None, R, B, Decision.CONFLICT),
        (L, None, B, Decision.PUSH),
        (L, B, B, Decision.PUSH),
        (B, R, B, Decision.PULL),
        (L, R, B, Decision.CONFLICT),
    ],
)
def test_decision_table(local, remote, baseline, expected):
    """Every row of the decision table."""
    decision, reason = decide(local, remote, baseline)
    assert decision == expected
    assert reason


def test_removed_on_both_sides_is_reported():
    decision, reason = decide(None, None, B)
    assert decision == Decision.SKIP
    assert "removed" in reason


def test_remote_missing_never_deletes():
    """A vanished remote is re-created, never propagated as a delete."""
    decision, reason = decide(B, None, B)
    assert decision == Decision.PUSH
    assert "missing" in reason


def test_converged_sides_skip_even_when_baseline_is_stale():
    decision, _ = decide(L, L, B)
    assert decision == Decision.SKIP
