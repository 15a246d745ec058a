"""Tests for the apply options."""

import pytest

from kapply.client import PropagationPolicy
from kapply.exceptions import PreconditionError
from kapply.options import ApplyOptions, parse_propagation_policy


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Foreground", PropagationPolicy.FOREGROUND),
        ("Background", PropagationPolicy.BACKGROUND),
        ("Orphan", PropagationPolicy.ORPHAN),
    ],
)
def test_parse_propagation_policy(value: str, expected: PropagationPolicy) -> None:
    """Test the recognized propagation policies."""
    assert parse_propagation_policy(value) == expected


@pytest.mark.parametrize(
    "value",
    ["", "background", "ORPHAN", "Foreground ", "Delete", "none"],
)
def test_parse_propagation_policy_invalid(value: str) -> None:
    """Test every other value is rejected with the same error."""
    with pytest.raises(PreconditionError) as exc_info:
        parse_propagation_policy(value)
    assert str(exc_info.value) == (
        "prune propagation policy must be one of Background, Foreground, Orphan"
    )


def test_default_options() -> None:
    """Test the default options are valid and do not wait for status."""
    options = ApplyOptions()
    options.validate()
    assert options.propagation_policy == PropagationPolicy.BACKGROUND
    assert not options.wait_for_status


def test_wait_for_status() -> None:
    """Test the reconcile timeout controls the status wait."""
    assert ApplyOptions(reconcile_timeout=5).wait_for_status
    assert ApplyOptions(reconcile_timeout=None).wait_for_status
    assert not ApplyOptions(reconcile_timeout=0).wait_for_status


@pytest.mark.parametrize(
    ("options", "match"),
    [
        (ApplyOptions(prune_propagation_policy="Delete"), "propagation policy"),
        (ApplyOptions(poll_interval=0), "poll interval"),
        (ApplyOptions(reconcile_timeout=-1), "reconcile timeout"),
        (ApplyOptions(prune_timeout=-1), "prune timeout"),
        (ApplyOptions(concurrency=0), "concurrency"),
    ],
)
def test_validate_invalid(options: ApplyOptions, match: str) -> None:
    """Test invalid options are rejected."""
    with pytest.raises(PreconditionError, match=match):
        options.validate()
