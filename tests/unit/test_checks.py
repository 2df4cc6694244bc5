"""
Unit tests for check recording and aggregation.
"""

import logging

import pytest

from queue_loadtest.checks import CheckRecorder, CheckResult, CheckSummary


pytestmark = pytest.mark.unit


def test_check_returns_its_verdict():
    recorder = CheckRecorder(owner="K6TESTUSER1")

    assert recorder.check("login succeeded", True) is True
    assert recorder.check("queue entry accepted", False, "status=500") is False


def test_recorder_counts_passes_and_failures():
    # Arrange
    recorder = CheckRecorder()

    # Act
    recorder.check("a", True)
    recorder.check("b", False)
    recorder.check("c", 1)

    # Assert
    assert recorder.passed == 2
    assert recorder.failed == 1
    assert recorder.results[1] == CheckResult(name="b", passed=False)


def test_failed_check_is_logged_with_owner(caplog):
    recorder = CheckRecorder(owner="K6TESTUSER4")

    with caplog.at_level(logging.WARNING, logger="queue_loadtest.checks"):
        recorder.check("concert list fetched", False, "status=503")

    assert "[K6TESTUSER4] check failed: concert list fetched status=503" in caplog.text


def test_listeners_see_every_check():
    seen = []
    recorder = CheckRecorder(listeners=[seen.append])
    late = []
    recorder.add_listener(late.append)

    recorder.check("x", True)
    recorder.check("y", False, "why")

    assert [result.name for result in seen] == ["x", "y"]
    assert late == seen


def test_summary_aggregates_by_name():
    # Arrange
    first = CheckRecorder()
    first.check("login succeeded", True)
    first.check("queue entry accepted", False)
    second = CheckRecorder()
    second.check("login succeeded", False)
    second.check("queue entry accepted", True)
    second.check("queue entry accepted", True)

    # Act
    summary = CheckSummary.from_recorders([first, second])

    # Assert
    assert summary.counts == {
        "login succeeded": [1, 1],
        "queue entry accepted": [2, 1],
    }
    assert summary.total == 5
    assert summary.total_failed == 2
    assert summary.failure_rate_percent == pytest.approx(40.0)


def test_empty_summary_has_zero_failure_rate():
    summary = CheckSummary()

    assert summary.total == 0
    assert summary.failure_rate_percent == 0.0
