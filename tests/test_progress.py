from __future__ import annotations

import re

import allure

from scan_jobs.orchestrator.models import JobKind
from scan_jobs.orchestrator.progress import ProgressTracker, compute_percent
from scan_jobs.orchestrator.records import ResultRecord

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Progress Tracking"),
]


def test_compute_percent_uses_completed_over_total() -> None:
    assert compute_percent(45, 100) == 45.0


def test_compute_percent_is_zero_for_unknown_or_zero_total() -> None:
    assert compute_percent(5, 0) == 0
    assert compute_percent(5, None) == 0


def test_compute_percent_clamps_to_hundred() -> None:
    assert compute_percent(150, 100) == 100.0


def test_tracker_reads_progress_pair_from_stderr_line() -> None:
    tracker = ProgressTracker()

    matched = tracker.observe_stderr("[INF] Templates loaded: 12/48 requests")

    assert matched is True
    assert tracker.completed_units == 12
    assert tracker.total_units == 48
    assert tracker.percent == 25.0


def test_tracker_ignores_lines_without_progress_pair() -> None:
    tracker = ProgressTracker()

    assert tracker.observe_stderr("[WRN] rate limit hit, backing off") is False
    assert tracker.total_units is None
    assert tracker.percent == 0


def test_tracker_never_reports_completed_above_total() -> None:
    tracker = ProgressTracker()

    tracker.observe_stderr("70/50")

    assert tracker.completed_units == 50
    assert tracker.percent == 100.0


def test_tracker_applies_smaller_completed_value_as_reported() -> None:
    tracker = ProgressTracker()
    tracker.observe_stderr("30/40")

    tracker.observe_stderr("10/40")

    assert tracker.completed_units == 10
    assert tracker.percent == 25.0


def test_tracker_pattern_can_be_swapped() -> None:
    tracker = ProgressTracker(re.compile(r"done=(\d+) of=(\d+)"))

    assert tracker.observe_stderr("12/48") is False
    assert tracker.observe_stderr("stats done=3 of=4") is True
    assert tracker.percent == 75.0


def test_tracker_counts_records_and_keeps_last_label() -> None:
    tracker = ProgressTracker()

    tracker.observe_record(
        ResultRecord(kind=JobKind.VULNERABILITY_SCAN, payload={"template-id": "git-config"}),
    )
    tracker.observe_record(ResultRecord(kind=JobKind.VULNERABILITY_SCAN, payload={"no": "label"}))

    snapshot = tracker.snapshot()
    assert snapshot.record_count == 2
    assert snapshot.current_activity == "git-config"
    assert snapshot.completed_units == 0
