"""Unit-based progress derived from tool output."""

from __future__ import annotations

import re
from dataclasses import dataclass

from scan_jobs.orchestrator.records import ResultRecord

# The scanner prints human-readable status lines on stderr; the first
# "<completed>/<total>" pair is taken as unit progress.
DEFAULT_PROGRESS_PATTERN = re.compile(r"(\d+)/(\d+)")


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Progress payload carried by `progress-updated` and terminal events."""

    percent: float
    current_activity: str | None
    completed_units: int
    total_units: int | None
    record_count: int


def compute_percent(completed: int, total: int | None) -> float:
    """Return `completed / total * 100` clamped to [0, 100]; 0 if total is unknown."""

    if not total or total <= 0:
        return 0.0
    return min(100.0, max(0.0, completed / total * 100))


class ProgressTracker:
    """Tracks `(completed, total)`, the record count and the current activity label.

    Progress is applied exactly as the tool reports it. A later stderr line
    with a smaller `completed` value moves progress backwards.
    """

    def __init__(self, pattern: re.Pattern[str] = DEFAULT_PROGRESS_PATTERN) -> None:
        self.pattern = pattern
        self.completed_units = 0
        self.total_units: int | None = None
        self.record_count = 0
        self.current_activity: str | None = None

    @property
    def percent(self) -> float:
        return compute_percent(self.completed_units, self.total_units)

    def observe_stderr(self, line: str) -> bool:
        """Apply a progress line; return True when it matched."""

        match = self.pattern.search(line)
        if match is None:
            return False
        completed = int(match.group(1))
        total = int(match.group(2))
        self.total_units = total
        self.completed_units = min(completed, total)
        return True

    def observe_record(self, record: ResultRecord) -> None:
        self.record_count += 1
        label = record.label
        if label:
            self.current_activity = label

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            percent=self.percent,
            current_activity=self.current_activity,
            completed_units=self.completed_units,
            total_units=self.total_units,
            record_count=self.record_count,
        )
