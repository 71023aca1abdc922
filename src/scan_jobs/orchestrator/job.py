"""Runtime record of one orchestrated tool invocation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from scan_jobs.orchestrator.backend.base import ExitOutcome, ProcessHandle
from scan_jobs.orchestrator.models import JobConfig, JobKind, JobStatus
from scan_jobs.orchestrator.progress import ProgressSnapshot, ProgressTracker


@dataclass(frozen=True, slots=True)
class JobSnapshot:
    """Immutable copy of a job's state for callers."""

    job_id: int
    kind: JobKind
    status: JobStatus
    progress: ProgressSnapshot
    started_at: datetime | None
    finished_at: datetime | None
    error: str | None
    exit_outcome: ExitOutcome | None


class Job:
    """Mutable job state, owned by `JobOrchestrator`.

    Counters change only from the job's own output-processing path. The
    process handle stays private to the job and its orchestrator.
    """

    def __init__(
        self,
        *,
        job_id: int,
        kind: JobKind,
        config: JobConfig,
        tracker: ProgressTracker,
    ) -> None:
        self.job_id = job_id
        self.kind = kind
        self.config = config
        self.tracker = tracker
        self.status = JobStatus.PENDING
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.error: str | None = None
        self.exit_outcome: ExitOutcome | None = None
        self.cancel_requested = False
        self.kill_requested = False
        self._handle: ProcessHandle | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self._grace_timer: asyncio.Task[None] | None = None
        self._done = asyncio.Event()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_running(self, handle: ProcessHandle, started_at: datetime) -> None:
        self._handle = handle
        self.status = JobStatus.RUNNING
        self.started_at = started_at

    def finish(self, status: JobStatus, *, error: str | None, finished_at: datetime) -> bool:
        """Set the terminal state once; later calls return False and change nothing."""

        if self.is_terminal:
            return False
        self.status = status
        self.error = error
        self.finished_at = finished_at
        return True

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            kind=self.kind,
            status=self.status,
            progress=self.tracker.snapshot(),
            started_at=self.started_at,
            finished_at=self.finished_at,
            error=self.error,
            exit_outcome=self.exit_outcome,
        )

    async def wait(self) -> JobSnapshot:
        """Suspend until the terminal event has been delivered."""

        await self._done.wait()
        return self.snapshot()
