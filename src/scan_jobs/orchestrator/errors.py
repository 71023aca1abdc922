"""Error taxonomy for job orchestration."""

from __future__ import annotations


class JobError(RuntimeError):
    """Base class for orchestration errors."""


class AlreadyRunningError(JobError):
    """A start was requested for an id that already has an active job."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} is already running")
        self.job_id = job_id


class JobNotFoundError(JobError):
    """An operation targeted an id with no active job."""

    def __init__(self, job_id: int) -> None:
        super().__init__(f"Job {job_id} is not running")
        self.job_id = job_id


class InvalidJobConfigError(ValueError):
    """Job configuration rejected before any state change."""


class SpawnError(JobError):
    """The external executable could not be started."""

    def __init__(self, message: str, *, executable: str) -> None:
        super().__init__(message)
        self.executable = executable


class DecodeError(JobError):
    """Tool output could not be decoded into result records."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ProcessError(JobError):
    """The tool exited in a way that counts as failure."""

    def __init__(self, message: str, *, exit_code: int | None) -> None:
        super().__init__(message)
        self.exit_code = exit_code
