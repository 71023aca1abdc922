"""Process adapter implementations."""

from scan_jobs.orchestrator.backend.base import (
    ExitOutcome,
    LaunchRequest,
    ProcessHandle,
    ProcessLauncher,
)
from scan_jobs.orchestrator.backend.process import SubprocessAdapter, SubprocessHandle

__all__ = [
    "ExitOutcome",
    "LaunchRequest",
    "ProcessHandle",
    "ProcessLauncher",
    "SubprocessAdapter",
    "SubprocessHandle",
]
