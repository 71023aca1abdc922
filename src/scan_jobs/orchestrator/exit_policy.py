"""Deterministic mapping from process exit outcome to job status."""

from __future__ import annotations

from dataclasses import dataclass

from scan_jobs.orchestrator.backend.base import ExitOutcome
from scan_jobs.orchestrator.models import JobStatus

# 128 + SIGINT on POSIX shells, STATUS_CONTROL_C_EXIT on Windows.
INTERRUPT_EXIT_CODES: tuple[int, ...] = (130, 0xC000013A)


@dataclass(frozen=True, slots=True)
class ExitClassification:
    """Job status derived from how the process ended."""

    status: JobStatus
    matched_rule: str
    error_message: str | None = None


def classify_exit(
    outcome: ExitOutcome,
    *,
    stderr_tail: str = "",
    interrupt_exit_codes: tuple[int, ...] = INTERRUPT_EXIT_CODES,
) -> ExitClassification:
    """Classify a process exit.

    A missing exit code means the process was ended by a signal. That is
    reported as `cancelled` whether or not a cancel was requested, since an
    operator stop and an external signal cannot be told apart.
    """

    code = outcome.exit_code
    if code == 0:
        return ExitClassification(status=JobStatus.COMPLETED, matched_rule="clean_exit")
    if code is None:
        return ExitClassification(
            status=JobStatus.CANCELLED,
            matched_rule="terminated_by_signal" if outcome.signal else "no_exit_code",
        )
    if code in interrupt_exit_codes:
        return ExitClassification(status=JobStatus.CANCELLED, matched_rule="interrupt_exit_code")

    message = f"Scan failed with exit code {code}"
    tail = stderr_tail.strip()
    if tail:
        message = f"{message}: {tail}"
    return ExitClassification(
        status=JobStatus.FAILED,
        matched_rule="non_zero_exit",
        error_message=message,
    )
