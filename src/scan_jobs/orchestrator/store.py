"""Persistence bridge contract consumed by the orchestrator."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from scan_jobs.orchestrator.models import JobConfig, JobKind, JobUpdate
from scan_jobs.orchestrator.records import ResultRecord


class JobStore(Protocol):
    """Write side of job persistence.

    The orchestrator calls `update_job` on every lifecycle transition and
    progress change, and `create_record` or `create_records_batch` for every
    discovered record, depending on the output protocol of the job.
    """

    def create_job(self, kind: JobKind, config: JobConfig) -> int: ...

    def update_job(self, job_id: int, update: JobUpdate) -> None: ...

    def create_record(self, job_id: int, record: ResultRecord) -> int: ...

    def create_records_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int: ...

    def delete_job(self, job_id: int) -> bool: ...
