"""Persistent job and record repository."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, SQLModel, col, select

from scan_jobs.orchestrator.models import (
    JobConfig,
    JobKind,
    JobStatus,
    JobUpdate,
    JobView,
    config_from_dict,
    config_to_dict,
)
from scan_jobs.orchestrator.records import ResultRecord
from scan_jobs.storage.common import (
    build_sqlite_engine,
    dump_json,
    ensure_utc,
    load_json_object,
    utc_now,
)
from scan_jobs.storage.tables import ScanJobRow, ScanRecordRow

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR_MESSAGE = "Interrupted: the process that owned this job exited"


class JobRepository:
    """Job persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create tables if they do not exist."""

        SQLModel.metadata.create_all(self.engine)

    def fail_interrupted_jobs(self) -> int:
        """Mark jobs left pending or running by a dead process as failed.

        Returns the number of jobs changed.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.execute(
                sa_update(ScanJobRow)
                .where(
                    col(ScanJobRow.status).in_(
                        [JobStatus.PENDING.value, JobStatus.RUNNING.value],
                    ),
                )
                .values(
                    status=JobStatus.FAILED.value,
                    finished_at=now,
                    error_message=INTERRUPTED_ERROR_MESSAGE,
                ),
            )
            session.commit()
            recovered = result.rowcount or 0
        if recovered:
            logger.warning("Marked %d stale job(s) as failed", recovered)
        return recovered

    def create_job(self, kind: JobKind, config: JobConfig) -> int:
        """Create a pending job row and return its id."""

        with Session(self.engine) as session:
            row = ScanJobRow(
                kind=kind.value,
                status=JobStatus.PENDING.value,
                config_json=dump_json(config_to_dict(config)),
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            assert row.job_id is not None
            return row.job_id

    def update_job(self, job_id: int, update: JobUpdate) -> None:
        """Apply the fields set on `update`; unknown ids are ignored."""

        with Session(self.engine) as session:
            row = session.get(ScanJobRow, job_id)
            if row is None:
                logger.warning("Ignoring update for unknown job %s", job_id)
                return
            if update.status is not None:
                row.status = update.status.value
                if update.status is JobStatus.COMPLETED:
                    row.progress = 100.0
            if update.progress is not None and update.status is not JobStatus.COMPLETED:
                row.progress = update.progress
            if update.current_activity is not None:
                row.current_activity = update.current_activity
            if update.completed_units is not None:
                row.completed_units = update.completed_units
            if update.total_units is not None:
                row.total_units = update.total_units
            if update.record_count is not None:
                row.record_count = update.record_count
            if update.started_at is not None:
                row.started_at = update.started_at
            if update.finished_at is not None:
                row.finished_at = update.finished_at
            if update.error_message is not None:
                row.error_message = update.error_message
            session.add(row)
            session.commit()

    def replace_config(self, job_id: int, config: JobConfig) -> None:
        """Store the config a job was actually started with."""

        with Session(self.engine) as session:
            row = session.get(ScanJobRow, job_id)
            if row is None:
                return
            row.config_json = dump_json(config_to_dict(config))
            session.add(row)
            session.commit()

    def create_record(self, job_id: int, record: ResultRecord) -> int:
        with Session(self.engine) as session:
            row = _to_record_row(job_id, record)
            session.add(row)
            session.commit()
            session.refresh(row)
            assert row.record_id is not None
            return row.record_id

    def create_records_batch(self, job_id: int, records: Sequence[ResultRecord]) -> int:
        """Insert all records in one transaction and return how many were stored."""

        if not records:
            return 0
        with Session(self.engine) as session:
            session.add_all([_to_record_row(job_id, record) for record in records])
            session.commit()
        return len(records)

    def delete_job(self, job_id: int) -> bool:
        """Delete a job and its records; return False for unknown ids."""

        with Session(self.engine) as session:
            row = session.get(ScanJobRow, job_id)
            if row is None:
                return False
            session.execute(sa_delete(ScanRecordRow).where(col(ScanRecordRow.job_id) == job_id))
            session.delete(row)
            session.commit()
        return True

    def get_job(self, job_id: int) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(ScanJobRow, job_id)
            if row is None:
                return None
            return _to_job_view(row)

    def list_jobs(
        self,
        *,
        kind: JobKind | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, newest first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(ScanJobRow)
            if kind is not None:
                statement = statement.where(ScanJobRow.kind == kind.value)
            if status is not None:
                statement = statement.where(ScanJobRow.status == status.value)
            statement = statement.order_by(col(ScanJobRow.job_id).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def list_records(self, job_id: int, *, limit: int | None = None) -> list[ResultRecord]:
        """Stored records of a job in discovery order."""

        with Session(self.engine) as session:
            statement = (
                select(ScanRecordRow)
                .where(ScanRecordRow.job_id == job_id)
                .order_by(col(ScanRecordRow.record_id).asc())
            )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [
            ResultRecord(
                kind=JobKind(row.kind),
                payload=load_json_object(row.payload_json, context=f"record {row.record_id}"),
            )
            for row in rows
        ]

    def count_records(self, job_id: int) -> int:
        with Session(self.engine) as session:
            total = session.exec(
                select(func.count())
                .select_from(ScanRecordRow)
                .where(ScanRecordRow.job_id == job_id),
            ).one()
        return int(total)


def _to_record_row(job_id: int, record: ResultRecord) -> ScanRecordRow:
    return ScanRecordRow(
        job_id=job_id,
        kind=record.kind.value,
        label=record.label,
        severity=record.severity,
        payload_json=dump_json(record.payload),
        created_at=utc_now(),
    )


def _to_job_view(row: ScanJobRow) -> JobView:
    kind = JobKind(row.kind)
    assert row.job_id is not None
    return JobView(
        job_id=row.job_id,
        kind=kind,
        status=JobStatus(row.status),
        config=config_from_dict(
            kind,
            load_json_object(row.config_json, context=f"job {row.job_id} config"),
        ),
        progress=row.progress,
        current_activity=row.current_activity,
        completed_units=row.completed_units,
        total_units=row.total_units,
        record_count=row.record_count,
        started_at=ensure_utc(row.started_at),
        finished_at=ensure_utc(row.finished_at),
        error_message=row.error_message,
        created_at=ensure_utc(row.created_at) or utc_now(),
    )
