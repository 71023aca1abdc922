"""SQLModel ORM tables for scan job storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class ScanJobRow(SQLModel, table=True):
    __tablename__ = "scan_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_scan_jobs_kind_status", "kind", "status"),)

    job_id: int | None = Field(default=None, primary_key=True)
    kind: str = Field(index=True)
    status: str = Field(index=True)
    config_json: str = Field(sa_column=Column(Text, nullable=False))
    progress: float = 0.0
    current_activity: str | None = None
    completed_units: int = 0
    total_units: int | None = None
    record_count: int = 0
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ScanRecordRow(SQLModel, table=True):
    __tablename__ = "scan_records"  # type: ignore[bad-override]

    record_id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            ForeignKey("scan_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    kind: str
    label: str | None = Field(default=None, index=True)
    severity: str | None = Field(default=None, index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
