from __future__ import annotations

import logging
from pathlib import Path

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session

from scan_jobs.orchestrator.models import (
    DomainBruteConfig,
    JobKind,
    JobStatus,
    JobUpdate,
    PortScanConfig,
    VulnerabilityScanConfig,
)
from scan_jobs.orchestrator.records import ResultRecord
from scan_jobs.storage.common import utc_now
from scan_jobs.storage.repository import INTERRUPTED_ERROR_MESSAGE, JobRepository
from scan_jobs.storage.tables import ScanRecordRow

pytestmark = [
    allure.epic("Job Persistence"),
    allure.feature("Job Repository"),
]


def test_create_job_round_trips_config(repository: JobRepository) -> None:
    config = VulnerabilityScanConfig(
        targets=("https://example.com",),
        severities=("critical",),
        headers=("X-Api: 1",),
        rate_limit=50,
    )

    job_id = repository.create_job(JobKind.VULNERABILITY_SCAN, config)
    stored = repository.get_job(job_id)

    assert stored is not None
    assert stored.kind is JobKind.VULNERABILITY_SCAN
    assert stored.status is JobStatus.PENDING
    assert stored.config == config
    assert stored.created_at.tzinfo is not None


def test_update_job_applies_only_set_fields(repository: JobRepository) -> None:
    job_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))
    started_at = utc_now()
    repository.update_job(job_id, JobUpdate(status=JobStatus.RUNNING, started_at=started_at))

    repository.update_job(job_id, JobUpdate(progress=40.0, completed_units=4, total_units=10))

    stored = repository.get_job(job_id)
    assert stored is not None
    assert stored.status is JobStatus.RUNNING
    assert stored.progress == 40.0
    assert (stored.completed_units, stored.total_units) == (4, 10)
    assert stored.started_at == started_at


def test_completed_status_stores_full_progress(repository: JobRepository) -> None:
    job_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))

    repository.update_job(job_id, JobUpdate(status=JobStatus.COMPLETED, progress=12.5))

    stored = repository.get_job(job_id)
    assert stored is not None
    assert stored.progress == 100.0


def test_update_unknown_job_is_ignored(repository: JobRepository) -> None:
    repository.update_job(999, JobUpdate(status=JobStatus.FAILED))

    assert repository.get_job(999) is None


def test_records_keep_discovery_order_and_summary_columns(repository: JobRepository) -> None:
    job_id = repository.create_job(
        JobKind.VULNERABILITY_SCAN,
        VulnerabilityScanConfig(targets=("h",)),
    )
    repository.create_record(
        job_id,
        ResultRecord(
            kind=JobKind.VULNERABILITY_SCAN,
            payload={"template-id": "b-template", "info": {"severity": "high"}},
        ),
    )
    repository.create_records_batch(
        job_id,
        [
            ResultRecord(kind=JobKind.VULNERABILITY_SCAN, payload={"template-id": "a-template"}),
        ],
    )

    records = repository.list_records(job_id)

    assert [record.label for record in records] == ["b-template", "a-template"]
    assert records[0].severity == "high"
    assert repository.count_records(job_id) == 2
    assert repository.list_records(job_id, limit=1) == records[:1]


def test_empty_batch_writes_nothing(repository: JobRepository) -> None:
    job_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))

    assert repository.create_records_batch(job_id, []) == 0
    assert repository.count_records(job_id) == 0


def test_delete_job_removes_records(repository: JobRepository) -> None:
    job_id = repository.create_job(JobKind.DOMAIN_BRUTE, DomainBruteConfig(domain="example.com"))
    repository.create_records_batch(
        job_id,
        [ResultRecord(kind=JobKind.DOMAIN_BRUTE, payload={"subdomain": "www.example.com"})],
    )

    assert repository.delete_job(job_id) is True
    assert repository.get_job(job_id) is None
    assert repository.count_records(job_id) == 0
    assert repository.delete_job(job_id) is False


def test_list_jobs_filters_and_orders_newest_first(repository: JobRepository) -> None:
    port_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))
    brute_id = repository.create_job(JobKind.DOMAIN_BRUTE, DomainBruteConfig(domain="example.com"))
    repository.update_job(brute_id, JobUpdate(status=JobStatus.FAILED))

    assert [job.job_id for job in repository.list_jobs()] == [brute_id, port_id]
    assert [job.job_id for job in repository.list_jobs(kind=JobKind.PORT_SCAN)] == [port_id]
    assert [job.job_id for job in repository.list_jobs(status=JobStatus.FAILED)] == [brute_id]
    assert len(repository.list_jobs(limit=1)) == 1


def test_fail_interrupted_jobs_marks_only_active_rows(repository: JobRepository) -> None:
    pending_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))
    running_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.2"))
    done_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.3"))
    repository.update_job(running_id, JobUpdate(status=JobStatus.RUNNING))
    repository.update_job(done_id, JobUpdate(status=JobStatus.COMPLETED))

    assert repository.fail_interrupted_jobs() == 2

    for job_id in (pending_id, running_id):
        stored = repository.get_job(job_id)
        assert stored is not None
        assert stored.status is JobStatus.FAILED
        assert stored.error_message == INTERRUPTED_ERROR_MESSAGE
        assert stored.finished_at is not None
    done = repository.get_job(done_id)
    assert done is not None
    assert done.status is JobStatus.COMPLETED


def test_damaged_record_payload_reads_back_empty(repository: JobRepository, caplog) -> None:
    job_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))
    repository.create_records_batch(
        job_id,
        [
            ResultRecord(kind=JobKind.PORT_SCAN, payload={"port": 22, "status": "open"}),
            ResultRecord(kind=JobKind.PORT_SCAN, payload={"port": 80, "status": "open"}),
        ],
    )
    with Session(repository.engine) as session:
        session.execute(
            sa_update(ScanRecordRow)
            .where(ScanRecordRow.job_id == job_id)
            .where(ScanRecordRow.label == "22/open")
            .values(payload_json="{broken"),
        )
        session.commit()
    caplog.set_level(logging.WARNING, logger="scan_jobs.storage.common")

    records = repository.list_records(job_id)

    assert [record.payload for record in records] == [{}, {"port": 80, "status": "open"}]
    assert "Unreadable JSON in record" in caplog.text


def test_non_ascii_payload_is_stored_verbatim(repository: JobRepository) -> None:
    job_id = repository.create_job(JobKind.DOMAIN_BRUTE, DomainBruteConfig(domain="пример.рф"))
    repository.create_records_batch(
        job_id,
        [ResultRecord(kind=JobKind.DOMAIN_BRUTE, payload={"subdomain": "почта.пример.рф"})],
    )

    with Session(repository.engine) as session:
        raw = session.get(ScanRecordRow, 1)

    assert raw is not None
    assert "почта.пример.рф" in raw.payload_json
    assert repository.list_records(job_id)[0].payload == {"subdomain": "почта.пример.рф"}


def test_repository_creates_missing_database_directory(tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "nested" / "scan_jobs.db"
    repository = JobRepository(db_path)
    try:
        repository.init_schema()
        job_id = repository.create_job(JobKind.PORT_SCAN, PortScanConfig(target="10.0.0.1"))
    finally:
        repository.close()

    assert db_path.is_file()
    assert job_id == 1
