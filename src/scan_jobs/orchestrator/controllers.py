"""Controllers for scan CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from scan_jobs.config import Settings
from scan_jobs.orchestrator.errors import DecodeError, ProcessError
from scan_jobs.orchestrator.events import JobEvent
from scan_jobs.orchestrator.job import Job
from scan_jobs.orchestrator.models import (
    DomainBruteConfig,
    JobKind,
    JobStatus,
    JobView,
    PortScanConfig,
    VulnerabilityScanConfig,
)
from scan_jobs.orchestrator.services import ScanService, build_scan_service, format_event
from scan_jobs.storage.repository import JobRepository

Emit = Callable[[str], None]


@dataclass(slots=True)
class VulnerabilityScanCommand:
    """CLI input for a foreground vulnerability scan."""

    db_path: Path | None
    targets: tuple[str, ...]
    target_file: str | None
    preset: str | None
    templates: tuple[str, ...]
    severities: tuple[str, ...]
    tags: tuple[str, ...]
    exclude_tags: tuple[str, ...]
    headers: tuple[str, ...]
    rate_limit: int | None = None
    concurrency: int | None = None
    timeout: int | None = None
    retries: int | None = None


@dataclass(slots=True)
class PortScanCommand:
    """CLI input for a foreground port scan."""

    db_path: Path | None
    target: str
    ports: tuple[int, ...]
    timeout_ms: int | None
    batch_size: int | None


@dataclass(slots=True)
class DomainBruteCommand:
    """CLI input for a foreground subdomain brute-force."""

    db_path: Path | None
    domain: str
    wordlist_path: Path | None
    timeout_ms: int | None
    batch_size: int | None


@dataclass(slots=True)
class ListJobsCommand:
    """CLI input for job listing."""

    db_path: Path | None
    kind: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ShowJobCommand:
    """CLI input for job inspection."""

    db_path: Path | None
    job_id: int
    records_limit: int


@dataclass(slots=True)
class DeleteJobCommand:
    """CLI input for job deletion."""

    db_path: Path | None
    job_id: int


@dataclass(slots=True)
class RecoverJobsCommand:
    """CLI input for failing jobs orphaned by a dead process."""

    db_path: Path | None


@dataclass(slots=True)
class ToolsCommand:
    """CLI input for tool checks and template updates."""

    kinds: tuple[str, ...] = ()


@dataclass(slots=True)
class DnsRecordsCommand:
    """CLI input for a one-shot DNS record lookup."""

    domain: str
    record_type: str


@dataclass(slots=True)
class ScanRunResult:
    """Printed lines and overall outcome of a CLI command."""

    lines: list[str]
    success: bool


class ScanCliController:
    """Translate CLI commands into service calls and printable lines."""

    def run_vulnerability_scan(
        self,
        command: VulnerabilityScanCommand,
        *,
        emit: Emit,
    ) -> ScanRunResult:
        config = VulnerabilityScanConfig(
            targets=command.targets,
            target_file=command.target_file,
            templates=command.templates,
            severities=command.severities,
            tags=command.tags,
            exclude_tags=command.exclude_tags,
            headers=command.headers,
            rate_limit=command.rate_limit,
            concurrency=command.concurrency,
            timeout=command.timeout,
            retries=command.retries,
        )
        return asyncio.run(
            _run_foreground(
                Settings.from_env(db_path=command.db_path),
                lambda service: service.start_vulnerability_scan(config, preset=command.preset),
                emit=emit,
            ),
        )

    def run_port_scan(self, command: PortScanCommand, *, emit: Emit) -> ScanRunResult:
        config = PortScanConfig(
            target=command.target,
            ports=command.ports,
            timeout_ms=command.timeout_ms,
            batch_size=command.batch_size,
        )
        return asyncio.run(
            _run_foreground(
                Settings.from_env(db_path=command.db_path),
                lambda service: service.start_port_scan(config),
                emit=emit,
            ),
        )

    def run_domain_brute(self, command: DomainBruteCommand, *, emit: Emit) -> ScanRunResult:
        wordlist: tuple[str, ...] = ()
        if command.wordlist_path is not None:
            wordlist = _read_wordlist(command.wordlist_path)
        config = DomainBruteConfig(
            domain=command.domain,
            wordlist=wordlist,
            timeout_ms=command.timeout_ms,
            batch_size=command.batch_size,
        )
        return asyncio.run(
            _run_foreground(
                Settings.from_env(db_path=command.db_path),
                lambda service: service.start_domain_brute(config),
                emit=emit,
            ),
        )

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                kind=JobKind(command.kind) if command.kind else None,
                status=JobStatus(command.status) if command.status else None,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} kind={job.kind.value} status={job.status.value} "
                f"progress={job.progress:.1f}% records={job.record_count} "
                f"created={job.created_at.isoformat()}",
            )
        return lines

    def show_job(self, command: ShowJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            job = repository.get_job(command.job_id)
            if job is None:
                return [f"Job not found: {command.job_id}"]
            records = repository.list_records(command.job_id, limit=command.records_limit)

        lines = _job_summary_lines(job)
        lines.append(f"Records (showing {len(records)} of {job.record_count}):")
        for record in records:
            severity = f" [{record.severity}]" if record.severity else ""
            lines.append(f"  - {record.label}{severity}")
        return lines

    def delete_job(self, command: DeleteJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            deleted = repository.delete_job(command.job_id)
        if not deleted:
            return [f"Job not found: {command.job_id}"]
        return [f"Deleted job {command.job_id}"]

    def recover_jobs(self, command: RecoverJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            recovered = repository.fail_interrupted_jobs()
        return [f"Marked {recovered} interrupted job(s) as failed"]

    def check_tools(self, command: ToolsCommand) -> ScanRunResult:
        kinds = tuple(JobKind(kind) for kind in command.kinds) or tuple(JobKind)
        return asyncio.run(_check_tools(Settings.from_env(), kinds))

    def update_templates(self, command: ToolsCommand) -> ScanRunResult:  # noqa: ARG002
        return asyncio.run(_update_templates(Settings.from_env()))

    def dns_records(self, command: DnsRecordsCommand) -> ScanRunResult:
        return asyncio.run(_dns_records(Settings.from_env(), command))


async def _run_foreground(
    settings: Settings,
    start: Callable[[ScanService], Awaitable[Job]],
    *,
    emit: Emit,
) -> ScanRunResult:
    service = build_scan_service(settings)
    subscription = service.events.subscribe(lambda event: _emit_event(emit, event))
    try:
        job = await start(service)
        try:
            snapshot = await job.wait()
        except asyncio.CancelledError:
            # Ctrl-C: stop the tool and wait for the cancelled terminal state.
            emit(f"Cancelling job {job.job_id}...")
            service.cancel_scan(job.job_id)
            snapshot = await job.wait()
        view = service.get_scan(job.job_id)
    finally:
        subscription.close()
        await service.close()

    lines = _job_summary_lines(view) if view is not None else [f"Job: {snapshot.job_id}"]
    return ScanRunResult(lines=lines, success=snapshot.status is JobStatus.COMPLETED)


def _emit_event(emit: Emit, event: JobEvent) -> None:
    emit(f"job {event.job_id} {format_event(event)}")


async def _check_tools(settings: Settings, kinds: tuple[JobKind, ...]) -> ScanRunResult:
    service = build_scan_service(settings)
    lines: list[str] = []
    success = True
    try:
        for kind in kinds:
            result = await service.probe_tool(kind)
            if result.ok:
                version = f" {result.version}" if result.version else ""
                lines.append(f"{kind.value}: ok ({result.executable}){version}")
            else:
                success = False
                lines.append(f"{kind.value}: unavailable ({result.executable}): {result.error}")
    finally:
        await service.close()
    return ScanRunResult(lines=lines, success=success)


async def _update_templates(settings: Settings) -> ScanRunResult:
    service = build_scan_service(settings)
    try:
        result = await service.update_templates()
    finally:
        await service.close()
    if result.ok:
        return ScanRunResult(lines=["Templates updated."], success=True)
    lines = [f"Template update failed: {result.error}"]
    if result.stderr.strip():
        lines.append(result.stderr.strip())
    return ScanRunResult(lines=lines, success=False)


async def _dns_records(settings: Settings, command: DnsRecordsCommand) -> ScanRunResult:
    service = build_scan_service(settings)
    try:
        records = await service.dns_records(command.domain, command.record_type)
    except (ProcessError, DecodeError) as error:
        return ScanRunResult(lines=[str(error)], success=False)
    finally:
        await service.close()
    lines = [f"{command.record_type.upper()} records for {command.domain}: {len(records)}"]
    lines.extend(f"  {record}" for record in records)
    return ScanRunResult(lines=lines, success=True)


def _job_summary_lines(job: JobView) -> list[str]:
    duration = job.duration_seconds
    units = (
        f"{job.completed_units}/{job.total_units}" if job.total_units is not None else "-"
    )
    return [
        f"Job: {job.job_id}",
        f"Kind: {job.kind.value}",
        f"Status: {job.status.value}",
        f"Progress: {job.progress:.1f}% (units {units})",
        f"Records: {job.record_count}",
        f"Started: {job.started_at.isoformat() if job.started_at else '-'}",
        f"Finished: {job.finished_at.isoformat() if job.finished_at else '-'}",
        f"Duration: {f'{duration}s' if duration is not None else '-'}",
        f"Error: {job.error_message or '-'}",
    ]


def _read_wordlist(path: Path) -> tuple[str, ...]:
    words = (line.strip() for line in path.read_text(encoding="utf-8").splitlines())
    return tuple(word for word in words if word and not word.startswith("#"))


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
