"""Use-case services for scan jobs."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import replace

from scan_jobs.config import Settings
from scan_jobs.orchestrator.backend import ProcessLauncher, SubprocessAdapter
from scan_jobs.orchestrator.errors import ProcessError
from scan_jobs.orchestrator.events import EventBus, JobEvent, JobEventType
from scan_jobs.orchestrator.job import Job
from scan_jobs.orchestrator.models import (
    DomainBruteConfig,
    JobConfig,
    JobKind,
    JobStatus,
    JobView,
    PortScanConfig,
    VulnerabilityScanConfig,
    validate_config,
)
from scan_jobs.orchestrator.parsers import decode_dns_records
from scan_jobs.orchestrator.records import ResultRecord
from scan_jobs.orchestrator.registry import JobOrchestrator
from scan_jobs.orchestrator.tool_probe import ProbeResult, run_probe
from scan_jobs.orchestrator.tools import (
    DEFAULT_TOOL_SPECS,
    DNS_RECORD_TYPES,
    UPDATE_TEMPLATES_ARGS,
    VERSION_ARGS,
    ToolLocator,
    build_dns_records_args,
)
from scan_jobs.presets import DEFAULT_PORTS, DEFAULT_WORDLIST, apply_preset
from scan_jobs.storage.repository import JobRepository

logger = logging.getLogger(__name__)

SCAN_LOG_MAX_LINES = 1_000
SCAN_LOG_MAX_JOBS = 100
PROBE_TIMEOUT_SECONDS = 30.0
UPDATE_TEMPLATES_TIMEOUT_SECONDS = 600.0


def format_event(event: JobEvent) -> str:
    """One human-readable log line for a job event."""

    stamp = event.occurred_at.strftime("%H:%M:%S")
    if event.event_type is JobEventType.STARTED:
        return f"[{stamp}] started"
    if event.event_type is JobEventType.RECORD_FOUND and event.record is not None:
        severity = f" [{event.record.severity}]" if event.record.severity else ""
        return f"[{stamp}] found {event.record.label}{severity}"
    if event.event_type is JobEventType.PROGRESS_UPDATED and event.progress is not None:
        progress = event.progress
        units = (
            f" ({progress.completed_units}/{progress.total_units})"
            if progress.total_units is not None
            else ""
        )
        activity = f" {progress.current_activity}" if progress.current_activity else ""
        return f"[{stamp}] progress {progress.percent:.1f}%{units}{activity}"
    status = event.status.value if event.status is not None else event.event_type.value
    return f"[{stamp}] {status}" + (f": {event.error}" if event.error else "")


class ScanLogBook:
    """Keep the latest log lines of recent jobs, fed from the event bus.

    At most `max_jobs` jobs are kept. When a new job arrives over the cap the
    oldest finished job is forgotten first, then the oldest job overall.
    """

    def __init__(
        self,
        *,
        max_lines: int = SCAN_LOG_MAX_LINES,
        max_jobs: int = SCAN_LOG_MAX_JOBS,
    ) -> None:
        self.max_lines = max_lines
        self.max_jobs = max(1, max_jobs)
        self._lines: OrderedDict[int, deque[str]] = OrderedDict()
        self._finished: set[int] = set()

    def __call__(self, event: JobEvent) -> None:
        lines = self._lines.get(event.job_id)
        if lines is None:
            lines = deque(maxlen=self.max_lines)
            self._lines[event.job_id] = lines
            self._evict()
        lines.append(format_event(event))
        if event.is_terminal:
            self._finished.add(event.job_id)

    def lines(self, job_id: int) -> list[str]:
        return list(self._lines.get(job_id, ()))

    def job_ids(self) -> list[int]:
        return list(self._lines)

    def discard(self, job_id: int) -> None:
        self._lines.pop(job_id, None)
        self._finished.discard(job_id)

    def _evict(self) -> None:
        while len(self._lines) > self.max_jobs:
            victim = next((job_id for job_id in self._lines if job_id in self._finished), None)
            if victim is None:
                victim = next(iter(self._lines))
            self.discard(victim)


class ScanService:
    """Creates job rows, fills scan defaults and drives the orchestrator."""

    def __init__(
        self,
        *,
        repository: JobRepository,
        orchestrator: JobOrchestrator,
        settings: Settings,
        log_book: ScanLogBook | None = None,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator
        self.settings = settings
        self.log_book = log_book or ScanLogBook()

    @property
    def events(self) -> EventBus:
        return self.orchestrator.events

    async def start_vulnerability_scan(
        self,
        config: VulnerabilityScanConfig,
        *,
        preset: str | None = None,
    ) -> Job:
        """Start a scan; its matches are also written to `scan-<id>.json` when enabled."""

        if preset is not None:
            config = apply_preset(config, preset)
        validate_config(JobKind.VULNERABILITY_SCAN, config)
        job_id = await asyncio.to_thread(
            self.repository.create_job, JobKind.VULNERABILITY_SCAN, config
        )
        if self.settings.write_json_output and not config.json_output:
            results_dir = self.settings.results_dir
            results_dir.mkdir(parents=True, exist_ok=True)
            config = replace(config, json_output=str(results_dir / f"scan-{job_id}.json"))
            await asyncio.to_thread(self.repository.replace_config, job_id, config)
        return await self.orchestrator.start(job_id, config, JobKind.VULNERABILITY_SCAN)

    async def start_port_scan(self, config: PortScanConfig) -> Job:
        defaults = self.settings.defaults
        config = replace(
            config,
            ports=config.ports or DEFAULT_PORTS,
            timeout_ms=config.timeout_ms or defaults.port_timeout_ms,
            batch_size=config.batch_size or defaults.batch_size,
        )
        return await self._start(JobKind.PORT_SCAN, config)

    async def start_domain_brute(self, config: DomainBruteConfig) -> Job:
        defaults = self.settings.defaults
        config = replace(
            config,
            wordlist=config.wordlist or DEFAULT_WORDLIST,
            timeout_ms=config.timeout_ms or defaults.port_timeout_ms,
            batch_size=config.batch_size or defaults.batch_size,
        )
        return await self._start(JobKind.DOMAIN_BRUTE, config)

    def cancel_scan(self, job_id: int) -> bool:
        """Request cancellation; False when the job is not running here."""

        if not self.orchestrator.is_running(job_id):
            return False
        self.orchestrator.cancel(job_id)
        return True

    async def delete_scan(self, job_id: int) -> bool:
        """Cancel the job if it is running, then delete it with its records."""

        job = self.orchestrator.get(job_id)
        if job is not None and not job.is_terminal:
            self.orchestrator.cancel(job_id)
            await job.wait()
        self.log_book.discard(job_id)
        deleted = await asyncio.to_thread(self.repository.delete_job, job_id)
        if deleted:
            logger.info("Deleted job %s", job_id)
        return deleted

    def scan_logs(self, job_id: int) -> list[str]:
        return self.log_book.lines(job_id)

    def get_scan(self, job_id: int) -> JobView | None:
        return self.repository.get_job(job_id)

    def list_scans(
        self,
        *,
        kind: JobKind | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        return self.repository.list_jobs(kind=kind, status=status, limit=limit)

    def list_findings(self, job_id: int, *, limit: int | None = None) -> list[ResultRecord]:
        return self.repository.list_records(job_id, limit=limit)

    async def check_tool(self, kind: JobKind) -> bool:
        """True when the tool for `kind` runs and reports its version."""

        result = await self.probe_tool(kind)
        return result.ok

    async def tool_version(self, kind: JobKind) -> str | None:
        result = await self.probe_tool(kind)
        return result.version if result.ok else None

    async def probe_tool(self, kind: JobKind) -> ProbeResult:
        spec = self.orchestrator.tool_specs[kind]
        return await run_probe(
            self.orchestrator.launcher,
            executable=self.orchestrator.locator.resolve(spec.executable_name),
            args=VERSION_ARGS,
            timeout_seconds=PROBE_TIMEOUT_SECONDS,
        )

    async def update_templates(self) -> ProbeResult:
        """Refresh the vulnerability scanner's template store."""

        spec = self.orchestrator.tool_specs[JobKind.VULNERABILITY_SCAN]
        result = await run_probe(
            self.orchestrator.launcher,
            executable=self.orchestrator.locator.resolve(spec.executable_name),
            args=UPDATE_TEMPLATES_ARGS,
            timeout_seconds=UPDATE_TEMPLATES_TIMEOUT_SECONDS,
        )
        if result.ok:
            logger.info("Templates updated")
        else:
            logger.warning("Template update failed: %s", result.error)
        return result

    async def dns_records(self, domain: str, record_type: str) -> list[str]:
        """Look up `mx`, `ns` or `txt` records of `domain` with the brute-force tool.

        Raises:
            ValueError: empty domain or unsupported record type.
            ProcessError: the tool failed or could not be started.
            DecodeError: the tool's output is not a record document.
        """

        domain = domain.strip()
        record_type = record_type.strip().lower()
        if not domain:
            raise ValueError("domain must be non-empty")
        if record_type not in DNS_RECORD_TYPES:
            raise ValueError(
                f"record type must be one of {', '.join(DNS_RECORD_TYPES)}, got {record_type!r}"
            )

        spec = self.orchestrator.tool_specs[JobKind.DOMAIN_BRUTE]
        result = await run_probe(
            self.orchestrator.launcher,
            executable=self.orchestrator.locator.resolve(spec.executable_name),
            args=tuple(build_dns_records_args(domain, record_type)),
            timeout_seconds=PROBE_TIMEOUT_SECONDS,
            max_output_chars=None,
        )
        if not result.ok:
            if result.exit_code is None:
                raise ProcessError(f"DNS query failed: {result.error}", exit_code=None)
            raise ProcessError(
                f"DNS query failed with exit code {result.exit_code}: {result.stderr.strip()}",
                exit_code=result.exit_code,
            )
        records = decode_dns_records(result.stdout)
        logger.info("DNS %s lookup for %s returned %d records", record_type, domain, len(records))
        return records

    async def close(self) -> None:
        """Cancel running jobs, wait for them and release the database."""

        await self.orchestrator.shutdown()
        self.repository.close()

    async def _start(self, kind: JobKind, config: JobConfig) -> Job:
        validate_config(kind, config)
        job_id = await asyncio.to_thread(self.repository.create_job, kind, config)
        return await self.orchestrator.start(job_id, config, kind)


def build_scan_service(
    settings: Settings,
    *,
    launcher: ProcessLauncher | None = None,
) -> ScanService:
    """Wire repository, event bus and orchestrator from settings."""

    settings.validate()
    repository = JobRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    events = EventBus()
    log_book = ScanLogBook()
    events.subscribe(log_book)
    orchestrator = JobOrchestrator(
        launcher=launcher or SubprocessAdapter(),
        events=events,
        store=repository,
        locator=ToolLocator(
            search_dirs=settings.tools.search_dirs,
            overrides=settings.tools.executable_overrides,
        ),
        tool_specs=DEFAULT_TOOL_SPECS,
        grace_period_seconds=settings.cancel_grace_seconds,
    )
    return ScanService(
        repository=repository,
        orchestrator=orchestrator,
        settings=settings,
        log_book=log_book,
    )
