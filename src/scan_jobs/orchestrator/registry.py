"""Registry of active jobs and their process supervision."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections import deque
from collections.abc import Awaitable, Mapping
from typing import Any

from scan_jobs.orchestrator.backend.base import (
    ExitOutcome,
    LaunchRequest,
    ProcessHandle,
    ProcessLauncher,
)
from scan_jobs.orchestrator.errors import (
    AlreadyRunningError,
    DecodeError,
    InvalidJobConfigError,
    JobNotFoundError,
    ProcessError,
    SpawnError,
)
from scan_jobs.orchestrator.events import EventBus, JobEvent
from scan_jobs.orchestrator.exit_policy import classify_exit
from scan_jobs.orchestrator.job import Job
from scan_jobs.orchestrator.models import (
    JobConfig,
    JobKind,
    JobStatus,
    JobUpdate,
    OutputProtocol,
    validate_config,
)
from scan_jobs.orchestrator.parsers import BatchParser, StreamingParser
from scan_jobs.orchestrator.progress import DEFAULT_PROGRESS_PATTERN, ProgressTracker
from scan_jobs.orchestrator.records import ResultRecord
from scan_jobs.orchestrator.store import JobStore
from scan_jobs.orchestrator.tools import DEFAULT_TOOL_SPECS, ToolLocator, ToolSpec
from scan_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)

GRACE_PERIOD_SECONDS = 5.0
OUTPUT_DRAIN_SECONDS = 1.0
_STDERR_TAIL_LINES = 20
_READ_CHUNK_BYTES = 64 * 1024


class JobOrchestrator:
    """Starts, supervises and terminates scan jobs, at most one per job id.

    `start` and `cancel` raise only for rejected requests. Anything that
    goes wrong after the process was requested ends the job `failed` and is
    reported through the event bus.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        launcher: ProcessLauncher,
        events: EventBus,
        store: JobStore | None = None,
        locator: ToolLocator | None = None,
        tool_specs: Mapping[JobKind, ToolSpec] = DEFAULT_TOOL_SPECS,
        grace_period_seconds: float = GRACE_PERIOD_SECONDS,
        progress_pattern: re.Pattern[str] = DEFAULT_PROGRESS_PATTERN,
        env: dict[str, str] | None = None,
        output_drain_seconds: float = OUTPUT_DRAIN_SECONDS,
    ) -> None:
        self.launcher = launcher
        self.events = events
        self.store = store
        self.locator = locator or ToolLocator()
        self.tool_specs = tool_specs
        self.grace_period_seconds = grace_period_seconds
        self.progress_pattern = progress_pattern
        self.env = env
        self.output_drain_seconds = output_drain_seconds
        self._active: dict[int, Job] = {}
        self._lock = threading.Lock()

    async def start(self, job_id: int, config: JobConfig, kind: JobKind) -> Job:
        """Launch the tool for `kind`; returns the job once it is running or has failed.

        Raises:
            InvalidJobConfigError: config does not match `kind` or is not runnable.
            AlreadyRunningError: a job with `job_id` is active.
        """

        validate_config(kind, config)
        spec = self.tool_specs.get(kind)
        if spec is None:
            raise InvalidJobConfigError(f"No tool registered for job kind {kind.value}")

        job = Job(
            job_id=job_id,
            kind=kind,
            config=config,
            tracker=ProgressTracker(self.progress_pattern),
        )
        # Check and insert without an await in between.
        with self._lock:
            if job_id in self._active:
                raise AlreadyRunningError(job_id)
            self._active[job_id] = job

        try:
            request = LaunchRequest(
                executable=self.locator.resolve(spec.executable_name),
                args=spec.build_args(config),
                env=self.env,
                stdin=spec.build_stdin(config),
            )
            logger.info(
                "Starting job %s (%s): %s %s",
                job_id,
                kind.value,
                request.executable,
                " ".join(request.args),
            )
            handle = await self.launcher.launch(request)
        except SpawnError as error:
            logger.error("Job %s failed to start: %s", job_id, error)
            await self._finalize(job, JobStatus.FAILED, str(error))
            return job
        except Exception as error:
            logger.exception("Job %s could not be launched", job_id)
            await self._finalize(job, JobStatus.FAILED, f"Failed to start scan: {error}")
            return job

        job.mark_running(handle, utc_now())
        await self._persist_lifecycle(
            job,
            JobUpdate(status=JobStatus.RUNNING, started_at=job.started_at),
        )
        await self.events.publish(JobEvent.started(job_id))
        job._supervisor = asyncio.create_task(
            self._supervise(job, handle, spec),
            name=f"scan-job-{job_id}",
        )
        if job.kill_requested:
            handle.kill()
        elif job.cancel_requested:
            self._request_stop(job)
        return job

    def cancel(self, job_id: int) -> None:
        """Ask the job's process to stop; escalate to a kill after the grace period.

        The terminal state is set when the exit is observed, not here.
        Cancelling a job that already reached a terminal state does nothing.
        """

        job = self._require_active(job_id)
        if job.is_terminal:
            return
        job.cancel_requested = True
        if job._handle is None:
            return
        self._request_stop(job)

    def force_kill(self, job_id: int) -> None:
        """Stop the job's process unconditionally."""

        job = self._require_active(job_id)
        if job.is_terminal:
            return
        job.kill_requested = True
        if job._handle is None:
            return
        logger.warning("Force-killing job %s", job_id)
        job._handle.kill()

    def is_running(self, job_id: int) -> bool:
        with self._lock:
            job = self._active.get(job_id)
        return job is not None and not job.is_terminal

    def list_running(self) -> list[int]:
        with self._lock:
            jobs = list(self._active.values())
        return sorted(job.job_id for job in jobs if not job.is_terminal)

    def get(self, job_id: int) -> Job | None:
        with self._lock:
            return self._active.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every active job and wait for all terminal events."""

        with self._lock:
            jobs = list(self._active.values())
        for job in jobs:
            if job.is_terminal:
                continue
            job.cancel_requested = True
            if job._handle is not None:
                self._request_stop(job)
        await asyncio.gather(*(job.wait() for job in jobs))

    def _require_active(self, job_id: int) -> Job:
        with self._lock:
            job = self._active.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _request_stop(self, job: Job) -> None:
        assert job._handle is not None
        logger.info("Cancelling job %s", job.job_id)
        job._handle.terminate()
        if job._grace_timer is None:
            job._grace_timer = asyncio.get_running_loop().create_task(
                self._kill_after_grace(job),
                name=f"scan-job-{job.job_id}-grace",
            )

    async def _kill_after_grace(self, job: Job) -> None:
        await asyncio.sleep(self.grace_period_seconds)
        handle = job._handle
        if handle is None or handle.exited or job.is_terminal:
            return
        logger.warning(
            "Job %s did not exit within %.1fs of cancel, killing",
            job.job_id,
            self.grace_period_seconds,
        )
        job.kill_requested = True
        handle.kill()

    async def _supervise(self, job: Job, handle: ProcessHandle, spec: ToolSpec) -> None:
        stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        status = JobStatus.FAILED
        error: str | None = None
        batch: BatchParser | None = None
        if spec.protocol is OutputProtocol.STREAMING:
            readers = _gather_readers(
                self._consume_stream(job, handle.stdout),
                self._consume_stderr(job, handle.stderr, stderr_tail, track_progress=True),
            )
        else:
            batch = BatchParser(job.kind, job_id=job.job_id)
            readers = _gather_readers(
                _read_all(handle.stdout, batch),
                self._consume_stderr(job, handle.stderr, stderr_tail, track_progress=False),
            )
        output = asyncio.ensure_future(readers)
        try:
            outcome = await self._wait_for_exit(job, handle, output)
            job.exit_outcome = outcome
            classification = classify_exit(outcome, stderr_tail="\n".join(stderr_tail))
            status, error = classification.status, classification.error_message
            logger.info(
                "Job %s process exited: code=%s signal=%s rule=%s",
                job.job_id,
                outcome.exit_code,
                outcome.signal,
                classification.matched_rule,
            )
            if batch is not None:
                if status is JobStatus.COMPLETED:
                    await self._emit_batch(job, batch.finish())
                elif status is JobStatus.FAILED:
                    reported = batch.reported_error()
                    if reported:
                        error = f"{error}: {reported}"
        except DecodeError as exc:
            logger.error(
                "Job %s output could not be decoded (%d chars):\n%s",
                job.job_id,
                len(exc.raw),
                exc.raw,
            )
            status, error = JobStatus.FAILED, str(exc)
        except ProcessError as exc:
            logger.error("Job %s output rejected: %s", job.job_id, exc)
            status, error = JobStatus.FAILED, str(exc)
        except asyncio.CancelledError:
            handle.kill()
            await _cancel_task(output)
            await self._finalize(job, JobStatus.CANCELLED, None)
            raise
        except Exception as exc:
            logger.exception("Job %s output processing failed", job.job_id)
            status, error = JobStatus.FAILED, f"Output processing failed: {exc}"
        finally:
            if job._grace_timer is not None:
                job._grace_timer.cancel()

        await _cancel_task(output)
        if not handle.exited:
            handle.kill()
            job.exit_outcome = await handle.wait()
        await self._finalize(job, status, error)

    async def _wait_for_exit(
        self,
        job: Job,
        handle: ProcessHandle,
        output: asyncio.Future[None],
    ) -> ExitOutcome:
        """Wait for the process, then give its output a bounded time to drain.

        Processes the tool started may inherit the pipes and keep them open
        after the tool itself is gone, so end-of-output alone never decides
        when a job ends.
        """

        exit_wait = asyncio.ensure_future(handle.wait())
        try:
            await asyncio.wait({output, exit_wait}, return_when=asyncio.FIRST_COMPLETED)
            if output.done():
                output.result()
            outcome = await exit_wait
        finally:
            await _cancel_task(exit_wait)

        try:
            await asyncio.wait_for(asyncio.shield(output), timeout=self.output_drain_seconds)
        except TimeoutError:
            logger.warning(
                "Job %s: output still open %.1fs after the tool exited, closing it",
                job.job_id,
                self.output_drain_seconds,
            )
            handle.kill()
            await _cancel_task(output)
        return outcome

    async def _consume_stream(self, job: Job, stream: asyncio.StreamReader) -> None:
        parser = StreamingParser(job.kind, job_id=job.job_id)
        async for line in _iter_lines(stream, job_id=job.job_id, label="stdout"):
            record = parser.feed_line(line)
            if record is None:
                continue
            job.tracker.observe_record(record)
            if self.store is not None:
                await asyncio.to_thread(self.store.create_record, job.job_id, record)
            await self.events.publish(JobEvent.record_found(job.job_id, record))
            await self._publish_progress(job)

    async def _consume_stderr(
        self,
        job: Job,
        stream: asyncio.StreamReader,
        tail: deque[str],
        *,
        track_progress: bool,
    ) -> None:
        async for raw in _iter_lines(stream, job_id=job.job_id, label="stderr"):
            text = raw.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            tail.append(text)
            logger.debug("Job %s stderr: %s", job.job_id, text)
            if track_progress and job.tracker.observe_stderr(text):
                await self._publish_progress(job)

    async def _emit_batch(self, job: Job, records: list[ResultRecord]) -> None:
        if self.store is not None:
            await asyncio.to_thread(self.store.create_records_batch, job.job_id, records)
        for record in records:
            job.tracker.observe_record(record)
            await self.events.publish(JobEvent.record_found(job.job_id, record))
        await self._publish_progress(job)

    async def _publish_progress(self, job: Job) -> None:
        snapshot = job.tracker.snapshot()
        if self.store is not None:
            await asyncio.to_thread(
                self.store.update_job,
                job.job_id,
                JobUpdate(
                    progress=snapshot.percent,
                    current_activity=snapshot.current_activity,
                    completed_units=snapshot.completed_units,
                    total_units=snapshot.total_units,
                    record_count=snapshot.record_count,
                ),
            )
        await self.events.publish(JobEvent.progress_updated(job.job_id, snapshot))

    async def _finalize(self, job: Job, status: JobStatus, error: str | None) -> None:
        finished_at = utc_now()
        if not job.finish(status, error=error, finished_at=finished_at):
            return
        logger.info(
            "Job %s finished: %s%s",
            job.job_id,
            status.value,
            f" ({error})" if error else "",
        )
        snapshot = job.tracker.snapshot()
        await self._persist_lifecycle(
            job,
            JobUpdate(
                status=status,
                finished_at=finished_at,
                error_message=error,
                progress=snapshot.percent,
                completed_units=snapshot.completed_units,
                total_units=snapshot.total_units,
                record_count=snapshot.record_count,
            ),
        )
        try:
            await self.events.publish(
                JobEvent.finished(
                    job.job_id,
                    status=status,
                    progress=snapshot,
                    finished_at=finished_at,
                    error=error,
                ),
            )
        finally:
            with self._lock:
                if self._active.get(job.job_id) is job:
                    del self._active[job.job_id]
            job._done.set()

    async def _persist_lifecycle(self, job: Job, update: JobUpdate) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.update_job, job.job_id, update)
        except Exception:
            logger.exception("Job %s: failed to persist %s state", job.job_id, update.status)


async def _cancel_task(task: asyncio.Future[Any]) -> None:
    if task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def _gather_readers(*readers: Awaitable[None]) -> None:
    """Run stream readers together; if one fails, cancel the rest and re-raise."""

    tasks = [asyncio.ensure_future(reader) for reader in readers]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _iter_lines(stream: asyncio.StreamReader, *, job_id: int, label: str):
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            logger.warning("Job %s: dropping oversized %s line", job_id, label)
            continue
        if not line:
            return
        yield line


async def _read_all(stream: asyncio.StreamReader, parser: BatchParser) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        parser.feed(chunk)
