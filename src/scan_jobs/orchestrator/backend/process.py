"""asyncio subprocess adapter for external scanning tools."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from scan_jobs.orchestrator.backend.base import ExitOutcome, LaunchRequest
from scan_jobs.orchestrator.errors import SpawnError

logger = logging.getLogger(__name__)

# Vulnerability matches may embed full HTTP requests and responses on one line.
STREAM_LIMIT_BYTES = 16 * 1024 * 1024
_EXIT_POLL_SECONDS = 0.05


class SubprocessHandle:
    """Owns one `asyncio.subprocess.Process` for the lifetime of a job.

    With `process_group` the tool leads its own process group, and signals go
    to the whole group, so helpers the tool started (a shell wrapper's
    background jobs, for example) stop with it and release the output pipes.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        stdin: bytes | None,
        process_group: bool = False,
    ) -> None:
        self._process = process
        self.process_group = process_group
        self._stdin_task = asyncio.create_task(_feed_stdin(process, stdin))

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        assert self._process.stderr is not None
        return self._process.stderr

    @property
    def exited(self) -> bool:
        return self._process.returncode is not None

    async def wait(self) -> ExitOutcome:
        # Process.wait() returns only once every pipe is closed, and processes
        # the tool started may hold them; the return code is set on exit.
        while self._process.returncode is None:
            await asyncio.sleep(_EXIT_POLL_SECONDS)
        if not self._stdin_task.done():
            self._stdin_task.cancel()
        await asyncio.gather(self._stdin_task, return_exceptions=True)
        return ExitOutcome.from_returncode(self._process.returncode)

    def terminate(self) -> None:
        if self.exited:
            return
        if self.process_group:
            self._signal_group(signal.SIGTERM)
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            return

    def kill(self) -> None:
        # The group may outlive its leader; kill it even after the tool exited.
        if self.process_group:
            self._signal_group(signal.SIGKILL)
        if self.exited:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            return

    def _signal_group(self, signum: int) -> None:
        try:
            os.killpg(self._process.pid, signum)
        except (ProcessLookupError, PermissionError):
            logger.debug("Process group %s is already gone", self._process.pid)


class SubprocessAdapter:
    """Launch external executables with piped stdin/stdout/stderr.

    On POSIX every tool starts in a new session so that cancel and kill reach
    the processes it spawns.
    """

    def __init__(
        self,
        *,
        stream_limit: int = STREAM_LIMIT_BYTES,
        process_group: bool | None = None,
    ) -> None:
        self.stream_limit = stream_limit
        self.process_group = os.name == "posix" if process_group is None else process_group

    async def launch(self, request: LaunchRequest) -> SubprocessHandle:
        executable = request.executable
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *request.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=request.env,
                limit=self.stream_limit,
                start_new_session=self.process_group,
            )
        except FileNotFoundError as error:
            raise SpawnError(
                f"Executable not found: {executable}",
                executable=executable,
            ) from error
        except PermissionError as error:
            raise SpawnError(
                f"Executable is not runnable: {executable}: {error.strerror or error}",
                executable=executable,
            ) from error
        except OSError as error:
            raise SpawnError(
                f"Failed to start process {executable}: {error}",
                executable=executable,
            ) from error
        logger.debug("Started %s (pid %s) with args %s", executable, process.pid, request.args)
        return SubprocessHandle(process, stdin=request.stdin, process_group=self.process_group)


async def _feed_stdin(process: asyncio.subprocess.Process, data: bytes | None) -> None:
    stdin = process.stdin
    if stdin is None:
        return
    try:
        if data:
            stdin.write(data)
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Process %s closed stdin before reading all input", process.pid)
    finally:
        stdin.close()
