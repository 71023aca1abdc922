"""One-shot tool invocations outside the job lifecycle.

Version checks, template updates and DNS record queries run here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from scan_jobs.orchestrator.backend.base import LaunchRequest, ProcessLauncher
from scan_jobs.orchestrator.errors import SpawnError

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


@dataclass(slots=True)
class ProbeResult:
    """Outcome of one probe run."""

    executable: str
    ok: bool
    exit_code: int | None
    stdout: str
    stderr: str
    error: str | None = None

    @property
    def version(self) -> str | None:
        """First non-empty output line; many tools print their banner on stderr."""

        for text in (self.stdout, self.stderr):
            for line in text.splitlines():
                if line.strip():
                    return line.strip()
        return None


async def run_probe(
    launcher: ProcessLauncher,
    *,
    executable: str,
    args: tuple[str, ...],
    timeout_seconds: float,
    max_output_chars: int | None = _PREVIEW_CHARS,
) -> ProbeResult:
    """Run `executable args`, collect its output and report exit 0 as success.

    Stdout is cut to `max_output_chars` unless that is None; stderr is always
    a short preview.
    """

    try:
        handle = await launcher.launch(LaunchRequest(executable=executable, args=list(args)))
    except SpawnError as error:
        return ProbeResult(
            executable=executable,
            ok=False,
            exit_code=None,
            stdout="",
            stderr="",
            error=str(error),
        )

    try:
        stdout, stderr = await asyncio.wait_for(
            asyncio.gather(handle.stdout.read(), handle.stderr.read()),
            timeout=timeout_seconds,
        )
        outcome = await asyncio.wait_for(handle.wait(), timeout=timeout_seconds)
    except TimeoutError:
        logger.warning(
            "Probe %s %s timed out after %ss",
            executable,
            " ".join(args),
            timeout_seconds,
        )
        handle.kill()
        await handle.wait()
        return ProbeResult(
            executable=executable,
            ok=False,
            exit_code=None,
            stdout="",
            stderr="",
            error=f"Timed out after {timeout_seconds}s",
        )

    stdout_text = stdout.decode("utf-8", errors="replace")
    if max_output_chars is not None:
        stdout_text = stdout_text[:max_output_chars]
    stderr_text = stderr.decode("utf-8", errors="replace")[:_PREVIEW_CHARS]
    ok = outcome.exit_code == 0
    return ProbeResult(
        executable=executable,
        ok=ok,
        exit_code=outcome.exit_code,
        stdout=stdout_text,
        stderr=stderr_text,
        error=None if ok else f"Exited with code {outcome.exit_code}",
    )
