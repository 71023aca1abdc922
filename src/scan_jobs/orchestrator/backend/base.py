"""Process adapter interface for orchestrated jobs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class LaunchRequest:
    """Inputs required to start one external process."""

    executable: str
    args: list[str]
    env: dict[str, str] | None = None
    stdin: bytes | None = None


@dataclass(frozen=True, slots=True)
class ExitOutcome:
    """Terminal outcome of a process: an exit code or a terminating signal."""

    exit_code: int | None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int | None) -> ExitOutcome:
        if returncode is not None and returncode < 0:
            return cls(exit_code=None, signal=-returncode)
        return cls(exit_code=returncode, signal=None)


class ProcessHandle(Protocol):
    """One running external process."""

    @property
    def pid(self) -> int: ...

    @property
    def stdout(self) -> asyncio.StreamReader: ...

    @property
    def stderr(self) -> asyncio.StreamReader: ...

    @property
    def exited(self) -> bool: ...

    async def wait(self) -> ExitOutcome:
        """Wait for the process to exit."""

    def terminate(self) -> None:
        """Request a graceful stop; no-op once exited."""

    def kill(self) -> None:
        """Stop unconditionally, along with processes the tool started where supported."""


class ProcessLauncher(Protocol):
    """Protocol implemented by process adapters."""

    async def launch(self, request: LaunchRequest) -> ProcessHandle:
        """Start a process or raise `SpawnError`."""
