"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from scan_jobs.orchestrator.events import EventBus, JobEvent, JobEventType
from scan_jobs.orchestrator.models import JobConfig, JobKind, OutputProtocol
from scan_jobs.orchestrator.tools import ToolSpec
from scan_jobs.storage.repository import JobRepository

ECHO_TOOL_MODULE = "scan_jobs.orchestrator.backend.echo_tool"


def echo_tool_spec(
    kind: JobKind,
    protocol: OutputProtocol,
    args: list[str],
    *,
    build_stdin: Callable[[JobConfig], bytes | None] | None = None,
) -> ToolSpec:
    """ToolSpec that runs the echo tool with fixed arguments instead of a real scanner."""

    return ToolSpec(
        kind=kind,
        executable_name=sys.executable,
        protocol=protocol,
        build_args=lambda _config: ["-m", ECHO_TOOL_MODULE, *args],
        build_stdin=build_stdin or (lambda _config: None),
    )


class EventRecorder:
    """Event bus subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[JobEvent] = []

    def __call__(self, event: JobEvent) -> None:
        self.events.append(event)

    def types(self, job_id: int | None = None) -> list[JobEventType]:
        return [
            event.event_type
            for event in self.events
            if job_id is None or event.job_id == job_id
        ]

    def of_type(self, event_type: JobEventType, job_id: int | None = None) -> list[JobEvent]:
        return [
            event
            for event in self.events
            if event.event_type is event_type and (job_id is None or event.job_id == job_id)
        ]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def repository(tmp_path: Path):
    repo = JobRepository(tmp_path / "scan_jobs.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def events() -> EventBus:
    return EventBus()


@pytest.fixture()
def recorder(events: EventBus) -> EventRecorder:
    recorder = EventRecorder()
    events.subscribe(recorder)
    return recorder
