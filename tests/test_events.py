from __future__ import annotations

import logging

import allure
import pytest

from scan_jobs.orchestrator.events import EventBus, JobEvent, JobEventType
from scan_jobs.orchestrator.models import JobStatus
from scan_jobs.orchestrator.progress import ProgressSnapshot
from scan_jobs.storage.common import utc_now

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Event Delivery"),
]

_EMPTY_PROGRESS = ProgressSnapshot(
    percent=0.0,
    current_activity=None,
    completed_units=0,
    total_units=None,
    record_count=0,
)


def _finished(job_id: int, status: JobStatus, error: str | None = None) -> JobEvent:
    return JobEvent.finished(
        job_id,
        status=status,
        progress=_EMPTY_PROGRESS,
        finished_at=utc_now(),
        error=error,
    )


def test_finished_event_type_follows_status() -> None:
    assert _finished(1, JobStatus.COMPLETED).event_type is JobEventType.COMPLETED
    assert _finished(1, JobStatus.CANCELLED).event_type is JobEventType.COMPLETED
    failed = _finished(1, JobStatus.FAILED, "boom")
    assert failed.event_type is JobEventType.FAILED
    assert failed.error == "boom"
    assert failed.is_terminal


@pytest.mark.anyio
async def test_publish_reaches_global_and_matching_job_subscribers() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(lambda event: seen.append(f"global:{event.job_id}"))
    bus.subscribe(lambda event: seen.append(f"job1:{event.job_id}"), job_id=1)

    await bus.publish(JobEvent.started(1))
    await bus.publish(JobEvent.started(2))

    assert seen == ["global:1", "job1:1", "global:2"]


@pytest.mark.anyio
async def test_async_subscribers_are_awaited_in_order() -> None:
    bus = EventBus()
    seen: list[str] = []

    async def slow(event: JobEvent) -> None:
        seen.append(f"async:{event.event_type.value}")

    bus.subscribe(slow)
    bus.subscribe(lambda event: seen.append(f"sync:{event.event_type.value}"))

    await bus.publish(JobEvent.started(3))

    assert seen == ["async:started", "sync:started"]


@pytest.mark.anyio
async def test_failing_subscriber_is_logged_and_isolated(caplog) -> None:
    bus = EventBus()
    seen: list[JobEventType] = []

    def broken(_event: JobEvent) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(lambda event: seen.append(event.event_type))
    caplog.set_level(logging.ERROR, logger="scan_jobs.orchestrator.events")

    await bus.publish(JobEvent.started(4))

    assert seen == [JobEventType.STARTED]
    assert any(
        item.exc_info is not None and "subscriber bug" in str(item.exc_info[1])
        for item in caplog.records
    )


@pytest.mark.anyio
async def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[int] = []

    with bus.subscribe(lambda event: seen.append(event.job_id)) as subscription:
        await bus.publish(JobEvent.started(5))
        assert subscription.active

    await bus.publish(JobEvent.started(6))

    assert seen == [5]
    assert not subscription.active


@pytest.mark.anyio
async def test_job_subscriptions_end_after_terminal_event() -> None:
    bus = EventBus()
    seen: list[JobEventType] = []
    subscription = bus.subscribe(lambda event: seen.append(event.event_type), job_id=9)

    await bus.publish(JobEvent.started(9))
    await bus.publish(_finished(9, JobStatus.COMPLETED))
    await bus.publish(JobEvent.started(9))

    assert seen == [JobEventType.STARTED, JobEventType.COMPLETED]
    assert not subscription.active
    assert bus.subscriber_count(job_id=9) == 0
