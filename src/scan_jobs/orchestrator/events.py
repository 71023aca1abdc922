"""Job events and their publish/subscribe fan-out."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from itertools import count

from scan_jobs.orchestrator.models import JobStatus
from scan_jobs.orchestrator.progress import ProgressSnapshot
from scan_jobs.orchestrator.records import ResultRecord
from scan_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)


class JobEventType(str, Enum):
    STARTED = "started"
    PROGRESS_UPDATED = "progress-updated"
    RECORD_FOUND = "record-found"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class JobEvent:
    """One lifecycle event, always tagged with the job id.

    `completed` carries the final status, which is `completed` or
    `cancelled`; `failed` also carries the error message.
    """

    event_type: JobEventType
    job_id: int
    occurred_at: datetime
    progress: ProgressSnapshot | None = None
    record: ResultRecord | None = None
    status: JobStatus | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.event_type in (JobEventType.COMPLETED, JobEventType.FAILED)

    @classmethod
    def started(cls, job_id: int) -> JobEvent:
        return cls(event_type=JobEventType.STARTED, job_id=job_id, occurred_at=utc_now())

    @classmethod
    def progress_updated(cls, job_id: int, progress: ProgressSnapshot) -> JobEvent:
        return cls(
            event_type=JobEventType.PROGRESS_UPDATED,
            job_id=job_id,
            occurred_at=utc_now(),
            progress=progress,
        )

    @classmethod
    def record_found(cls, job_id: int, record: ResultRecord) -> JobEvent:
        return cls(
            event_type=JobEventType.RECORD_FOUND,
            job_id=job_id,
            occurred_at=utc_now(),
            record=record,
        )

    @classmethod
    def finished(
        cls,
        job_id: int,
        *,
        status: JobStatus,
        progress: ProgressSnapshot,
        finished_at: datetime,
        error: str | None = None,
    ) -> JobEvent:
        return cls(
            event_type=(
                JobEventType.FAILED if status is JobStatus.FAILED else JobEventType.COMPLETED
            ),
            job_id=job_id,
            occurred_at=finished_at,
            progress=progress,
            status=status,
            error=error,
        )


Subscriber = Callable[[JobEvent], None] | Callable[[JobEvent], Awaitable[None]]


class Subscription:
    """Registration handle; `close()` (or leaving the `with` block) unsubscribes."""

    def __init__(self, bus: EventBus, key: int, job_id: int | None) -> None:
        self._bus = bus
        self._key = key
        self.job_id = job_id

    @property
    def active(self) -> bool:
        return self._key in self._bus._subscribers

    def close(self) -> None:
        self._bus._subscribers.pop(self._key, None)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()


class EventBus:
    """Deliver job events to global and per-job subscribers in registration order.

    Subscribers are awaited one after another, so events of one job reach
    every subscriber in the order they were published. A failing subscriber
    is logged and never affects the publisher or other subscribers.
    Per-job subscriptions end after that job's terminal event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[int, tuple[int | None, Subscriber]] = {}
        self._keys = count()

    def subscribe(self, callback: Subscriber, *, job_id: int | None = None) -> Subscription:
        key = next(self._keys)
        self._subscribers[key] = (job_id, callback)
        return Subscription(self, key, job_id)

    def subscriber_count(self, *, job_id: int | None = None) -> int:
        return sum(1 for scope, _ in self._subscribers.values() if scope == job_id)

    async def publish(self, event: JobEvent) -> None:
        targets = [
            (key, callback)
            for key, (scope, callback) in list(self._subscribers.items())
            if scope is None or scope == event.job_id
        ]
        for _key, callback in targets:
            await self._invoke(callback, event)

        if event.is_terminal:
            for key, (scope, _callback) in list(self._subscribers.items()):
                if scope == event.job_id:
                    self._subscribers.pop(key, None)

    async def _invoke(self, callback: Subscriber, event: JobEvent) -> None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            name = getattr(callback, "__qualname__", repr(callback))
            logger.exception(
                "Event subscriber %s failed on %s for job %s",
                name,
                event.event_type.value,
                event.job_id,
            )
