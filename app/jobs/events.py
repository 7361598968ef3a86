"""Job lifecycle notifications.

Subscribers either register a callback or take a per-subscriber asyncio queue.
Callbacks run synchronously, in registration order, on the event loop thread;
a callback that raises is logged and skipped so the others still get the event.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel

from app.jobs.models import JobRecord, JobStatus

logger = logging.getLogger(__name__)


class JobEventType(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


class JobEvent(BaseModel):
    type: JobEventType
    job_id: str
    percent: Optional[float] = None
    filename: Optional[str] = None
    job: Optional[JobRecord] = None  # snapshot, set for completed/failed

    @classmethod
    def progress(cls, job: JobRecord) -> "JobEvent":
        return cls(
            type=JobEventType.PROGRESS,
            job_id=job.id,
            percent=job.progress_percent,
            filename=job.resolved_filename,
        )

    @classmethod
    def finished(cls, job: JobRecord) -> "JobEvent":
        event_type = (
            JobEventType.COMPLETED if job.status == JobStatus.COMPLETED else JobEventType.FAILED
        )
        return cls(type=event_type, job_id=job.id, job=job.model_copy(deep=True))


EventCallback = Callable[[JobEvent], None]


class EventBus:
    def __init__(self):
        self._callbacks: List[EventCallback] = []
        self._queues: List[asyncio.Queue] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 0) -> "asyncio.Queue[JobEvent]":
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._queues)

    def publish(self, event: JobEvent) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Subscriber %r failed on %s event for job %s",
                    callback, event.type.value, event.job_id,
                )

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping %s event for job %s: subscriber queue full",
                    event.type.value, event.job_id,
                )
