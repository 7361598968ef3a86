"""Background job manager.

One instance is created at service startup and passed to whichever layer
needs it. ``start_job`` registers the record and hands the process off to a
supervising asyncio task without waiting for it; everything after that is
observed through ``get_job``/``list_jobs`` or the event bus.
"""

import asyncio
import contextlib
import functools
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from app.config import Settings
from app.jobs.events import EventBus, EventCallback, JobEvent
from app.jobs.launcher import ProcessLauncher, SubprocessLauncher
from app.jobs.models import FailureKind, JobKind, JobRecord, JobStatus, utcnow
from app.jobs.store import JobStore
from app.jobs.summary import render_summary
from app.jobs.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class JobManager:
    def __init__(
        self,
        launcher: Optional[ProcessLauncher] = None,
        result_ttl: timedelta = timedelta(hours=24),
        sweep_interval_seconds: float = 600,
        output_tail_chars: int = 64 * 1024,
        timeout_seconds: Optional[float] = None,
        terminate_grace_seconds: float = 5.0,
        max_concurrent: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = JobStore()
        self._events = EventBus()
        self._clock = clock
        self._supervisor = ProcessSupervisor(
            self._store,
            self._events,
            launcher or SubprocessLauncher(),
            output_tail_chars=output_tail_chars,
            timeout_seconds=timeout_seconds,
            terminate_grace_seconds=terminate_grace_seconds,
            max_concurrent=max_concurrent,
            clock=clock,
        )
        self._result_ttl = result_ttl
        self._sweep_interval_seconds = sweep_interval_seconds
        self._tasks: Dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, launcher: Optional[ProcessLauncher] = None
    ) -> "JobManager":
        return cls(
            launcher=launcher,
            result_ttl=timedelta(hours=settings.job_result_ttl_hours),
            sweep_interval_seconds=settings.job_sweep_interval_seconds,
            output_tail_chars=settings.job_output_tail_chars,
            timeout_seconds=settings.job_timeout_seconds,
            terminate_grace_seconds=settings.job_terminate_grace_seconds,
            max_concurrent=settings.max_concurrent_jobs,
        )

    @property
    def events(self) -> EventBus:
        return self._events

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic retention sweep."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="job-sweeper")

    async def stop(self) -> None:
        """Stop the sweep and cancel every job that is still running."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        tasks = list(self._tasks.values())
        if tasks:
            logger.info("Cancelling %d running job(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_seconds)
            try:
                self.prune_older_than(self._result_ttl)
            except Exception:
                logger.exception("Job retention sweep failed")

    # -- jobs --------------------------------------------------------------

    def generate_id(self) -> str:
        """Time-ordered prefix plus a random suffix."""
        return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def start_job(
        self,
        job_id: str,
        url: str,
        kind: JobKind,
        command: str,
        args: Sequence[str],
        expected_output_path: str,
    ) -> str:
        """Register a job and launch its process in the background.

        Returns as soon as the record exists; launch and runtime failures are
        recorded on the job, never raised here. Raises DuplicateJobError if
        ``job_id`` is already known.
        """
        loop = asyncio.get_running_loop()
        job = JobRecord(
            id=job_id,
            source_url=url,
            kind=JobKind(kind),
            started_at=self._clock(),
            expected_output_path=expected_output_path,
        )
        self._store.add(job)

        task = loop.create_task(
            self._supervisor.supervise(job_id, command, list(args)),
            name=f"job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(functools.partial(self._on_task_done, job_id))
        logger.info("Job %s queued (%s): %s", job_id, job.kind.value, url)
        return job_id

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        exc = None if task.cancelled() else task.exception()
        if exc is not None:
            logger.error("Job %s supervisor exited unexpectedly", job_id, exc_info=exc)
        if not self._store.is_active(job_id):
            return
        # The supervisor never got to finalise the record, e.g. it was
        # cancelled before its first step.
        if task.cancelled():
            self._supervisor.fail(job_id, FailureKind.CANCELLED, "Job cancelled")
        else:
            self._supervisor.fail(
                job_id,
                FailureKind.INTERNAL_ERROR,
                f"{type(exc).__name__}: {exc}" if exc else "Supervisor exited without a result",
            )

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation. False if the job is unknown or already finished."""
        task = self._tasks.get(job_id)
        if task is None or task.done() or not self._store.is_active(job_id):
            return False
        logger.info("Cancelling job %s", job_id)
        task.cancel()
        return True

    async def wait(self, job_id: str) -> Optional[JobRecord]:
        """Wait for a job's supervisor to finish and return the final record."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        job = self._store.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def list_jobs(self) -> List[JobRecord]:
        return [job.model_copy(deep=True) for job in self._store.all()]

    def list_active(self) -> List[JobRecord]:
        return [job.model_copy(deep=True) for job in self._store.active()]

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._store.all():
            counts[job.status.value] += 1
        return counts

    def summarize(self) -> str:
        return render_summary(self._store.all(), self._clock())

    def prune_older_than(self, max_age: timedelta) -> int:
        """Drop finished jobs older than ``max_age``. Active jobs are never touched."""
        removed = self._store.prune_finished_before(self._clock() - max_age)
        if removed:
            logger.info("Pruned %d finished job(s)", len(removed))
        return len(removed)

    # -- notifications -----------------------------------------------------

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        return self._events.subscribe(callback)

    def subscribe_queue(self, maxsize: int = 0) -> "asyncio.Queue[JobEvent]":
        return self._events.subscribe_queue(maxsize)

    def unsubscribe_queue(self, queue: asyncio.Queue) -> None:
        self._events.unsubscribe_queue(queue)
