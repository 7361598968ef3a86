"""In-memory job store.

Holds every known JobRecord plus the active-set index. All state transitions
go through the ``mark_*`` methods so the record invariants hold in one place:

- ``finished_at`` is set exactly when the status is terminal
- a job is in the active set exactly while it is pending or running
- nothing leaves a terminal state

Each method runs without awaiting, so on a single event loop writes to a
record are never interleaved. The store is not thread-safe.
"""

from datetime import datetime
from typing import Dict, List, Optional

from app.jobs.models import (
    DuplicateJobError,
    FailureKind,
    InvalidTransitionError,
    JobRecord,
    JobStatus,
)


class JobStore:
    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._active: Dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def add(self, job: JobRecord) -> None:
        if job.id in self._jobs:
            raise DuplicateJobError(f"Job '{job.id}' already exists")
        self._jobs[job.id] = job
        self._active[job.id] = None

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def all(self) -> List[JobRecord]:
        return list(self._jobs.values())

    def active(self) -> List[JobRecord]:
        return [self._jobs[job_id] for job_id in self._active]

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    # -- transitions -------------------------------------------------------

    def mark_running(self, job_id: str) -> JobRecord:
        job = self._require(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(
                f"Job '{job_id}' cannot start from {job.status.value}"
            )
        job.status = JobStatus.RUNNING
        return job

    def apply_progress(
        self,
        job_id: str,
        percent: Optional[float] = None,
        filename: Optional[str] = None,
    ) -> JobRecord:
        job = self._require(job_id)
        if job.status != JobStatus.RUNNING:
            raise InvalidTransitionError(
                f"Job '{job_id}' is {job.status.value}, not running"
            )
        if percent is not None:
            job.progress_percent = percent
        if filename is not None:
            job.resolved_filename = filename
        return job

    def mark_completed(self, job_id: str, finished_at: datetime) -> JobRecord:
        job = self._require(job_id)
        if job.status != JobStatus.RUNNING:
            raise InvalidTransitionError(
                f"Job '{job_id}' cannot complete from {job.status.value}"
            )
        job.status = JobStatus.COMPLETED
        job.progress_percent = 100.0
        job.exit_code = 0
        job.finished_at = finished_at
        self._active.pop(job_id, None)
        return job

    def mark_failed(
        self,
        job_id: str,
        finished_at: datetime,
        kind: FailureKind,
        detail: str,
        exit_code: Optional[int] = None,
    ) -> JobRecord:
        job = self._require(job_id)
        if job.is_terminal:
            raise InvalidTransitionError(
                f"Job '{job_id}' already finished as {job.status.value}"
            )
        job.status = JobStatus.FAILED
        job.failure_kind = kind
        job.error_detail = detail
        job.exit_code = exit_code
        job.finished_at = finished_at
        self._active.pop(job_id, None)
        return job

    # -- retention ---------------------------------------------------------

    def prune_finished_before(self, cutoff: datetime) -> List[str]:
        """Delete terminal records that finished before ``cutoff``."""
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal
            and job.finished_at is not None
            and job.finished_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return expired

    def _require(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job
