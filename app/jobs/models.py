"""Job record data model for background media jobs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    SEARCH = "search"


class FailureKind(str, Enum):
    LAUNCH_ERROR = "launch_error"
    EXIT_ERROR = "exit_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class JobRecord(BaseModel):
    """Tracks the lifecycle of one supervised external process."""
    id: str
    source_url: str
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    progress_percent: Optional[float] = None
    resolved_filename: Optional[str] = None
    error_detail: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    exit_code: Optional[int] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    expected_output_path: str

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class DuplicateJobError(ValueError):
    """Raised when a job id is already registered."""


class InvalidTransitionError(RuntimeError):
    """Raised when a record is asked to leave a terminal state."""
