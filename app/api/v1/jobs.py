"""Job management API: start downloads, poll status, cancel and prune."""

import os
from datetime import timedelta
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from typing import List, Optional

from app.config import settings
from app.jobs.manager import JobManager
from app.jobs.models import DuplicateJobError, JobKind, JobRecord

router = APIRouter()

# Set by main.py during lifespan
_manager: Optional[JobManager] = None


def set_manager(manager: Optional[JobManager]):
    global _manager
    _manager = manager


def current_manager() -> Optional[JobManager]:
    return _manager


def _require_manager() -> JobManager:
    if _manager is None:
        raise HTTPException(status_code=503, detail="Job manager not initialized")
    return _manager


class JobStartRequest(BaseModel):
    url: str
    kind: JobKind = JobKind.VIDEO
    args: List[str] = Field(default_factory=list)
    expected_output_path: str = ""
    job_id: Optional[str] = None


class JobStartResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobListResponse(BaseModel):
    jobs: List[JobRecord]
    count: int


@router.post("/jobs", response_model=JobStartResponse, status_code=202)
async def start_job(request: JobStartRequest):
    """Start a background download; the URL is appended to ``args``."""
    manager = _require_manager()

    job_id = request.job_id or manager.generate_id()
    expected_output_path = request.expected_output_path or os.path.expanduser(settings.downloads_dir)
    try:
        manager.start_job(
            job_id,
            request.url,
            request.kind,
            settings.downloader_command,
            [*request.args, request.url],
            expected_output_path,
        )
    except DuplicateJobError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return JobStartResponse(
        job_id=job_id,
        status="pending",
        message="Job started in background. Poll GET /api/v1/jobs/{id} for status.",
    )


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs():
    jobs = _require_manager().list_jobs()
    return JobListResponse(jobs=jobs, count=len(jobs))


@router.get("/jobs/active", response_model=JobListResponse)
async def list_active_jobs():
    jobs = _require_manager().list_active()
    return JobListResponse(jobs=jobs, count=len(jobs))


@router.get("/jobs/summary", response_class=PlainTextResponse)
async def job_summary():
    """Plain-text report of active, completed and failed jobs."""
    return _require_manager().summarize()


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job_status(job_id: str):
    job = _require_manager().get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs/{job_id}/cancel", status_code=202)
async def cancel_job(job_id: str):
    manager = _require_manager()
    job = manager.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if not manager.cancel_job(job_id):
        raise HTTPException(status_code=409, detail=f"Job already {job.status.value}")
    return {"job_id": job_id, "message": "Cancellation requested"}


@router.delete("/jobs")
async def prune_jobs(older_than_hours: Optional[float] = Query(default=None, ge=0)):
    """Remove finished jobs older than the given age (defaults to the result TTL)."""
    manager = _require_manager()
    hours = settings.job_result_ttl_hours if older_than_hours is None else older_than_hours
    removed = manager.prune_older_than(timedelta(hours=hours))
    return {"removed": removed}
