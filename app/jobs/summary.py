"""Human-readable job status report."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from app.jobs.models import JobRecord, JobStatus

logger = logging.getLogger(__name__)

NO_JOBS_MESSAGE = "No jobs found."


def render_summary(jobs: Iterable[JobRecord], now: datetime) -> str:
    """Group jobs into active / completed / failed sections.

    A record that cannot be rendered is reduced to its id line rather than
    aborting the whole report.
    """
    jobs = list(jobs)
    if not jobs:
        return NO_JOBS_MESSAGE

    statuses = [getattr(j, "status", None) for j in jobs]
    active = [j for j, s in zip(jobs, statuses) if s in (JobStatus.PENDING, JobStatus.RUNNING)]
    completed = [j for j, s in zip(jobs, statuses) if s == JobStatus.COMPLETED]
    failed = [j for j, s in zip(jobs, statuses) if s == JobStatus.FAILED]

    lines = ["Job Status Summary:", ""]
    _render_section(lines, "Active Jobs", active, _active_lines, now)
    _render_section(lines, "Completed Jobs", completed, _completed_lines, now)
    _render_section(lines, "Failed Jobs", failed, _failed_lines, now)
    return "\n".join(lines).strip()


def _render_section(lines: List[str], title: str, jobs: List[JobRecord], render, now: datetime) -> None:
    if not jobs:
        return
    lines.append(f"{title} ({len(jobs)}):")
    for job in jobs:
        try:
            lines.extend(render(job, now))
        except Exception as exc:
            logger.warning("Could not render job %s: %s", getattr(job, "id", "?"), exc)
            lines.append(f"  • {getattr(job, 'id', '?')}")
        lines.append("")


def _active_lines(job: JobRecord, now: datetime) -> List[str]:
    if job.status == JobStatus.PENDING:
        progress = "Queued"
    elif job.progress_percent is None:
        progress = "Starting..."
    else:
        progress = f"{job.progress_percent:.1f}%"
    lines = [f"  • {job.id} - {job.kind.value} - {progress} ({_elapsed(job.started_at, now)})"]
    if job.resolved_filename:
        lines.append(f"    File: {job.resolved_filename}")
    lines.append(f"    URL: {job.source_url}")
    return lines


def _completed_lines(job: JobRecord, now: datetime) -> List[str]:
    lines = [f"  • {job.id} - {job.kind.value} - Completed ({_elapsed(job.started_at, job.finished_at)})"]
    if job.resolved_filename:
        lines.append(f"    File: {job.resolved_filename}")
    lines.append(f"    Path: {job.expected_output_path}")
    return lines


def _failed_lines(job: JobRecord, now: datetime) -> List[str]:
    lines = [f"  • {job.id} - {job.kind.value} - Failed ({_elapsed(job.started_at, job.finished_at)})"]
    lines.append(f"    URL: {job.source_url}")
    if job.error_detail:
        lines.append(f"    Error: {job.error_detail}")
    return lines


def _elapsed(start: Optional[datetime], end: Optional[datetime]) -> str:
    if start is None or end is None:
        return "?"
    return f"{int((end - start).total_seconds())}s"
