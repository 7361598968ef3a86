"""
End-to-end tests running real child processes through SubprocessLauncher.

The child is the current Python interpreter, so no download tool is needed.
"""

import sys

import pytest

from app.jobs.events import JobEventType
from app.jobs.manager import JobManager
from app.jobs.models import FailureKind, JobKind, JobStatus

from conftest import wait_until

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal semantics")


def _run_python(manager: JobManager, code: str, job_id: str = "job_1") -> str:
    return manager.start_job(
        job_id,
        "https://example.com/watch?v=abc",
        JobKind.VIDEO,
        sys.executable,
        ["-c", code],
        "/tmp/downloads",
    )


@pytest.mark.asyncio
async def test_successful_process_reports_progress_and_completes() -> None:
    manager = JobManager()
    events = []
    manager.subscribe(events.append)
    code = (
        "import time\n"
        "print('[download] Destination: /tmp/downloads/movie.mp4', flush=True)\n"
        "for p in ('10.0', '55.0', '100'):\n"
        "    print(f'[download]  {p}% of 1.00MiB', flush=True)\n"
        "    time.sleep(0.05)\n"
    )

    job = await manager.wait(_run_python(manager, code))

    assert job.status == JobStatus.COMPLETED
    assert job.progress_percent == 100.0
    assert job.resolved_filename == "movie.mp4"
    percents = [e.percent for e in events if e.type == JobEventType.PROGRESS]
    assert percents and percents == sorted(percents)
    assert set(percents) <= {10.0, 55.0, 100.0}
    assert events[-1].type == JobEventType.COMPLETED


@pytest.mark.asyncio
async def test_failing_process_records_exit_code_and_stderr() -> None:
    manager = JobManager()
    code = "import sys; sys.stderr.write('ERROR: no such host\\n'); sys.exit(1)"

    job = await manager.wait(_run_python(manager, code))

    assert job.status == JobStatus.FAILED
    assert job.failure_kind == FailureKind.EXIT_ERROR
    assert job.exit_code == 1
    assert "exited with code 1" in job.error_detail
    assert "no such host" in job.error_detail
    assert job.finished_at is not None


@pytest.mark.asyncio
async def test_missing_executable_is_a_launch_error() -> None:
    manager = JobManager()
    manager.start_job(
        "job_1",
        "https://example.com/a",
        JobKind.AUDIO,
        "/nonexistent/bin/yt-dlp",
        ["https://example.com/a"],
        "/tmp/downloads",
    )

    job = await manager.wait("job_1")

    assert job.status == JobStatus.FAILED
    assert job.failure_kind == FailureKind.LAUNCH_ERROR
    assert job.error_detail.startswith("Process error:")
    assert job.exit_code is None


@pytest.mark.asyncio
async def test_bad_arguments_are_a_launch_error() -> None:
    manager = JobManager()
    manager.start_job("job_1", "u", JobKind.SEARCH, "yt\x00dlp", [], "/tmp")

    job = await manager.wait("job_1")

    assert job.failure_kind == FailureKind.LAUNCH_ERROR


@pytest.mark.asyncio
async def test_cancel_terminates_real_process() -> None:
    manager = JobManager(terminate_grace_seconds=2.0)
    _run_python(manager, "import time\nprint('started', flush=True)\ntime.sleep(30)")

    await wait_until(lambda: manager.get_job("job_1").status == JobStatus.RUNNING)
    assert manager.cancel_job("job_1")
    job = await manager.wait("job_1")

    assert job.status == JobStatus.FAILED
    assert job.failure_kind == FailureKind.CANCELLED
    assert job.exit_code is not None and job.exit_code != 0


@pytest.mark.asyncio
async def test_timeout_terminates_real_process() -> None:
    manager = JobManager(timeout_seconds=0.3, terminate_grace_seconds=2.0)

    job = await manager.wait(_run_python(manager, "import time; time.sleep(30)"))

    assert job.status == JobStatus.FAILED
    assert job.failure_kind == FailureKind.TIMEOUT
    assert "timed out after 0.3s" in job.error_detail
