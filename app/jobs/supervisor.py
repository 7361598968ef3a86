"""Supervises one external process per job.

The supervisor is the only writer of a job's record once the job has been
registered. It launches the process, streams both output pipes through the
progress parser, and finalises the record when the process exits, fails to
start, times out or is cancelled. Every terminal transition publishes a
``completed`` or ``failed`` event.
"""

import asyncio
import codecs
import contextlib
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from app.jobs.events import EventBus, JobEvent
from app.jobs.launcher import OutputStream, ProcessHandle, ProcessLauncher
from app.jobs.models import FailureKind, utcnow
from app.jobs.progress import parse_progress
from app.jobs.store import JobStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


class OutputTail:
    """Interleaved stdout/stderr text, trimmed to the last ``limit`` characters."""

    def __init__(self, limit: int = 0):
        self._limit = limit
        self._parts: List[str] = []
        self._size = 0

    def append(self, text: str) -> None:
        self._parts.append(text)
        self._size += len(text)
        if self._limit and self._size > self._limit:
            joined = "".join(self._parts)[-self._limit:]
            self._parts = [joined]
            self._size = len(joined)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return self._size


class ProcessSupervisor:
    def __init__(
        self,
        store: JobStore,
        events: EventBus,
        launcher: ProcessLauncher,
        output_tail_chars: int = 64 * 1024,
        timeout_seconds: Optional[float] = None,
        terminate_grace_seconds: float = 5.0,
        max_concurrent: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._events = events
        self._launcher = launcher
        self._output_tail_chars = output_tail_chars
        self._timeout_seconds = timeout_seconds
        self._terminate_grace_seconds = terminate_grace_seconds
        self._slots = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None
        self._clock = clock

    async def supervise(self, job_id: str, command: str, args: Sequence[str]) -> None:
        """Run a registered job to completion. Never raises except CancelledError."""
        process: Optional[ProcessHandle] = None
        output = OutputTail(self._output_tail_chars)

        try:
            async with self._admission():
                try:
                    process = await self._launcher.launch(command, args)
                except (OSError, ValueError) as exc:
                    logger.warning("Job %s: could not start %s: %s", job_id, command, exc)
                    self.fail(job_id, FailureKind.LAUNCH_ERROR, f"Process error: {exc}")
                    return

                self._store.mark_running(job_id)
                logger.info(
                    "Job %s running (pid %s): %s",
                    job_id, getattr(process, "pid", None), command,
                )

                try:
                    returncode = await asyncio.wait_for(
                        self._collect(job_id, process, output),
                        timeout=self._timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Job %s: timed out after %ss, terminating", job_id, self._timeout_seconds
                    )
                    await self._terminate(job_id, process)
                    self.fail(
                        job_id,
                        FailureKind.TIMEOUT,
                        _with_output(f"Job timed out after {self._timeout_seconds:g}s", output),
                        exit_code=process.returncode,
                    )
                    return
        except asyncio.CancelledError:
            logger.info("Job %s: cancelled", job_id)
            if process is not None:
                await self._terminate(job_id, process)
            self.fail(
                job_id,
                FailureKind.CANCELLED,
                _with_output("Job cancelled", output),
                exit_code=process.returncode if process is not None else None,
            )
            raise
        except Exception as exc:
            logger.exception("Job %s: supervisor error", job_id)
            if process is not None:
                await self._terminate(job_id, process)
            self.fail(
                job_id,
                FailureKind.INTERNAL_ERROR,
                _with_output(f"{type(exc).__name__}: {exc}", output),
            )
            return

        self._finish(job_id, returncode, output)

    def _admission(self):
        if self._slots is None:
            return contextlib.nullcontext()
        return self._slots

    async def _collect(self, job_id: str, process: ProcessHandle, output: OutputTail) -> int:
        await asyncio.gather(
            self._pump(job_id, process.stdout, output, interpret=True),
            self._pump(job_id, process.stderr, output, interpret=False),
        )
        return await process.wait()

    async def _pump(
        self,
        job_id: str,
        stream: Optional[OutputStream],
        output: OutputTail,
        interpret: bool,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(CHUNK_SIZE)
            if not data:
                break
            self._on_output(job_id, decoder.decode(data), output, interpret)
        self._on_output(job_id, decoder.decode(b"", final=True), output, interpret)

    def _on_output(self, job_id: str, text: str, output: OutputTail, interpret: bool) -> None:
        if not text:
            return
        output.append(text)
        if not interpret:
            return

        signal = parse_progress(text)
        if not signal:
            return
        job = self._store.apply_progress(job_id, percent=signal.percent, filename=signal.filename)
        if signal.percent is not None:
            self._events.publish(JobEvent.progress(job))

    async def _terminate(self, job_id: str, process: ProcessHandle) -> None:
        """SIGTERM, then SIGKILL after the grace period."""
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._terminate_grace_seconds)
            return
        except asyncio.TimeoutError:
            logger.warning("Job %s: process ignored SIGTERM, killing", job_id)

        with contextlib.suppress(ProcessLookupError):
            process.kill()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._terminate_grace_seconds)
        except asyncio.TimeoutError:
            logger.error("Job %s: process did not exit after SIGKILL", job_id)

    def _finish(self, job_id: str, returncode: int, output: OutputTail) -> None:
        now = self._clock()
        if returncode == 0:
            job = self._store.mark_completed(job_id, now)
            logger.info(
                "Job %s completed in %.1fs",
                job_id, (now - job.started_at).total_seconds(),
            )
        else:
            if returncode < 0:
                message = f"Process terminated by signal {-returncode} (exit code {returncode})"
            else:
                message = f"Process exited with code {returncode}"
            job = self._store.mark_failed(
                job_id,
                now,
                FailureKind.EXIT_ERROR,
                _with_output(message, output),
                exit_code=returncode,
            )
            logger.warning("Job %s failed with exit code %s", job_id, returncode)
        self._events.publish(JobEvent.finished(job))

    def fail(
        self,
        job_id: str,
        kind: FailureKind,
        detail: str,
        exit_code: Optional[int] = None,
    ) -> None:
        job = self._store.mark_failed(job_id, self._clock(), kind, detail, exit_code=exit_code)
        self._events.publish(JobEvent.finished(job))


def _with_output(message: str, output: OutputTail) -> str:
    text = output.text
    return f"{message}\n{text}" if text else message
