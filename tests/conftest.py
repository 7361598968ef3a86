"""
Shared fixtures and fake processes for the job manager tests.

FakeProcess mimics the parts of asyncio.subprocess.Process the supervisor
uses. Each chunk fed to a FakeStream is returned by exactly one read(), so
tests control chunk boundaries precisely.
"""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from app.jobs.launcher import ProcessLauncher  # noqa: E402


class FakeStream:
    def __init__(self):
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._chunks.get()


class FakeProcess:
    def __init__(self, pid: int = 4242, ignore_terminate: bool = False):
        self.pid = pid
        self.stdout = FakeStream()
        self.stderr = FakeStream()
        self.returncode: Optional[int] = None
        self.ignore_terminate = ignore_terminate
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()

    def emit(self, stdout: str = "", stderr: str = "") -> None:
        if stdout:
            self.stdout.feed(stdout.encode())
        if stderr:
            self.stderr.feed(stderr.encode())

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.stdout.close()
        self.stderr.close()
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


Script = Callable[[FakeProcess], Awaitable[None]]


class FakeLauncher(ProcessLauncher):
    """Hands out FakeProcesses, optionally driving each with a script."""

    def __init__(
        self,
        script: Optional[Script] = None,
        error: Optional[Exception] = None,
        ignore_terminate: bool = False,
    ):
        self.script = script
        self.error = error
        self.ignore_terminate = ignore_terminate
        self.calls: List[Tuple[str, List[str]]] = []
        self.processes: List[FakeProcess] = []

    async def launch(self, command: str, args: Sequence[str]) -> FakeProcess:
        self.calls.append((command, list(args)))
        if self.error is not None:
            raise self.error
        process = FakeProcess(pid=1000 + len(self.processes), ignore_terminate=self.ignore_terminate)
        self.processes.append(process)
        if self.script is not None:
            asyncio.get_running_loop().create_task(self.script(process))
        return process


def scripted(*steps, exit_code: int = 0) -> Script:
    """Build a script from ("stdout"|"stderr", text) steps followed by an exit."""

    async def run(process: FakeProcess) -> None:
        for stream, text in steps:
            if stream == "stdout":
                process.emit(stdout=text)
            else:
                process.emit(stderr=text)
            await asyncio.sleep(0)
        process.exit(exit_code)

    return run


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def python_cmd() -> str:
    """Interpreter used to run real child processes."""
    return sys.executable
