"""Process launcher interface and asyncio subprocess implementation."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Protocol, Sequence


class OutputStream(Protocol):
    async def read(self, n: int = -1) -> bytes:
        ...


class ProcessHandle(Protocol):
    """The subset of ``asyncio.subprocess.Process`` the supervisor relies on."""

    stdout: Optional[OutputStream]
    stderr: Optional[OutputStream]
    returncode: Optional[int]

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...


class ProcessLauncher(ABC):
    """Abstract interface for starting external processes."""

    @abstractmethod
    async def launch(self, command: str, args: Sequence[str]) -> ProcessHandle:
        """Start ``command`` with ``args``. Raises OSError if it cannot be started."""
        ...


class SubprocessLauncher(ProcessLauncher):
    """Runs commands as child processes with both output streams piped."""

    async def launch(self, command: str, args: Sequence[str]) -> ProcessHandle:
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
