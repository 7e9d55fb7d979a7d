"""Thin wrapper around the OS process running the server JVM."""
from __future__ import annotations

import asyncio
import logging
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import IO, Protocol

LOGGER = logging.getLogger(__name__)

EXIT_POLL_INTERVAL = 0.05


class ProcessLaunchError(RuntimeError):
    """Raised when the OS refuses to spawn the server process."""


class ProcessHandle(Protocol):
    """Primitives the supervisor needs from a running process."""

    @property
    def pid(self) -> int: ...

    @property
    def has_exited(self) -> bool: ...

    @property
    def returncode(self) -> int | None: ...

    def kill(self) -> None: ...

    async def wait(self, timeout: float) -> bool: ...

    def wait_blocking(self, timeout: float) -> bool: ...

    def release(self) -> None: ...


class ServerProcess:
    """A spawned server process backed by :class:`subprocess.Popen`."""

    def __init__(self, popen: subprocess.Popen[bytes], output: IO[bytes] | None = None) -> None:
        """Wrap an already started *popen*."""
        self._popen = popen
        self._output = output

    @classmethod
    def spawn(
        cls,
        executable: str,
        arguments: Sequence[str],
        *,
        cwd: Path | None = None,
        output: Path | None = None,
    ) -> ServerProcess:
        """Start *executable* with *arguments*.

        Console output goes to *output* (appended) when given, otherwise it is
        inherited from the caller.
        """
        handle: IO[bytes] | None = None
        try:
            if output is not None:
                output.parent.mkdir(parents=True, exist_ok=True)
                handle = output.open("ab")
            popen = subprocess.Popen(  # noqa: S603 - argument vector, no shell
                [executable, *arguments],
                cwd=str(cwd) if cwd is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=handle,
                stderr=subprocess.STDOUT if handle is not None else None,
            )
        except OSError as exc:
            if handle is not None:
                handle.close()
            raise ProcessLaunchError(f"Failed to launch {executable}: {exc}") from exc
        LOGGER.debug("Spawned %s (pid %s)", executable, popen.pid)
        return cls(popen, handle)

    @property
    def pid(self) -> int:
        """Return the OS process id."""
        return self._popen.pid

    @property
    def has_exited(self) -> bool:
        """Return ``True`` once the process has terminated."""
        return self._popen.poll() is not None

    @property
    def returncode(self) -> int | None:
        """Return the exit status, or ``None`` while running."""
        return self._popen.poll()

    def kill(self) -> None:
        """Forcibly terminate the process."""
        if self.has_exited:
            return
        try:
            self._popen.kill()
        except ProcessLookupError:
            return

    async def wait(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for exit without blocking the loop."""
        deadline = time.monotonic() + timeout
        while not self.has_exited:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        return True

    def wait_blocking(self, timeout: float) -> bool:
        """Block up to *timeout* seconds for exit."""
        try:
            self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def release(self) -> None:
        """Close file handles held for the process."""
        if self._output is not None:
            self._output.close()
            self._output = None


__all__ = ["ProcessHandle", "ProcessLaunchError", "ServerProcess"]
