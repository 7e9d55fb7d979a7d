"""Supervisor for a Neo4j server launched directly through ``java``.

:class:`JavaInstanceProvider` owns at most one server process and tracks it
with an explicit :class:`Status`. The lifecycle is::

    STOPPED -> STARTING -> STARTED -> STOPPING -> STOPPED

``start`` spawns the JVM and then polls the instance endpoints until all of
them answer. Aborting that wait (cancel event or timeout) raises
:class:`StartCancelledError` but leaves the process running and owned by the
provider, so a later ``stop`` or ``start`` picks it up again. ``stop`` kills
the process and waits up to ``kill_timeout`` seconds from a background task;
a caller that stops waiting does not interrupt the kill, and the status still
settles on ``STOPPED``.

Data operations (``clear``, ``backup``, ``restore``) compute the active
database directory from the current configuration on every call, stop the
server, touch the files, and start it again. Any failure aborts the remaining
steps.

Instances are not safe for concurrent use: callers serialise operations on a
given provider. Separate providers share no state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Protocol

from ..command import ServerCommand, build_command
from ..conf_editor import ConfigEntry, ConfigStore
from ..endpoints import EndpointProber, EndpointSet
from ..mirror import delete_directory, mirror_folders
from ..process import ProcessHandle, ServerProcess
from ..topology import ConfigTopology

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..logging import StructuredLogger

LOGGER = logging.getLogger(__name__)

DATA_DIRECTORY_KEY = "dbms.directories.data"
ACTIVE_DATABASE_KEY = "dbms.active_database"
DEFAULT_DATA_DIRECTORY = "data/databases"
DEFAULT_ACTIVE_DATABASE = "graph.db"

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_KILL_TIMEOUT = 10.0


class SupervisorError(RuntimeError):
    """Base class for supervisor failures."""


class StartCancelledError(SupervisorError):
    """Raised when the caller stops waiting for readiness.

    The server process may still be running.
    """


class StopCancelledError(SupervisorError):
    """Raised when the caller stops waiting for a stop to complete."""


class ServerExitedError(SupervisorError):
    """Raised when the server process exits before becoming ready."""

    def __init__(self, returncode: int | None) -> None:
        """Record the exit status."""
        super().__init__(f"Server process exited before becoming ready (exit {returncode}).")
        self.returncode = returncode


class InvalidTransitionError(SupervisorError):
    """Raised when a status change is not part of the lifecycle."""


class Status(str, Enum):
    """Lifecycle state of a supervised server."""

    STOPPED = "stopped"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"


_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.STOPPED: frozenset({Status.STARTING}),
    Status.STARTING: frozenset({Status.STARTED, Status.STOPPED, Status.STOPPING}),
    Status.STARTED: frozenset({Status.STOPPING, Status.STOPPED}),
    Status.STOPPING: frozenset({Status.STOPPED}),
}


class ProcessSpawner(Protocol):
    """Callable that launches the server process."""

    def __call__(
        self,
        executable: str,
        arguments: Sequence[str],
        *,
        cwd: Path | None = None,
        output: Path | None = None,
    ) -> ProcessHandle: ...


class Prober(Protocol):
    """Readiness check over an endpoint set."""

    def ready(self, endpoints: EndpointSet) -> Awaitable[bool]: ...


MirrorFunction = Callable[..., None]


class JavaInstanceProvider:
    """Start, stop, configure and snapshot one local Neo4j server."""

    def __init__(
        self,
        java_path: str,
        home: Path,
        endpoints: EndpointSet | None = None,
        *,
        topology: ConfigTopology | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        console_log: Path | None = None,
        prober: Prober | None = None,
        spawn: ProcessSpawner | None = None,
        mirror: MirrorFunction = mirror_folders,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Load the configuration files under ``<home>/conf``.

        Raises :class:`~neo4jctl.conf_editor.ConfigNotFoundError` or
        :class:`~neo4jctl.conf_editor.ConfigParseError` when they are unusable.
        """
        self.java_path = java_path
        self.home = Path(home).expanduser()
        self.endpoints = endpoints if endpoints is not None else EndpointSet()
        self.topology = topology or ConfigTopology()
        self.poll_interval = poll_interval
        self.kill_timeout = kill_timeout
        self.console_log = console_log
        self.prober: Prober = prober or EndpointProber()
        self._spawn: ProcessSpawner = spawn or ServerProcess.spawn
        self._mirror = mirror
        self.logger = logger

        self.conf_dir = self.home / "conf"
        self._stores: dict[str, ConfigStore] = {
            name: ConfigStore.load(self.conf_dir / name) for name in self.topology.files
        }

        self._status = Status.STOPPED
        self._process: ProcessHandle | None = None
        self._stop_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        config: AppConfig,
        *,
        logger: StructuredLogger | None = None,
    ) -> JavaInstanceProvider:
        """Build a provider from the resolved tool configuration."""
        return cls(
            config.java_path,
            config.home,
            EndpointSet(config.endpoints),
            topology=ConfigTopology.for_version(config.server_version),
            poll_interval=config.poll_interval,
            kill_timeout=config.kill_timeout,
            console_log=config.console_log,
            prober=EndpointProber(timeout=config.probe_timeout),
            logger=logger,
        )

    # State -----------------------------------------------------------
    @property
    def status(self) -> Status:
        """Return the current lifecycle status."""
        return self._status

    @property
    def process(self) -> ProcessHandle | None:
        """Return the owned process handle, if any."""
        return self._process

    def _set_status(self, target: Status) -> None:
        if target is self._status:
            return
        if target not in _TRANSITIONS[self._status]:
            raise InvalidTransitionError(
                f"Cannot move from {self._status.value} to {target.value}."
            )
        LOGGER.debug("%s: %s -> %s", self.home, self._status.value, target.value)
        self._status = target

    def _process_alive(self) -> bool:
        return self._process is not None and not self._process.has_exited

    def _step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        scope = self.logger.current if self.logger is not None else None
        if scope is not None:
            scope.add_step(name, status=status, detail=detail)

    # Configuration ---------------------------------------------------
    def config_store(self, name: str | None = None) -> ConfigStore:
        """Return the store for file *name* (the main file by default)."""
        key = name or self.topology.main_file
        try:
            return self._stores[key]
        except KeyError as exc:
            known = ", ".join(self._stores)
            raise SupervisorError(f"Unknown configuration file {key!r} (known: {known}).") from exc

    def _store_for_key(self, key: str) -> ConfigStore:
        # Later files win in get_config, so write where the effective value lives.
        for store in reversed(self._stores.values()):
            if key in store:
                return store
        return self._stores[self.topology.file_for_key(key)]

    def configure(
        self,
        key: str,
        value: str,
        *,
        append: bool = False,
        config_file: str | None = None,
    ) -> None:
        """Write *key* to the configuration and persist it.

        ``append`` adds another value for a multi-valued key instead of
        collapsing it. A running server only sees the change after a restart.
        """
        store = self.config_store(config_file) if config_file else self._store_for_key(key)
        if append:
            store.add_value(key, value)
        else:
            store.set_value(key, value)
        store.save()
        LOGGER.debug("Configured %s=%s in %s", key, value, store.path)

    def get_config(self, key: str) -> str | None:
        """Return the effective value of *key* across all files."""
        value: str | None = None
        for store in self._stores.values():
            candidate = store.get_value(key)
            if candidate is not None:
                value = candidate
        return value

    def find_config(self, key: str) -> list[ConfigEntry]:
        """Return every entry for *key* across all files, in file order."""
        entries: list[ConfigEntry] = []
        for store in self._stores.values():
            entries.extend(store.find_values(key))
        return entries

    def data_path(self) -> Path:
        """Return the active database directory for the current configuration."""
        data_directory = self.get_config(DATA_DIRECTORY_KEY) or DEFAULT_DATA_DIRECTORY
        active_database = self.get_config(ACTIVE_DATABASE_KEY) or DEFAULT_ACTIVE_DATABASE
        return self.home / data_directory / active_database

    def command(self) -> ServerCommand:
        """Return the launch command for the current configuration."""
        return build_command(
            self.java_path,
            self.home,
            self.conf_dir,
            self._effective_store(),
        )

    def _effective_store(self) -> ConfigStore:
        """Return a read-only merge of every file, in topology order."""
        entries = [entry for store in self._stores.values() for entry in store.entries()]
        return ConfigStore(self.conf_dir / self.topology.jvm_file, list(entries))

    # Lifecycle -------------------------------------------------------
    async def start(
        self,
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Launch the server if needed and wait until every endpoint answers."""
        if self._status is Status.STARTED and self._process_alive():
            return
        if self._stop_task is not None and not self._stop_task.done():
            await asyncio.shield(self._stop_task)
        if self._status is Status.STARTED:
            # The process died behind our back.
            self._set_status(Status.STOPPED)

        process = self._process
        if self._status is Status.STARTING and process is not None and not process.has_exited:
            LOGGER.info("Resuming readiness wait for pid %s", process.pid)
        else:
            self._launch()

        await self._wait_for_ready(cancel=cancel, timeout=timeout)
        self._set_status(Status.STARTED)
        self._step("ready", detail=", ".join(self.endpoints))
        LOGGER.info("Neo4j at %s is ready", self.home)

    def _launch(self) -> None:
        stale = self._process
        if stale is not None and not stale.has_exited:
            # Left over from a stop whose kill wait ran out.
            LOGGER.warning("Killing stale Neo4j process (pid %s) before relaunch", stale.pid)
            stale.kill()
            self._step("process.kill", status="warning", detail=f"stale pid={stale.pid}")
        self._release_process()
        command = self.command()
        self._set_status(Status.STARTING)
        try:
            self._process = self._spawn(
                command.executable,
                command.arguments,
                cwd=self.home,
                output=self.console_log,
            )
        except Exception:
            self._set_status(Status.STOPPED)
            self._step("process.spawn", status="error", detail=command.render())
            raise
        self._step("process.spawn", detail=f"pid={self._process.pid}")
        LOGGER.info("Started Neo4j (pid %s): %s", self._process.pid, command.render())

    async def _wait_for_ready(
        self,
        *,
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> None:
        deadline = time.monotonic() + timeout if timeout is not None else None
        process = self._process
        while True:
            if cancel is not None and cancel.is_set():
                raise StartCancelledError("Start cancelled before the server became ready.")
            if process is None or process.has_exited:
                returncode = process.returncode if process is not None else None
                self._set_status(Status.STOPPED)
                self._step("ready", status="error", detail=f"exit={returncode}")
                raise ServerExitedError(returncode)
            if await self.prober.ready(self.endpoints):
                return

            delay = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise StartCancelledError(
                        f"Server did not become ready within {timeout} seconds."
                    )
                delay = min(delay, remaining)
            if await _sleep_or_cancel(delay, cancel):
                raise StartCancelledError("Start cancelled before the server became ready.")

    async def stop(self, *, cancel: asyncio.Event | None = None) -> None:
        """Kill the server and wait for it to exit.

        Setting *cancel* only abandons the wait; the kill finishes in the
        background and the status still becomes ``STOPPED``.
        """
        if self._stop_task is None or self._stop_task.done():
            if self._status is Status.STOPPED:
                return
            if not self._process_alive():
                self._set_status(Status.STOPPED)
                return
            self._set_status(Status.STOPPING)
            self._stop_task = asyncio.create_task(self._terminate())

        task = self._stop_task
        if cancel is None:
            await asyncio.shield(task)
            return
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not task.done():
            raise StopCancelledError("Stopped waiting for the server to exit.")
        task.result()

    async def _terminate(self) -> None:
        process = self._process
        try:
            if process is not None:
                process.kill()
                exited = await process.wait(self.kill_timeout)
                if not exited:
                    LOGGER.warning(
                        "Neo4j (pid %s) did not exit within %.1f seconds of being killed.",
                        process.pid,
                        self.kill_timeout,
                    )
                    self._step("process.kill", status="warning", detail="kill timeout exceeded")
                else:
                    self._step("process.kill", detail=f"exit={process.returncode}")
        finally:
            self._set_status(Status.STOPPED)
        LOGGER.info("Neo4j at %s stopped", self.home)

    # Data operations ---------------------------------------------------
    async def clear(self, *, start_after: bool = True) -> None:
        """Delete the active database and restart the server."""
        data_path = self.data_path()
        await self.stop()
        removed = delete_directory(data_path)
        self._step("data.delete", detail=f"{data_path} removed={removed}")
        if start_after:
            await self.start()

    async def backup(self, destination: Path, *, stop_before_backup: bool = True) -> None:
        """Mirror the active database into *destination*.

        With ``stop_before_backup=False`` the copy runs against a live server
        and may not be consistent.
        """
        data_path = self.data_path()
        if stop_before_backup:
            await self.stop()
        self._mirror(data_path, Path(destination), allow_missing_source=True)
        self._step("data.backup", detail=f"{data_path} -> {destination}")
        if stop_before_backup:
            await self.start()

    async def restore(self, source: Path, *, start_after: bool = True) -> None:
        """Replace the active database with the contents of *source*."""
        data_path = self.data_path()
        await self.stop()
        self._mirror(Path(source), data_path)
        self._step("data.restore", detail=f"{source} -> {data_path}")
        if start_after:
            await self.start()

    # Teardown --------------------------------------------------------
    def _release_process(self) -> None:
        if self._process is not None:
            self._process.release()
            self._process = None

    async def aclose(self) -> None:
        """Stop the server and release the process handle."""
        try:
            await self.stop()
        finally:
            self._release_process()

    def close(self) -> None:
        """Kill the server synchronously and release the process handle."""
        try:
            process = self._process
            if process is not None and not process.has_exited:
                process.kill()
                if not process.wait_blocking(self.kill_timeout):
                    LOGGER.warning(
                        "Neo4j (pid %s) did not exit within %.1f seconds of being killed.",
                        process.pid,
                        self.kill_timeout,
                    )
            self._set_status(Status.STOPPED)
        finally:
            self._release_process()

    async def __aenter__(self) -> JavaInstanceProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __enter__(self) -> JavaInstanceProvider:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


async def _sleep_or_cancel(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for *delay* seconds; return ``True`` if *cancel* fired first."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except TimeoutError:
        return False
    return True


__all__ = [
    "ACTIVE_DATABASE_KEY",
    "DATA_DIRECTORY_KEY",
    "DEFAULT_ACTIVE_DATABASE",
    "DEFAULT_DATA_DIRECTORY",
    "InvalidTransitionError",
    "JavaInstanceProvider",
    "ServerExitedError",
    "StartCancelledError",
    "Status",
    "StopCancelledError",
    "SupervisorError",
]
