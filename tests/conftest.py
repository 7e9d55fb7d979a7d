"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Sequence
from pathlib import Path

import pytest

_PIDS = itertools.count(4000)

DEFAULT_CONF = """\
# Neo4j configuration
dbms.directories.data=data/databases
dbms.connector.http.enabled=true

dbms.jvm.additional=-XX:+UseG1GC
"""


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


def write_home(root: Path, files: dict[str, str] | None = None) -> Path:
    """Create a Neo4j home under *root* with the given ``conf`` files."""
    conf_dir = root / "conf"
    conf_dir.mkdir(parents=True, exist_ok=True)
    for name, text in (files or {"neo4j.conf": DEFAULT_CONF}).items():
        (conf_dir / name).write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def neo4j_home(tmp_path: Path) -> Path:
    """Return a Neo4j home directory containing a default ``neo4j.conf``."""
    return write_home(tmp_path / "neo4j")


class FakeProcess:
    """In-memory stand-in for :class:`neo4jctl.process.ServerProcess`."""

    def __init__(self, *, exit_on_kill: bool = True, returncode: int | None = None) -> None:
        """Create a fake process that is running unless *returncode* is given."""
        self.pid = next(_PIDS)
        self.exit_on_kill = exit_on_kill
        self.returncode = returncode
        self.kills = 0
        self.released = False

    @property
    def has_exited(self) -> bool:
        return self.returncode is not None

    def kill(self) -> None:
        self.kills += 1
        if self.exit_on_kill:
            self.returncode = -9

    async def wait(self, timeout: float) -> bool:
        if not self.has_exited:
            await asyncio.sleep(timeout)
        return self.has_exited

    def wait_blocking(self, timeout: float) -> bool:
        return self.has_exited

    def release(self) -> None:
        self.released = True


class FakeSpawner:
    """Records launches and hands out :class:`FakeProcess` objects."""

    def __init__(self, *, exit_on_kill: bool = True, returncode: int | None = None) -> None:
        """Configure the processes this spawner will create."""
        self.exit_on_kill = exit_on_kill
        self.returncode = returncode
        self.calls: list[dict[str, object]] = []
        self.processes: list[FakeProcess] = []

    def __call__(
        self,
        executable: str,
        arguments: Sequence[str],
        *,
        cwd: Path | None = None,
        output: Path | None = None,
    ) -> FakeProcess:
        self.calls.append(
            {"executable": executable, "arguments": list(arguments), "cwd": cwd, "output": output}
        )
        process = FakeProcess(exit_on_kill=self.exit_on_kill, returncode=self.returncode)
        self.processes.append(process)
        return process


class FakeProber:
    """Reports readiness after *ready_after* unsuccessful probes."""

    def __init__(self, ready_after: int = 0) -> None:
        """Configure how many probes fail before the endpoints answer."""
        self.ready_after = ready_after
        self.calls = 0

    async def ready(self, endpoints: object) -> bool:
        self.calls += 1
        return self.calls > self.ready_after
