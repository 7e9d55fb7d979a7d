"""Launch command synthesis for the Neo4j JVM."""
from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from .conf_editor import ConfigStore

COMMUNITY_ENTRY_POINT = "org.neo4j.server.CommunityEntryPoint"

JVM_ADDITIONAL_KEY = "dbms.jvm.additional"
HEAP_INITIAL_SIZE_KEY = "dbms.memory.heap.initial_size"
HEAP_MAX_SIZE_KEY = "dbms.memory.heap.max_size"

SYSTEM_PROPERTIES = (
    "-Dlog4j.configuration=file:conf/log4j.properties",
    "-Dorg.neo4j.cluster.logdirectory=data/log",
)


@dataclass(frozen=True, slots=True)
class ServerCommand:
    """Executable plus argument vector for one server launch."""

    executable: str
    arguments: tuple[str, ...]

    @property
    def argv(self) -> list[str]:
        """Return the full argument vector including the executable."""
        return [self.executable, *self.arguments]

    def render(self) -> str:
        """Return a shell-quoted rendering for display."""
        return shlex.join(self.argv)


def classpath(home: Path) -> str:
    """Return the classpath covering ``lib`` and ``plugins`` under *home*."""
    return os.pathsep.join((f"{home / 'lib'}/*", f"{home / 'plugins'}/*"))


def build_command(
    java_path: str,
    home: Path,
    conf_dir: Path,
    jvm_config: ConfigStore,
    *,
    entry_point: str = COMMUNITY_ENTRY_POINT,
) -> ServerCommand:
    """Derive the launch command from *jvm_config* and the instance paths.

    The store is only read. ``dbms.jvm.additional`` entries are passed through
    one argument each, in file order. Entries with an empty value are skipped
    because ``java`` would read an empty argument as the main class name. Heap
    flags are omitted when unset.
    """
    arguments: list[str] = ["-cp", classpath(home), "-server", *SYSTEM_PROPERTIES]

    arguments.extend(
        entry.value for entry in jvm_config.find_values(JVM_ADDITIONAL_KEY) if entry.value
    )

    heap_initial = jvm_config.get_value(HEAP_INITIAL_SIZE_KEY)
    if heap_initial:
        arguments.append(f"-Xms{heap_initial}")
    heap_max = jvm_config.get_value(HEAP_MAX_SIZE_KEY)
    if heap_max:
        arguments.append(f"-Xmx{heap_max}")

    arguments.extend(
        [
            entry_point,
            f"--config-dir={conf_dir}",
            f"--home-dir={home}",
        ]
    )
    return ServerCommand(executable=java_path, arguments=tuple(arguments))


__all__ = [
    "COMMUNITY_ENTRY_POINT",
    "HEAP_INITIAL_SIZE_KEY",
    "HEAP_MAX_SIZE_KEY",
    "JVM_ADDITIONAL_KEY",
    "ServerCommand",
    "build_command",
    "classpath",
]
