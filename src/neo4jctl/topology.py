"""Configuration-file layouts for the supported Neo4j server lines.

Neo4j 3.0 split its settings across ``neo4j.conf`` (server) and
``neo4j-wrapper.conf`` (JVM); 3.1 folded everything into ``neo4j.conf``. The
supervisor only needs to know which files exist and where the JVM keys live,
so a layout is a small value object chosen from the server version.
"""
from __future__ import annotations

from dataclasses import dataclass

from packaging.version import InvalidVersion, Version

MAIN_CONFIG_FILE = "neo4j.conf"
WRAPPER_CONFIG_FILE = "neo4j-wrapper.conf"

JVM_KEY_PREFIXES = ("dbms.jvm.", "dbms.memory.heap.")

_SPLIT_CONFIG_VERSIONS = (Version("3.0"), Version("3.1"))


@dataclass(frozen=True, slots=True)
class ConfigTopology:
    """Names of the configuration files under ``<home>/conf``."""

    main_file: str = MAIN_CONFIG_FILE
    jvm_file: str = MAIN_CONFIG_FILE

    @property
    def files(self) -> tuple[str, ...]:
        """Return every file in the layout, main file first."""
        if self.jvm_file == self.main_file:
            return (self.main_file,)
        return (self.main_file, self.jvm_file)

    @property
    def is_split(self) -> bool:
        """Return ``True`` when JVM settings live in their own file."""
        return self.jvm_file != self.main_file

    def file_for_key(self, key: str) -> str:
        """Return the default file a new *key* should be written to."""
        if key.startswith(JVM_KEY_PREFIXES):
            return self.jvm_file
        return self.main_file

    @classmethod
    def for_version(cls, version: str | None) -> ConfigTopology:
        """Return the layout used by Neo4j *version* (single file when unknown)."""
        if not version:
            return cls()
        try:
            parsed = Version(version.strip().lstrip("v"))
        except InvalidVersion as exc:
            raise ValueError(f"Unrecognised Neo4j version: {version!r}") from exc
        lower, upper = _SPLIT_CONFIG_VERSIONS
        if lower <= parsed < upper:
            return cls(main_file=MAIN_CONFIG_FILE, jvm_file=WRAPPER_CONFIG_FILE)
        return cls()


__all__ = ["ConfigTopology", "JVM_KEY_PREFIXES", "MAIN_CONFIG_FILE", "WRAPPER_CONFIG_FILE"]
