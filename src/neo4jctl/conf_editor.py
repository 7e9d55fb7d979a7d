"""Reader/writer for Neo4j's line-oriented ``key=value`` configuration files.

Neo4j settings files (``conf/neo4j.conf`` and, for 3.0.x, also
``conf/neo4j-wrapper.conf``) are flat lists of ``key=value`` lines. Keys may
repeat: ``dbms.jvm.additional`` is the common multi-valued example, one JVM
flag per line. :class:`ConfigStore` keeps the file's lines in order, so comment
and blank lines survive a rewrite, and only touches the entries it is asked to
change.

Parsing is strict and collects every problem before failing: a file with
three malformed lines raises one :class:`ConfigParseError` that lists all
three, and no store is constructed.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

COMMENT_PREFIX = "#"


class ConfigStoreError(RuntimeError):
    """Base class for configuration file failures."""


class ConfigNotFoundError(ConfigStoreError):
    """Raised when the configuration file does not exist."""

    def __init__(self, path: Path) -> None:
        """Record the missing *path*."""
        super().__init__(f"Configuration file not found: {path}")
        self.path = path


class ConfigParseError(ConfigStoreError):
    """Raised when one or more lines are not ``key=value`` pairs."""

    def __init__(self, path: Path, problems: list[tuple[int, str]]) -> None:
        """Record every offending ``(line number, text)`` pair."""
        listed = "; ".join(f"line {number}: {text!r}" for number, text in problems)
        super().__init__(f"Malformed configuration lines in {path}: {listed}")
        self.path = path
        self.problems = problems


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    """A single ``key=value`` setting."""

    key: str
    value: str

    def render(self) -> str:
        """Return the on-disk form of the entry."""
        return f"{self.key}={self.value}"


# A line is either a parsed entry or raw text (comment/blank) kept verbatim.
_Line = ConfigEntry | str


def parse_line(text: str) -> ConfigEntry | None:
    """Parse *text* into an entry, returning ``None`` for blank/comment lines.

    Raises ``ValueError`` for lines that are neither.
    """
    stripped = text.strip()
    if not stripped or stripped.startswith(COMMENT_PREFIX):
        return None
    key, sep, value = stripped.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ValueError(f"not a key=value line: {stripped!r}")
    return ConfigEntry(key=key, value=value.strip())


class ConfigStore:
    """In-memory view of a configuration file with explicit persistence."""

    def __init__(self, path: Path, lines: list[_Line] | None = None) -> None:
        """Bind the store to *path* with already-parsed *lines*."""
        self.path = path
        self._lines: list[_Line] = list(lines or [])

    @classmethod
    def load(cls, path: Path) -> ConfigStore:
        """Parse *path* into a new store."""
        path = Path(path).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigNotFoundError(path) from exc

        lines: list[_Line] = []
        problems: list[tuple[int, str]] = []
        for number, raw in enumerate(text.splitlines(), start=1):
            try:
                entry = parse_line(raw)
            except ValueError:
                problems.append((number, raw.strip()))
                continue
            lines.append(entry if entry is not None else raw.rstrip())
        if problems:
            raise ConfigParseError(path, problems)
        return cls(path, lines)

    # Queries -------------------------------------------------------
    def entries(self) -> list[ConfigEntry]:
        """Return every entry in file order."""
        return [line for line in self._lines if isinstance(line, ConfigEntry)]

    def __iter__(self) -> Iterator[ConfigEntry]:
        return iter(self.entries())

    def __contains__(self, key: object) -> bool:
        return any(entry.key == key for entry in self.entries())

    def keys(self) -> list[str]:
        """Return distinct keys in order of first appearance."""
        seen: dict[str, None] = {}
        for entry in self.entries():
            seen.setdefault(entry.key, None)
        return list(seen)

    def find_values(self, key: str) -> list[ConfigEntry]:
        """Return all entries for *key*, preserving order and duplicates."""
        return [entry for entry in self.entries() if entry.key == key]

    def get_value(self, key: str) -> str | None:
        """Return the last value recorded for *key*, or ``None``."""
        matches = self.find_values(key)
        return matches[-1].value if matches else None

    # Mutations -----------------------------------------------------
    def set_value(self, key: str, value: str) -> None:
        """Collapse *key* to the single *value*.

        The first existing entry is updated in place and later duplicates are
        dropped; an unknown key is appended at the end of the file.
        """
        key = _normalise_key(key)
        updated: list[_Line] = []
        replaced = False
        for line in self._lines:
            if isinstance(line, ConfigEntry) and line.key == key:
                if not replaced:
                    updated.append(ConfigEntry(key, value))
                    replaced = True
                continue
            updated.append(line)
        if not replaced:
            updated.append(ConfigEntry(key, value))
        self._lines = updated

    def add_value(self, key: str, value: str) -> None:
        """Append another entry for *key* without touching existing ones."""
        self._lines.append(ConfigEntry(_normalise_key(key), value))

    def remove(self, key: str) -> int:
        """Drop every entry for *key* and return how many were removed."""
        before = len(self._lines)
        self._lines = [
            line
            for line in self._lines
            if not (isinstance(line, ConfigEntry) and line.key == key)
        ]
        return before - len(self._lines)

    # Persistence ---------------------------------------------------
    def render(self) -> str:
        """Return the file contents the store would write."""
        rendered = [line.render() if isinstance(line, ConfigEntry) else line for line in self._lines]
        return "\n".join(rendered) + "\n" if rendered else ""

    def save(self) -> None:
        """Atomically rewrite the backing file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(self.render())
            if self.path.exists():
                os.chmod(tmp_path, self.path.stat().st_mode & 0o777)
            os.replace(tmp_path, self.path)
        finally:
            tmp_path.unlink(missing_ok=True)


def _normalise_key(key: str) -> str:
    normalised = key.strip()
    if not normalised or "=" in normalised:
        raise ValueError(f"Invalid configuration key: {key!r}")
    return normalised


__all__ = [
    "ConfigEntry",
    "ConfigNotFoundError",
    "ConfigParseError",
    "ConfigStore",
    "ConfigStoreError",
    "parse_line",
]
