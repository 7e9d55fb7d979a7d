"""Structured operations log for neo4jctl commands.

Every CLI command runs inside ``with logger.operation(...) as op:`` and ends
with exactly one of ``op.success``, ``op.warning`` or ``op.error``. When the
block exits, a single JSON record is appended to ``operations.jsonl`` in the
configured log directory::

    {"ts": "...", "command": "backup", "args": {...}, "target": {...},
     "context": {"neo4jctl_version": "..."}, "steps": [...],
     "result": {"status": "success", "message": "...", ...},
     "duration_ms": 12}

The log is advisory: if the directory cannot be created, or a write fails,
the logger disables itself and commands carry on.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for one logged operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start a scope for *command*."""
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self._ts = _now_iso()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "ts": _now_iso()}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result("success", message, changed=changed, backups=backups, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result("warning", message, warnings=warnings, changed=changed, context=context)

    def step_warnings(self) -> list[str]:
        """Return ``name: detail`` for every step recorded with a warning."""
        found: list[str] = []
        for step in self.steps:
            if step["status"] != "warning":
                continue
            detail = step.get("detail")
            found.append(f"{step['name']}: {detail}" if detail else str(step["name"]))
        return found

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed; *errors* defaults to ``[message]``."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors is not None else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        backups: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings is not None:
            result["warnings"] = [str(item) for item in warnings]
        if errors is not None:
            result["errors"] = [str(item) for item in errors]
        if backups is not None:
            result["backups"] = [str(item) for item in backups]
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _json_safe(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this scope."""
        return {
            "ts": self._ts,
            "command": self.command,
            "args": _json_safe(self.args),
            "target": _json_safe(self.target),
            "context": {"neo4jctl_version": __version__},
            "steps": self.steps,
            "result": self.result or {"status": "unknown", "message": ""},
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*, disabling the logger if it is not writable."""
        self.log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self.log_dir / OPERATIONS_LOG_NAME
        self._scopes: list[OperationScope] = []
        self._enabled = True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Operations log disabled; cannot create %s: %s", self.log_dir, exc)
            self._enabled = False

    @property
    def current(self) -> OperationScope | None:
        """Return the innermost active scope, if any."""
        return self._scopes[-1] if self._scopes else None

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation."""
        scope = OperationScope(command, args=args, target=target)
        self._scopes.append(scope)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            self._scopes.remove(scope)
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError as exc:
            LOGGER.warning("Operations log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
