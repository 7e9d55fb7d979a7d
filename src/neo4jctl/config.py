"""Configuration loader for neo4jctl.

Settings are layered, later sources winning:

1. Built-in defaults.
2. ``~/.config/neo4jctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``NEO4JCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export NEO4JCTL_HOME=/opt/neo4j-community-3.5.35
    export NEO4JCTL_ENDPOINTS__BOLT=bolt://localhost:7688

Values are coerced via PyYAML's ``safe_load`` so that numbers parse
naturally. An endpoint set to ``null`` (or an empty string) is dropped from
the defaults. These are the tool's own settings; the managed server's
``neo4j.conf`` is handled by :mod:`neo4jctl.conf_editor`.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover
    raise RuntimeError(
        "PyYAML is required to load neo4jctl configuration. Install with "
        "`pip install neo4jctl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .endpoints import DEFAULT_ENDPOINTS

ENV_PREFIX = "NEO4JCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
# Kept verbatim so that e.g. "3.10" is not read as the float 3.1.
STRING_ENV_KEYS = {("server_version",), ("java_path",), ("home",)}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for neo4jctl."""

    config_file: Path
    home: Path
    java_path: str
    server_version: str | None
    logs_dir: Path
    console_log: Path | None
    poll_interval: float
    kill_timeout: float
    probe_timeout: float
    start_timeout: float | None
    endpoints: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "home": str(self.home),
            "java_path": self.java_path,
            "server_version": self.server_version,
            "logs_dir": str(self.logs_dir),
            "console_log": str(self.console_log) if self.console_log else None,
            "poll_interval": self.poll_interval,
            "kill_timeout": self.kill_timeout,
            "probe_timeout": self.probe_timeout,
            "start_timeout": self.start_timeout,
            "endpoints": dict(self.endpoints),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/neo4jctl/config.yml",
    "home": ".",
    "java_path": "java",
    "server_version": None,
    "logs_dir": "~/.local/state/neo4jctl/logs",
    "console_log": None,
    "poll_interval": 1.0,
    "kill_timeout": 10.0,
    "probe_timeout": 1.0,
    "start_timeout": 120.0,
    "endpoints": dict(DEFAULT_ENDPOINTS),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    endpoints = _as_dict(raw.get("endpoints"), "endpoints")
    for name, url in endpoints.items():
        if url is None or url == "":
            continue
        if not isinstance(url, str):
            raise ConfigError(f"Endpoint '{name}' must be a URL string. Got {url!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    console_value = raw.get("console_log")
    console_log = _to_path(console_value) if console_value not in (None, "") else None

    version_value = raw.get("server_version")
    server_version = str(version_value).strip() if version_value not in (None, "") else None

    start_value = raw.get("start_timeout")
    start_timeout = (
        _expect_positive_float(start_value, "start_timeout", default=120.0)
        if start_value not in (None, "", 0)
        else None
    )

    endpoints = {
        name: str(url)
        for name, url in _as_dict(raw.get("endpoints"), "endpoints").items()
        if url not in (None, "")
    }

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        home=_to_path(raw.get("home")),
        java_path=_expect_str(raw.get("java_path"), "java_path"),
        server_version=server_version,
        logs_dir=_to_path(raw.get("logs_dir")),
        console_log=console_log,
        poll_interval=_expect_positive_float(raw.get("poll_interval"), "poll_interval", default=1.0),
        kill_timeout=_expect_positive_float(raw.get("kill_timeout"), "kill_timeout", default=10.0),
        probe_timeout=_expect_positive_float(raw.get("probe_timeout"), "probe_timeout", default=1.0),
        start_timeout=start_timeout,
        endpoints=endpoints,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        coerced = value if tuple(path_segments) in STRING_ENV_KEYS else _coerce_value(value)
        _assign_nested(overrides, path_segments, coerced)
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "load_config",
]
