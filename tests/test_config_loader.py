"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from neo4jctl.config import AppConfig, ConfigError, load_config
from neo4jctl.endpoints import DEFAULT_ENDPOINTS


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.home == Path(".")
    assert config.java_path == "java"
    assert config.server_version is None
    assert config.console_log is None
    assert config.poll_interval == 1.0
    assert config.kill_timeout == 10.0
    assert config.start_timeout == 120.0
    assert config.endpoints == DEFAULT_ENDPOINTS


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "neo4jctl.yml"
    cfg.write_text(
        f"home: {tmp_path / 'neo4j'}\n"
        "java_path: /usr/lib/jvm/java-8/bin/java\n"
        "server_version: '3.0.12'\n"
        "kill_timeout: 5\n"
        f"console_log: {tmp_path / 'console.log'}\n"
        "endpoints:\n"
        "  bolt: bolt://localhost:17687\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.home == tmp_path / "neo4j"
    assert config.java_path == "/usr/lib/jvm/java-8/bin/java"
    assert config.server_version == "3.0.12"
    assert config.kill_timeout == 5.0
    assert config.console_log == tmp_path / "console.log"
    assert config.endpoints == {
        "http": "http://localhost:7474",
        "bolt": "bolt://localhost:17687",
    }


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("home: /from/file\npoll_interval: 2\n")
    env = {
        "NEO4JCTL_HOME": str(tmp_path / "env-home"),
        "NEO4JCTL_POLL_INTERVAL": "0.5",
        "NEO4JCTL_SERVER_VERSION": "3.10",
        "NEO4JCTL_ENDPOINTS__HTTP": "http://127.0.0.1:17474",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.home == tmp_path / "env-home"
    assert config.poll_interval == 0.5
    assert config.server_version == "3.10"
    assert config.endpoints["http"] == "http://127.0.0.1:17474"


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"NEO4JCTL_HOME": "/from/env"},
        overrides={"home": str(tmp_path)},
    )
    assert config.home == tmp_path


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("java_path: /opt/java/bin/java\n")

    config = load_config(env={"NEO4JCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.java_path == "/opt/java/bin/java"


def test_null_endpoint_is_dropped(tmp_path: Path) -> None:
    """Endpoints set to null disappear from the probe set."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("endpoints:\n  http: null\n")

    config = load_config(config_file=cfg, env={})

    assert config.endpoints == {"bolt": "bolt://localhost:7687"}


def test_zero_start_timeout_disables_deadline(tmp_path: Path) -> None:
    """start_timeout of 0 waits indefinitely."""
    config = load_config(
        config_file=tmp_path / "absent.yml", env={"NEO4JCTL_START_TIMEOUT": "0"}
    )
    assert config.start_timeout is None


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A YAML document that is not a mapping raises ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_non_string_endpoint_raises(tmp_path: Path) -> None:
    """Endpoint values must be URL strings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("endpoints:\n  bolt: 7687\n")

    with pytest.raises(ConfigError, match="must be a URL string"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("value", ["-1", "0", "true", "soon"])
def test_invalid_kill_timeout_raises(tmp_path: Path, value: str) -> None:
    """Timeouts must be positive numbers."""
    with pytest.raises(ConfigError):
        load_config(config_file=tmp_path / "absent.yml", env={"NEO4JCTL_KILL_TIMEOUT": value})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict renders paths as strings."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})
    data = config.to_dict()
    assert data["config_file"] == str(tmp_path / "absent.yml")
    assert data["console_log"] is None
    assert data["endpoints"] == DEFAULT_ENDPOINTS
