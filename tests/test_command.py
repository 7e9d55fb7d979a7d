"""Tests for launch command synthesis."""
from __future__ import annotations

import os
import shlex
from pathlib import Path

from neo4jctl.command import COMMUNITY_ENTRY_POINT, build_command, classpath
from neo4jctl.conf_editor import ConfigStore


def _store(tmp_path: Path, text: str) -> ConfigStore:
    path = tmp_path / "neo4j.conf"
    path.write_text(text, encoding="utf-8")
    return ConfigStore.load(path)


def test_fixed_arguments(tmp_path: Path) -> None:
    """Classpath, system properties and directories are always present."""
    home = tmp_path / "neo4j"
    command = build_command("/usr/bin/java", home, home / "conf", _store(tmp_path, ""))

    assert command.executable == "/usr/bin/java"
    assert command.arguments == (
        "-cp",
        f"{home / 'lib'}/*{os.pathsep}{home / 'plugins'}/*",
        "-server",
        "-Dlog4j.configuration=file:conf/log4j.properties",
        "-Dorg.neo4j.cluster.logdirectory=data/log",
        COMMUNITY_ENTRY_POINT,
        f"--config-dir={home / 'conf'}",
        f"--home-dir={home}",
    )


def test_heap_sizes_become_xms_xmx(tmp_path: Path) -> None:
    """Heap settings map onto -Xms/-Xmx."""
    store = _store(
        tmp_path,
        "dbms.memory.heap.initial_size=512m\ndbms.memory.heap.max_size=1g\n",
    )
    arguments = build_command("java", tmp_path, tmp_path / "conf", store).arguments
    assert "-Xms512m" in arguments
    assert "-Xmx1g" in arguments
    assert arguments.index("-Xms512m") < arguments.index(COMMUNITY_ENTRY_POINT)


def test_heap_flags_omitted_when_unset_or_empty(tmp_path: Path) -> None:
    """No -Xms/-Xmx appear without values."""
    store = _store(tmp_path, "dbms.memory.heap.initial_size=\n")
    arguments = build_command("java", tmp_path, tmp_path / "conf", store).arguments
    assert not any(arg.startswith(("-Xms", "-Xmx")) for arg in arguments)


def test_jvm_additional_entries_in_order(tmp_path: Path) -> None:
    """Each additional JVM entry is its own argument, duplicates included."""
    store = _store(
        tmp_path,
        "dbms.jvm.additional=-XX:+UseG1GC\n"
        "dbms.jvm.additional=-Dfile.encoding=UTF-8\n"
        "dbms.jvm.additional=-XX:+UseG1GC\n",
    )
    arguments = list(build_command("java", tmp_path, tmp_path / "conf", store).arguments)
    start = arguments.index("-Dorg.neo4j.cluster.logdirectory=data/log") + 1
    assert arguments[start : start + 3] == [
        "-XX:+UseG1GC",
        "-Dfile.encoding=UTF-8",
        "-XX:+UseG1GC",
    ]


def test_build_does_not_mutate_store(tmp_path: Path) -> None:
    """Building the command only reads the store."""
    text = "dbms.memory.heap.max_size=1g\ndbms.jvm.additional=-Da\n"
    store = _store(tmp_path, text)
    before = store.render()
    build_command("java", tmp_path, tmp_path / "conf", store)
    assert store.render() == before


def test_render_quotes_paths_with_spaces(tmp_path: Path) -> None:
    """Rendered command lines survive a shell round trip."""
    home = tmp_path / "my neo4j"
    command = build_command("java", home, home / "conf", _store(tmp_path, ""))
    rendered = command.render()
    assert f"'--home-dir={home}'" in rendered
    assert shlex.split(rendered) == command.argv


def test_classpath_uses_platform_separator(tmp_path: Path) -> None:
    """lib and plugins are joined with os.pathsep."""
    assert classpath(tmp_path).split(os.pathsep) == [
        f"{tmp_path / 'lib'}/*",
        f"{tmp_path / 'plugins'}/*",
    ]


def test_empty_jvm_additional_entries_skipped(tmp_path: Path) -> None:
    """Blank additional entries never become empty arguments."""
    store = _store(
        tmp_path,
        "dbms.jvm.additional=\ndbms.jvm.additional=-Xss2m\ndbms.jvm.additional=   \n",
    )
    arguments = build_command("java", tmp_path, tmp_path / "conf", store).arguments
    assert "" not in arguments
    assert arguments.count("-Xss2m") == 1
