"""Typer-powered command line for ``neo4jctl``.

The CLI wraps :class:`~neo4jctl.providers.JavaInstanceProvider` for one Neo4j
home directory. ``run`` keeps the server in the foreground until interrupted;
the data commands (``clear``, ``backup``, ``restore``) operate on a stopped
server and never launch Java themselves.
"""
from __future__ import annotations

import asyncio
import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .conf_editor import ConfigStoreError
from .config import AppConfig, ConfigError, load_config
from .endpoints import EndpointError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .mirror import FileOperationError
from .process import ProcessLaunchError
from .providers import (
    JavaInstanceProvider,
    ServerExitedError,
    StartCancelledError,
    SupervisorError,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to neo4jctl's YAML config file.",
)

HOME_OPTION = typer.Option(
    None,
    "--home",
    file_okay=False,
    help="Neo4j home directory (overrides the configured home).",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

CONF_FILE_OPTION = typer.Option(
    None,
    "--file",
    help="Configuration file under <home>/conf to use (defaults by key).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Local Neo4j server supervisor.

        Edit the server configuration, launch it in the foreground, and
        clear, back up or restore its active database.
        """
    ).strip(),
)

conf_app = typer.Typer(help="Read and edit the Neo4j server configuration.")
config_app = typer.Typer(help="Inspect neo4jctl's own configuration.")

app.add_typer(conf_app, name="conf")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    _provider: JavaInstanceProvider | None = None

    def provider(self, op: OperationScope) -> JavaInstanceProvider:
        """Return the instance provider, failing the command if unusable."""
        if self._provider is None:
            try:
                self._provider = JavaInstanceProvider.from_settings(
                    self.config, logger=self.logger
                )
            except (ConfigStoreError, EndpointError, ValueError) as exc:
                _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        return self._provider


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    home: Path | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if home is not None:
        overrides["home"] = str(home)

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(config=config, logger=StructuredLogger(config.logs_dir))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _provider_error(op: OperationScope, message: str) -> NoReturn:
    _command_error(op, message, rc=ExitCode.PROVIDER)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the neo4jctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    home: Path | None = HOME_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, home)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"neo4jctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, home)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# neo4jctl settings ---------------------------------------------------
@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


# Server configuration ------------------------------------------------
@conf_app.command("get")
def conf_get(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name, e.g. dbms.memory.heap.max_size."),
) -> None:
    """Print every value recorded for KEY."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "conf get",
        args={"key": key},
        target={"kind": "conf", "home": runtime.config.home},
    ) as op:
        entries = runtime.provider(op).find_config(key)
        if not entries:
            _command_error(op, f"Setting '{key}' is not set.", rc=ExitCode.VALIDATION)
        for entry in entries:
            console.print(entry.value, highlight=False, soft_wrap=True)
        op.success("Reported setting.", changed=0, context={"count": len(entries)})


@conf_app.command("set")
def conf_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name."),
    value: str = typer.Argument(..., help="New value."),
    append: bool = typer.Option(
        False,
        "--append",
        help="Add another value for a multi-valued key instead of replacing it.",
    ),
    config_file: str | None = CONF_FILE_OPTION,
) -> None:
    """Write KEY=VALUE to the server configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "conf set",
        args={"key": key, "value": value, "append": append, "file": config_file},
        target={"kind": "conf", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        try:
            provider.configure(key, value, append=append, config_file=config_file)
        except (SupervisorError, ValueError) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except OSError as exc:
            _command_error(op, f"Failed to save configuration: {exc}", rc=ExitCode.ENVIRONMENT)
        console.print(f"[green]{key}={value}[/green]")
        op.success("Configuration updated.", changed=1)


@conf_app.command("unset")
def conf_unset(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name."),
    config_file: str | None = CONF_FILE_OPTION,
) -> None:
    """Remove every entry for KEY."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "conf unset",
        args={"key": key, "file": config_file},
        target={"kind": "conf", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        names = [config_file] if config_file else list(provider.topology.files)
        removed = 0
        try:
            for name in names:
                store = provider.config_store(name)
                count = store.remove(key)
                if count:
                    store.save()
                    removed += count
        except SupervisorError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except OSError as exc:
            _command_error(op, f"Failed to save configuration: {exc}", rc=ExitCode.ENVIRONMENT)
        console.print(f"Removed {removed} entr{'y' if removed == 1 else 'ies'} for {key}.")
        op.success("Configuration updated.", changed=removed)


@conf_app.command("list")
def conf_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    config_file: str | None = CONF_FILE_OPTION,
) -> None:
    """List the server settings in file order."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "conf list",
        args={"json": json_output, "file": config_file},
        target={"kind": "conf", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        names = [config_file] if config_file else list(provider.topology.files)
        rows: list[dict[str, str]] = []
        try:
            for name in names:
                for entry in provider.config_store(name):
                    rows.append({"file": name, "key": entry.key, "value": entry.value})
        except SupervisorError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        if json_output:
            console.print_json(data={"settings": rows})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("File")
            table.add_column("Key", style="bold")
            table.add_column("Value")
            for row in rows:
                table.add_row(row["file"], row["key"], row["value"])
            console.print(table)
        op.success("Listed configuration.", changed=0, context={"count": len(rows)})


# Launch --------------------------------------------------------------
@app.command()
def command(ctx: typer.Context) -> None:
    """Print the java command line the server would be launched with."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "command",
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        rendered = runtime.provider(op).command().render()
        console.print(rendered, highlight=False, soft_wrap=True, markup=False)
        op.success("Rendered launch command.", changed=0)


@app.command("data-path")
def data_path(ctx: typer.Context) -> None:
    """Print the active database directory."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "data-path",
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        path = runtime.provider(op).data_path()
        console.print(str(path), highlight=False, soft_wrap=True, markup=False)
        op.success("Reported data path.", changed=0, context={"path": path})


async def _serve(provider: JavaInstanceProvider, timeout: float | None) -> None:
    async with provider:
        await provider.start(timeout=timeout)
        console.print(f"[green]Neo4j is ready[/green] at {provider.home}. Press Ctrl+C to stop.")
        await asyncio.Event().wait()


@app.command()
def run(
    ctx: typer.Context,
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for readiness (defaults to the configured start_timeout).",
    ),
) -> None:
    """Start the server, wait until it is ready, and stop it on Ctrl+C."""
    runtime = _get_runtime(ctx)
    effective_timeout = timeout if timeout is not None else runtime.config.start_timeout
    with runtime.logger.operation(
        "run",
        args={"timeout": effective_timeout},
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        try:
            asyncio.run(_serve(provider, effective_timeout))
        except KeyboardInterrupt:
            console.print("Neo4j stopped.")
            warnings = op.step_warnings()
            if warnings:
                op.warning("Server stopped after interrupt with warnings.", warnings=warnings)
            else:
                op.success("Server stopped after interrupt.", changed=0)
            return
        except StartCancelledError as exc:
            _command_error(op, str(exc), rc=ExitCode.CANCELLED)
        except (ProcessLaunchError, ServerExitedError, SupervisorError) as exc:
            _provider_error(op, str(exc))


# Data ----------------------------------------------------------------
@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete the active database directory."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "clear",
        args={"yes": yes},
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        path = provider.data_path()
        if not yes and not typer.confirm(f"Delete {path}?", default=False):
            console.print("Aborted.")
            op.success("Clear aborted by user.", changed=0)
            return
        try:
            asyncio.run(provider.clear(start_after=False))
        except FileOperationError as exc:
            _provider_error(op, str(exc))
        console.print(f"[green]Cleared {path}.[/green]")
        op.success("Active database cleared.", changed=1, context={"path": path})


@app.command()
def backup(
    ctx: typer.Context,
    destination: Path = typer.Argument(..., file_okay=False, help="Directory to mirror into."),
) -> None:
    """Mirror the active database into DESTINATION."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup",
        args={"destination": destination},
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        try:
            asyncio.run(provider.backup(destination, stop_before_backup=False))
        except FileOperationError as exc:
            _provider_error(op, str(exc))
        console.print(f"[green]Backed up {provider.data_path()} to {destination}.[/green]")
        op.success("Backup complete.", changed=1, backups=[str(destination)])


@app.command()
def restore(
    ctx: typer.Context,
    source: Path = typer.Argument(..., file_okay=False, help="Directory to restore from."),
) -> None:
    """Replace the active database with the contents of SOURCE."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore",
        args={"source": source},
        target={"kind": "instance", "home": runtime.config.home},
    ) as op:
        provider = runtime.provider(op)
        try:
            asyncio.run(provider.restore(source, start_after=False))
        except FileOperationError as exc:
            _provider_error(op, str(exc))
        console.print(f"[green]Restored {source} into {provider.data_path()}.[/green]")
        op.success("Restore complete.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
