"""Typer CLI for jobdash: watch, check and edit commands."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from pathlib import Path
from typing import Annotated

import typer

from jobdash.config import Config
from jobdash.data.fetcher import ScpFetcher
from jobdash.data.project_loader import LoadedConfig, load_config_file
from jobdash.data.temp_cleanup import cleanup_stale_fetch_dirs
from jobdash.errors import ConfigurationError
from jobdash.models.state import ProjectState
from jobdash.services.scheduler import PollScheduler
from jobdash.services.summary import describe

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="jobdash",
    help="Monitor pbqff and semp jobs running on remote hosts.",
    invoke_without_command=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to the TOML project file"),
]
DebugOption = Annotated[
    bool,
    typer.Option("--debug", help="Log every fetch (also enabled by $DEBUG)"),
]


@app.callback(invoke_without_command=True)
def watch(
    ctx: typer.Context,
    config_path: ConfigOption = None,
    interval: Annotated[
        float | None,
        typer.Option("--interval", min=0.1, help="Seconds between polls of each project"),
    ] = None,
    fetch_timeout: Annotated[
        float | None,
        typer.Option("--fetch-timeout", min=0.1, help="Seconds before a fetch is abandoned"),
    ] = None,
    debug: DebugOption = False,
) -> None:
    """Poll every configured project until interrupted."""
    if ctx.invoked_subcommand is not None:
        return
    loaded = _load_or_exit(
        config_path, interval=interval, fetch_timeout=fetch_timeout, debug=debug
    )
    _setup_logging(loaded.config.debug)
    cleanup_stale_fetch_dirs(temp_root=loaded.config.temp_root)
    try:
        asyncio.run(_watch(loaded))
    except KeyboardInterrupt:
        typer.echo("Stopped.")


@app.command()
def check(
    config_path: ConfigOption = None,
    debug: DebugOption = False,
) -> None:
    """Poll every project once and print its status."""
    loaded = _load_or_exit(config_path, debug=debug)
    _setup_logging(loaded.config.debug)
    states = asyncio.run(_check(loaded))
    for state in states.values():
        typer.echo(describe(state))
    if any(state.has_error for state in states.values()):
        raise typer.Exit(code=1)


@app.command()
def edit(config_path: ConfigOption = None) -> None:
    """Open the project file in $EDITOR."""
    path = config_path or Config().config_path
    path.parent.mkdir(parents=True, exist_ok=True)
    editor = os.environ.get("EDITOR", "vim")
    completed = subprocess.run([editor, str(path)], check=False)
    if completed.returncode != 0:
        raise typer.Exit(code=completed.returncode)


def _setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_or_exit(
    config_path: Path | None,
    *,
    interval: float | None = None,
    fetch_timeout: float | None = None,
    debug: bool = False,
) -> LoadedConfig:
    path = config_path or Config().config_path
    if not path.exists():
        typer.echo(f"No project file supplied and none found at {path}", err=True)
        raise typer.Exit(code=1)
    try:
        loaded = load_config_file(path)
    except ConfigurationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    for error in loaded.errors:
        typer.echo(f"Skipping project {error}", err=True)
    if not loaded.projects:
        typer.echo(f"No valid projects in {path}", err=True)
        raise typer.Exit(code=1)

    loaded.config = loaded.config.with_overrides(
        interval=interval,
        fetch_timeout=fetch_timeout,
        debug=True if debug or os.environ.get("DEBUG") else None,
    )
    return loaded


def _build_scheduler(loaded: LoadedConfig) -> PollScheduler:
    config = loaded.config
    fetcher = ScpFetcher(
        scp_command=config.scp_command,
        ssh_options=config.ssh_options,
        temp_root=config.temp_root,
    )
    return PollScheduler.from_config(config, loaded.projects, fetcher)


async def _watch(loaded: LoadedConfig) -> None:
    """Echo every pushed update until cancelled."""
    scheduler = _build_scheduler(loaded)
    subscription = scheduler.subscribe()
    async with scheduler:
        async for _name, state in subscription:
            typer.echo(describe(state))


async def _check(loaded: LoadedConfig) -> dict[str, ProjectState]:
    scheduler = _build_scheduler(loaded)
    return await scheduler.poll_all()
