"""Arbiter CLI.

Typer app assembly: global options are handled by the root callback and
each command lives in a module under ``commands``.

Package structure:
    cli/
    ├── __init__.py           # App assembly and global options
    ├── helpers.py            # Logging and service state
    ├── output.py             # Rich formatting
    └── commands/
        ├── analytics.py      # trends, compare, insights, health, report, export
        └── intelligence.py   # threshold, anomalies, forecast
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from arbiter import __version__

from . import helpers as helpers
from .commands import (
    anomalies,
    compare,
    export,
    forecast,
    health,
    insights,
    report,
    threshold,
    trends,
)
from .helpers import (
    configure_global_logging,
    set_config_path,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

app = typer.Typer(
    name="arbiter",
    help="Quality gating and analytics for sub-agent responses",
    add_completion=False,
)


# ─── Global option callbacks ───────────────────────────────────────


def version_callback(value: bool) -> None:
    if value:
        console.print(f"Arbiter v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="ARBITER_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="ARBITER_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="ARBITER_LOG_FORMAT",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML configuration file",
            envvar="ARBITER_CONFIG",
        ),
    ] = None,
) -> None:
    """Arbiter - quality gating and analytics for sub-agent responses."""
    configure_global_logging(console)
    set_config_path(config)


# Analytics
app.command()(trends)
app.command()(compare)
app.command()(insights)
app.command()(health)
app.command()(report)
app.command()(export)

# Intelligence
app.command()(threshold)
app.command()(anomalies)
app.command()(forecast)


__all__ = ["app", "main"]
