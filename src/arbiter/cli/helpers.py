"""Shared state and helpers for the Arbiter CLI.

Holds the global logging options and the config path set by the root
callback, and builds the ``ArbiterService`` the commands read from.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from arbiter.core.config import ArbiterConfig
from arbiter.core.errors import ConfigurationError
from arbiter.core.logging import configure_logging
from arbiter.service import ArbiterService

from .output import output_error

# ─── Logging configuration ─────────────────────────────────────────


@dataclass
class CliLoggingConfig:
    """Logging options collected from the global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    upper = level.upper()
    if upper not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise typer.BadParameter(f"Invalid log level: {level}")
    _log_config.level = upper  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    lower = fmt.lower()
    if lower not in ("json", "console", "both"):
        raise typer.BadParameter(f"Invalid log format: {fmt}")
    _log_config.format = lower  # type: ignore[assignment]


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global options, once per session.

    Raises:
        typer.Exit: If the options are inconsistent.
    """
    if _log_config.configured:
        return
    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


# ─── Service construction ──────────────────────────────────────────


@dataclass
class CliState:
    config_path: Path | None = None
    service: ArbiterService | None = None


_state = CliState()


def set_config_path(path: Path | None) -> None:
    _state.config_path = path
    _state.service = None


def load_config() -> ArbiterConfig:
    """The config from ``--config``, or defaults when none was given.

    Raises:
        typer.Exit: If the file cannot be loaded.
    """
    if _state.config_path is None:
        return ArbiterConfig()
    try:
        return ArbiterConfig.from_yaml(_state.config_path)
    except ConfigurationError as e:
        output_error(str(e), hints=["Check the file passed with --config"])
        raise typer.Exit(1) from None


def get_service() -> ArbiterService:
    """The service for this invocation, loading persisted analytics once."""
    if _state.service is None:
        _state.service = ArbiterService(load_config())
    return _state.service


def reset_state() -> None:
    """Reset logging and service state (primarily for testing)."""
    _log_config.configured = False
    _state.config_path = None
    _state.service = None
