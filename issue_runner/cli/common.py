"""Common utilities and global state for the CLI.

Contains project directory management and config loading.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console

if TYPE_CHECKING:
    from issue_runner.config import RunnerConfig

CONFIG_FILENAME = "config.yaml"

# Global project directory override (set via --project flag)
_project_dir: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_project_dir() -> Optional[str]:
    """Get the project directory override if set."""
    return _project_dir


def set_project_dir(path: Optional[str]) -> None:
    """Set the project directory override."""
    global _project_dir
    _project_dir = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def config_path() -> Path:
    """config.yaml in the project directory, or in the current directory."""
    return Path(get_project_dir() or ".") / CONFIG_FILENAME


def load_config_or_exit() -> "RunnerConfig":
    """Load config.yaml, printing the problem and exiting 1 if it is unusable."""
    from issue_runner.config import ConfigError, load_config

    try:
        return load_config(str(config_path()))
    except ConfigError as e:
        get_console().print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
