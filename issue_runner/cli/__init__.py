"""CLI package for issue-runner.

Modules:
    app.py       - Main Typer app, version callback, command registration
    operations.py - run, upload, list-uploads and refresh-states commands
    display.py   - Rich formatting for results and folder listings
    common.py    - Shared helpers (get_console, get_project_dir, load_config_or_exit)

Usage:
    from issue_runner.cli import app, cli_main
"""
from issue_runner.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
