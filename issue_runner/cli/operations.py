"""Operation commands: run, upload, list-uploads, refresh-states."""
from __future__ import annotations

from typing import Optional

import typer

from issue_runner.cli.app import app
from issue_runner.cli.common import get_console, load_config_or_exit
from issue_runner.cli.display import (
    print_folder_details,
    print_publish_result,
    print_run_result,
    print_validation,
    uploads_table,
)
from issue_runner.errors import RunnerError
from issue_runner.models import OutcomeStatus
from issue_runner.utils.fs import FileSystemError

console = get_console()


def _build_runner(with_tracker: bool = True):
    from issue_runner.runner import OperationRunner, build_tracker

    config = load_config_or_exit()
    tracker = None
    if with_tracker:
        if config.tracker.get_api_key():
            tracker = build_tracker(config)
        else:
            console.print(
                f"[yellow]{config.tracker.api_key_env_var} is not set; "
                "tracker calls are skipped.[/yellow]"
            )

    def progress(event: str, data: dict) -> None:
        if event == "operation_log":
            console.print(f"[dim]· {data['status']}[/dim]")
        elif event == "folder_created":
            console.print(f"Created working folder: [cyan]{data['path']}[/cyan]")
        elif event == "status_unverified":
            console.print("[yellow]Could not verify the work item status; continuing.[/yellow]")
        elif event == "agent_started":
            mode = "headed" if data.get("headed") else "headless"
            console.print(f"Invoking agent in {mode} mode...")

    return OperationRunner(config, tracker=tracker, progress_callback=progress)


@app.command("run")
def run_command(
    operation: str = typer.Argument(..., help="Operation name (e.g. Review)."),
    issue_id: str = typer.Argument(..., help="Work item identifier (e.g. ENG-123)."),
    no_agent: bool = typer.Option(
        False,
        "--no-agent",
        help="Prepare the working folder and instructions without running the agent.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Agent timeout in minutes (no timeout if not specified).",
    ),
    headed: bool = typer.Option(
        False,
        "--headed",
        help="Run the agent interactively for debugging.",
    ),
    seek_permissions: bool = typer.Option(
        False,
        "--seek-permissions",
        help="Let the agent ask for permissions (default: skip them).",
    ),
    test_invalid_issue: bool = typer.Option(
        False,
        "--test-invalid-issue",
        help="Add instructions that exercise the agent's failure handling.",
    ),
) -> None:
    """
    Run an operation against a work item.

    Example:
        issue-runner run Review ENG-123 --timeout 30
    """
    runner = _build_runner()
    try:
        result = runner.run(
            operation,
            issue_id,
            no_agent=no_agent,
            timeout_minutes=timeout,
            headed=headed,
            seek_permissions=seek_permissions,
            test_invalid_issue=test_invalid_issue,
        )
    except (RunnerError, FileSystemError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    print_run_result(console, result)
    if result.status == OutcomeStatus.FAILED:
        raise typer.Exit(1)
    if result.publish is not None and not result.publish.success:
        raise typer.Exit(1)


@app.command("upload")
def upload_command(
    operation: str = typer.Argument(..., help="Operation name."),
    issue_id: str = typer.Argument(..., help="Work item identifier."),
    folder: Optional[str] = typer.Option(
        None,
        "--folder",
        "-f",
        help="Working folder name or tag (default: newest folder for the operation).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Only validate; show what would be published.",
    ),
) -> None:
    """
    Publish an existing working folder to the tracker.

    Example:
        issue-runner upload Review ENG-123 --folder 20250101120000
    """
    runner = _build_runner()
    try:
        upload = runner.publish_only(operation, issue_id, folder_tag=folder, dry_run=dry_run)
    except (RunnerError, FileSystemError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"Working folder: [cyan]{upload.working_folder}[/cyan]")
    if upload.restored_locked_body:
        console.print("[magenta]Restored locked revised-issue.md[/magenta]")
    for name in upload.removed_prechecks:
        console.print(f"[dim]Removed stale precheck report {name}[/dim]")

    if upload.validation is not None:
        console.print("[bold]Dry run[/bold] - nothing was published")
        print_validation(console, upload.validation)
    if upload.publish is not None:
        print_publish_result(console, upload.publish)

    if not upload.success:
        raise typer.Exit(1)


@app.command("list-uploads")
def list_uploads_command(
    issue_id: str = typer.Argument(..., help="Work item identifier."),
    folder: Optional[str] = typer.Argument(
        None,
        help="Folder name or tag to show in detail.",
    ),
) -> None:
    """
    List working folders and whether they are ready to publish.

    Example:
        issue-runner list-uploads ENG-123
        issue-runner list-uploads ENG-123 op-Review-20250101120000
    """
    runner = _build_runner(with_tracker=False)
    try:
        statuses = runner.list_uploads(issue_id, folder)
    except RunnerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not statuses:
        console.print(f"[dim]No working folders found for {issue_id}.[/dim]")
        return

    if folder:
        print_folder_details(console, statuses[0])
    else:
        console.print(uploads_table(issue_id, statuses))


@app.command("refresh-states")
def refresh_states_command(
    force: bool = typer.Option(
        False,
        "--force",
        help="Refresh even if the cache is not stale.",
    ),
) -> None:
    """
    Refresh the cached workflow-state mappings from the tracker.
    """
    from issue_runner.runner import build_refresher
    from issue_runner.tracker import LinearTracker

    config = load_config_or_exit()
    tracker = LinearTracker(config.tracker)
    if not tracker.enabled:
        console.print(f"[red]Error:[/red] {config.tracker.api_key_env_var} is not set")
        raise typer.Exit(1)

    refresher = build_refresher(config, tracker)
    if refresher.refresh(force=force):
        states = len(refresher.read_cache()["nameToId"])
        console.print(f"[green]Refreshed {states} workflow-state mappings.[/green]")
    elif force or refresher.needs_refresh():
        console.print("[red]Refresh failed; see the log for details.[/red]")
        raise typer.Exit(1)
    else:
        console.print(f"[dim]State cache is up to date: {refresher.cache_path}[/dim]")
