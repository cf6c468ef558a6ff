"""Display helpers and formatters for the CLI.

Rich rendering for run results, publish results and folder listings.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from issue_runner.models import OutcomeStatus, PublishResult, ReportStatus, ValidationResult

if TYPE_CHECKING:
    from issue_runner.runner import FolderStatus, RunResult

# Outcome display names and colors
OUTCOME_DISPLAY: dict[OutcomeStatus, tuple[str, str]] = {
    OutcomeStatus.COMPLETED: ("Completed", "green bold"),
    OutcomeStatus.BLOCKED: ("Blocked", "yellow bold"),
    OutcomeStatus.FAILED: ("Failed", "red bold"),
}

REPORT_STATUS_COLORS: dict[ReportStatus, str] = {
    ReportStatus.IN_PROGRESS: "cyan",
    ReportStatus.FAILED: "red",
    ReportStatus.BLOCKED: "yellow",
    ReportStatus.COMPLETE: "green",
}


def format_outcome(status: Optional[OutcomeStatus]) -> str:
    if status is None:
        return "[dim]Not run[/dim]"
    name, style = OUTCOME_DISPLAY[status]
    return f"[{style}]{name}[/{style}]"


def format_report_status(status: Optional[ReportStatus]) -> str:
    if status is None:
        return "[dim]-[/dim]"
    color = REPORT_STATUS_COLORS[status]
    return f"[{color}]{status.value}[/{color}]"


def print_validation(console: Console, validation: ValidationResult) -> None:
    for error in validation.errors:
        console.print(f"  [red]✗[/red] {error}")
    for warning in validation.warnings:
        console.print(f"  [yellow]⚠[/yellow] {warning}")
    if validation.is_valid:
        console.print("  [green]✓[/green] Ready to publish")
        for name in validation.assets.report_filenames:
            console.print(f"    - {name}")


def print_publish_result(console: Console, result: PublishResult) -> None:
    assets = result.uploaded_assets
    if result.success:
        console.print("[green]Published to tracker.[/green]")
    else:
        console.print("[red]Publish failed.[/red]")
    console.print(f"  Comments posted: {len(assets.comments)}")
    console.print(f"  Issue body updated: {'yes' if assets.issue_body else 'no'}")
    console.print(f"  Status updated: {'yes' if assets.status_update else 'no'}")
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")


def print_run_result(console: Console, result: RunResult) -> None:
    lines = [
        f"[cyan]Issue:[/cyan] {result.issue_id}",
        f"[cyan]Operation:[/cyan] {result.operation}",
        f"[cyan]Working folder:[/cyan] {result.working_folder}",
        f"[cyan]Outcome:[/cyan] {format_outcome(result.status)}",
    ]
    if result.output_files and result.output_files.reports:
        lines.append(f"[cyan]Reports:[/cyan] {', '.join(result.output_files.reports)}")
    if result.message:
        lines.append("")
        lines.append(result.message)
    border = "green" if result.status == OutcomeStatus.COMPLETED else "yellow"
    if result.status == OutcomeStatus.FAILED:
        border = "red"
    console.print(Panel("\n".join(lines), title="Operation Result", border_style=border))
    if result.publish is not None:
        print_publish_result(console, result.publish)


def uploads_table(issue_id: str, statuses: list[FolderStatus]) -> Table:
    table = Table(title=f"Working folders for {issue_id}")
    table.add_column("", width=2)
    table.add_column("Folder", style="cyan")
    table.add_column("Operation")
    table.add_column("Latest Report")
    table.add_column("Modified")
    for status in statuses:
        marker = "[green]✓[/green]" if status.ready else "[yellow]⚠[/yellow]"
        name = status.name + (" [magenta][LOCKED][/magenta]" if status.locked else "")
        table.add_row(
            marker,
            name,
            status.operation,
            format_report_status(status.latest_status),
            status.modified.strftime("%Y-%m-%d %H:%M:%S"),
        )
    return table


def print_folder_details(console: Console, status: FolderStatus) -> None:
    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[red]✗[/red]"

    console.print(f"[bold]{status.name}[/bold]")
    console.print(f"  Path: {status.path}")
    console.print("  Required files:")
    console.print(f"    {mark(status.has_original)} original-issue.md")
    if status.locked and not status.has_revised:
        console.print("    [magenta]✓[/magenta] revised-issue.md [magenta][LOCKED][/magenta]")
    else:
        console.print(f"    {mark(status.has_revised)} revised-issue.md")
    if status.reports:
        console.print(f"  Reports ({len(status.reports)}):")
        for name in status.reports:
            console.print(f"    - {name}")
        console.print(f"  Latest status: {format_report_status(status.latest_status)}")
    else:
        console.print("  [red]✗[/red] No reports")
    console.print(f"  Last modified: {status.modified.strftime('%Y-%m-%d %H:%M:%S')}")
