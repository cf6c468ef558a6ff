"""
Working folder file management for one operation attempt.

Writes the issue snapshot before the agent runs and the parsed agent
output after it: revised body, numbered comments, context dump and
report files. Also maintains operation-report.json, a JSON log that is
merged on every update, never overwritten.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from issue_runner.models import (
    ExtractedReport,
    IssueSnapshot,
    OutcomeStatus,
    OutputFileReferences,
    ParsedOutput,
    PublishResult,
    ReportStatus,
    ValidationResult,
    model_to_json,
)
from issue_runner.report_sequencer import REPORT_FILENAME, ReportSequencer, extract_json_block
from issue_runner.utils.fs import FileSystemError, read_file, safe_write, write_file

ORIGINAL_ISSUE_FILE = "original-issue.md"
REVISED_ISSUE_FILE = "revised-issue.md"
INSTRUCTIONS_FILE = "instructions.md"
CONTEXT_DUMP_FILE = "context-dump.md"
OPERATION_REPORT_FILE = "operation-report.json"
COMMENT_FILE_FORMAT = "comment-{:03d}.md"


def render_issue_snapshot(snapshot: IssueSnapshot) -> str:
    """Render a work item as Markdown with a trailing Metadata section."""
    lines = [f"# {snapshot.title or snapshot.identifier}", ""]
    if snapshot.description:
        lines.extend([snapshot.description.rstrip(), ""])
    lines.extend([
        "## Metadata",
        f"- **Identifier**: {snapshot.identifier}",
        f"- **Status**: {snapshot.status or 'Unknown'}",
    ])
    if snapshot.url:
        lines.append(f"- **URL**: {snapshot.url}")
    if snapshot.priority is not None:
        lines.append(f"- **Priority**: {snapshot.priority}")
    if snapshot.assignee:
        lines.append(f"- **Assignee**: {snapshot.assignee}")
    if snapshot.created_at:
        lines.append(f"- **Created**: {snapshot.created_at}")
    if snapshot.updated_at:
        lines.append(f"- **Updated**: {snapshot.updated_at}")
    return "\n".join(lines) + "\n"


class OutputManager:
    """Reads and writes the files of one working folder."""

    def __init__(self, working_folder: Path, sequencer: Optional[ReportSequencer] = None) -> None:
        self.working_folder = Path(working_folder)
        self.sequencer = sequencer or ReportSequencer(self.working_folder)

    def path(self, filename: str) -> Path:
        return self.working_folder / filename

    def write_issue_files(self, snapshot: IssueSnapshot) -> None:
        """Write original-issue.md and an identical revised-issue.md."""
        content = render_issue_snapshot(snapshot)
        write_file(self.path(ORIGINAL_ISSUE_FILE), content)
        write_file(self.path(REVISED_ISSUE_FILE), content)

    def write_output_files(self, parsed: ParsedOutput) -> OutputFileReferences:
        """
        Persist parsed agent output.

        The revised body replaces revised-issue.md; comments are numbered
        from 001 in output order.
        """
        refs = OutputFileReferences()

        if parsed.revised_body:
            write_file(self.path(REVISED_ISSUE_FILE), parsed.revised_body)
            refs.revised_issue = REVISED_ISSUE_FILE

        for index, comment in enumerate(parsed.comments, start=1):
            filename = COMMENT_FILE_FORMAT.format(index)
            write_file(self.path(filename), comment)
            refs.comments.append(filename)

        if parsed.context_note:
            write_file(self.path(CONTEXT_DUMP_FILE), parsed.context_note)
            refs.context_dump = CONTEXT_DUMP_FILE

        return refs

    def write_reports(self, reports: list[ExtractedReport]) -> list[str]:
        """
        Write report bodies found in the agent output.

        A file the agent already saved with the same content is kept as is.
        A name clash with different content gets the next free suffix.
        """
        written = []
        for report in reports:
            target = self.path(report.filename)
            if target.exists():
                try:
                    if read_file(target).strip() == report.content.strip():
                        written.append(report.filename)
                        continue
                except FileSystemError:
                    pass
            match = REPORT_FILENAME.match(report.filename)
            action = match.group("action") if match else "Unknown"
            content = report.content if report.content.endswith("\n") else report.content + "\n"
            if not target.exists() and self._suffix_is_free(report.filename):
                write_file(target, content)
                written.append(report.filename)
            else:
                written.append(self.sequencer.write_content(action, content))
        return written

    def _suffix_is_free(self, filename: str) -> bool:
        """True unless another action already uses this numeric suffix."""
        match = REPORT_FILENAME.match(filename)
        if not match:
            return False
        suffix = int(match.group("suffix"))
        for existing in self.sequencer.list_filenames():
            existing_match = REPORT_FILENAME.match(existing)
            if existing_match and int(existing_match.group("suffix")) == suffix:
                return False
        return True

    def comment_files(self) -> list[str]:
        """comment-NNN.md files in number order."""
        names = [p.name for p in self.working_folder.glob("comment-*.md") if p.is_file()]
        return sorted(names)

    def latest_outcome(self) -> Optional[OutcomeStatus]:
        """Outcome implied by the highest-sequence report, None if unknown."""
        status = self.sequencer.latest_status()
        if status == ReportStatus.COMPLETE:
            return OutcomeStatus.COMPLETED
        if status == ReportStatus.BLOCKED:
            return OutcomeStatus.BLOCKED
        if status == ReportStatus.FAILED:
            return OutcomeStatus.FAILED
        return None

    def read_operation_report(self) -> dict[str, Any]:
        path = self.path(OPERATION_REPORT_FILE)
        if not path.exists():
            return {}
        try:
            data = json.loads(read_file(path))
        except (FileSystemError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def _merge_operation_report(self, updates: dict[str, Any]) -> dict[str, Any]:
        report = self.read_operation_report()
        report.update(updates)
        safe_write(self.path(OPERATION_REPORT_FILE), model_to_json(report, indent=2) + "\n")
        return report

    def update_operation_report(
        self,
        status: OutcomeStatus,
        refs: OutputFileReferences,
        summary: str,
    ) -> dict[str, Any]:
        """Record the agent run, keeping everything else in the file."""
        return self._merge_operation_report({
            "agentExecution": {
                "status": status.value,
                "timestamp": _utc_now(),
                "summary": summary,
                "outputFiles": {
                    "revisedIssue": refs.revised_issue,
                    "comments": refs.comments,
                    "contextDump": refs.context_dump,
                    "reports": refs.reports,
                },
            },
        })

    def record_publish_attempt(
        self,
        result: PublishResult,
        validation: Optional[ValidationResult] = None,
    ) -> dict[str, Any]:
        """Append a publish attempt to the publishAttempts list."""
        attempts = list(self.read_operation_report().get("publishAttempts", []))
        entry: dict[str, Any] = {"timestamp": _utc_now(), **result.to_dict()}
        if validation is not None:
            entry["validation"] = validation.to_dict()
        attempts.append(entry)
        return self._merge_operation_report({"publishAttempts": attempts})

    def summary_from_reports(self) -> Optional[str]:
        """Summary of the latest report, used for the operation report."""
        filename = self.sequencer.latest_filename()
        if filename is None:
            return None
        try:
            data = extract_json_block(read_file(self.path(filename)))
        except FileSystemError:
            return None
        return data.get("summary") if data else None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
