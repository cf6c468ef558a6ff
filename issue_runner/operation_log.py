"""
Append-only operation log for a work item.

Each work item has a human-readable Markdown log at
<workroot>/item-<id>/issue-operation-log.md. The file starts with a
"# Operation Log for <id>" title; every entry is one "## <timestamp>"
section. Entries are only ever appended.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from issue_runner.models import OperationLogEntry, OutputFileReferences
from issue_runner.utils.fs import FileSystemError, append_file, read_file

LOG_FILENAME = "issue-operation-log.md"
LOG_TITLE_PREFIX = "# Operation Log for"


class OperationLog:
    """
    Append-only Markdown log of operation attempts.

    Never truncates - only appends.
    """

    def __init__(self, work_root: Path) -> None:
        """
        Args:
            work_root: Directory holding the item-<id> folders.
        """
        self.work_root = Path(work_root)

    def log_path(self, issue_id: str) -> Path:
        return self.work_root / f"item-{issue_id}" / LOG_FILENAME

    def append(self, issue_id: str, entry: OperationLogEntry) -> None:
        """
        Append one entry, creating the file with its title first if needed.

        Raises:
            FileSystemError: If the log cannot be written.
        """
        path = self.log_path(issue_id)
        text = self.format_entry(entry)
        if not path.exists():
            text = f"{LOG_TITLE_PREFIX} {issue_id}\n\n" + text
        append_file(path, text)

    def record(
        self,
        issue_id: str,
        operation: str,
        status: str,
        folder_path: str,
        error: Optional[str] = None,
        output_files: Optional[OutputFileReferences] = None,
    ) -> OperationLogEntry:
        """Build an entry stamped with the current time and append it."""
        entry = OperationLogEntry(
            timestamp=self.now(),
            operation=operation,
            status=status,
            folder_path=folder_path,
            error=error,
            output_files=output_files,
        )
        self.append(issue_id, entry)
        return entry

    def read(self, issue_id: str) -> Optional[str]:
        """Full log text, None if nothing was logged yet."""
        path = self.log_path(issue_id)
        if not path.exists():
            return None
        return read_file(path)

    def exists(self, issue_id: str) -> bool:
        return self.log_path(issue_id).exists()

    @staticmethod
    def now() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def format_entry(entry: OperationLogEntry) -> str:
        lines = [
            f"## {entry.timestamp}",
            f"- **Operation**: {entry.operation}",
            f"- **Status**: {entry.status}",
            f"- **Folder**: {entry.folder_path}",
        ]
        if entry.error:
            lines.append(f"- **Error**: {entry.error}")

        files = entry.output_files
        if files is not None:
            lines.append("- **Output Files**:")
            if files.revised_issue:
                lines.append(f"  - Revised Issue: {files.revised_issue}")
            if files.comments:
                lines.append(f"  - Comments: {', '.join(files.comments)}")
            if files.context_dump:
                lines.append(f"  - Context Dump: {files.context_dump}")
            if files.reports:
                lines.append(f"  - Reports: {', '.join(files.reports)}")

        return "\n".join(lines) + "\n\n"


__all__ = ["OperationLog", "LOG_FILENAME", "LOG_TITLE_PREFIX", "FileSystemError"]
