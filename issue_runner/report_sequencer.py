"""
Report file persistence.

Each lifecycle event is written to its own file in the working folder:

    report-<action>-<NNN>.md

NNN is one more than the highest suffix already present, across all
actions, so numbers are never reused even when earlier files are deleted.
In timestamp mode the suffix is YYYYMMDDHHMMSS instead. Order is always
derived from the numeric suffix, never from file modification times.

File layout:

    ## report-json
    ```json
    {"workItemId": ..., "operation": ..., "status": ..., ...}
    ```

    ## Report Payload
    <payload or "- <summary>">
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from issue_runner.errors import ReportValidationError
from issue_runner.models import ReportRecord, ReportStatus
from issue_runner.utils.fs import FileSystemError, ensure_dir, read_file

if TYPE_CHECKING:
    from issue_runner.logger import RunnerLogger

logger = logging.getLogger(__name__)

REPORT_FILENAME = re.compile(r"^report-(?P<action>.+)-(?P<suffix>\d+)\.md$")
PAYLOAD_HEADINGS = ("## Report Payload", "## Operation Report Payload")
SUFFIX_SEQUENCE = "sequence"
SUFFIX_TIMESTAMP = "timestamp"

_JSON_FENCE = re.compile(r"```(?:json)?[ \t]*\n(.*?)\n[ \t]*```", re.DOTALL)


def sanitize_action(action: str) -> str:
    """Keep only letters, digits and hyphens."""
    return re.sub(r"[^a-zA-Z0-9-]", "", action)


def report_suffix(filename: str) -> Optional[int]:
    """Numeric suffix of a report filename, None if it is not one."""
    match = REPORT_FILENAME.match(filename)
    return int(match.group("suffix")) if match else None


def render_report(data: dict[str, Any], payload: Optional[str] = None) -> str:
    """Render a report JSON object and payload into file content."""
    body = payload if payload else f"- {data.get('summary', '')}"
    return (
        "## report-json\n"
        "```json\n"
        f"{json.dumps(data, indent=2)}\n"
        "```\n"
        "\n"
        "## Report Payload\n"
        f"{body}\n"
    )


def extract_json_block(text: str) -> Optional[dict[str, Any]]:
    """First fenced JSON object in text, None if absent or malformed."""
    match = _JSON_FENCE.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning("Malformed report JSON ignored: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("Report JSON is not an object, ignored")
        return None
    return data


class ReportSequencer:
    """Writes and reads report files in one working folder."""

    REQUIRED_FIELDS = ("issue_id", "operation", "action", "working_folder", "status", "summary")

    def __init__(
        self,
        working_folder: Path,
        suffix_mode: str = SUFFIX_SEQUENCE,
        logger: Optional[RunnerLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if suffix_mode not in (SUFFIX_SEQUENCE, SUFFIX_TIMESTAMP):
            raise ValueError(f"Unknown report suffix mode: {suffix_mode}")
        self.working_folder = Path(working_folder)
        self.suffix_mode = suffix_mode
        self.logger = logger
        self._clock = clock or datetime.now

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self.logger:
            self.logger.log(event_type, data, level=level)

    def validate(self, record: ReportRecord) -> None:
        """
        Check required fields and status.

        Raises:
            ReportValidationError: Naming the first bad field.
        """
        for name in self.REQUIRED_FIELDS:
            value = getattr(record, name, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ReportValidationError(name, "missing required field")

        if not isinstance(record.status, ReportStatus):
            status = ReportStatus.parse(record.status)
            if status is None:
                valid = ", ".join(s.value for s in ReportStatus)
                raise ReportValidationError(
                    "status", f"'{record.status}' is not one of {valid}"
                )
            record.status = status

        if not sanitize_action(record.action):
            raise ReportValidationError("action", f"'{record.action}' has no usable characters")

    def write(self, record: ReportRecord) -> str:
        """
        Persist a report record.

        Args:
            record: The record; timestamp is filled in when missing.

        Returns:
            The new report filename.

        Raises:
            ReportValidationError: If a field is missing or invalid. Nothing is written.
            FileSystemError: If the file cannot be created.
        """
        self.validate(record)
        if not record.timestamp:
            record.timestamp = self._clock().astimezone().isoformat(timespec="seconds")

        content = render_report(record.to_dict(), record.payload)
        filename = self.write_content(record.action, content)
        self._log("report_written", {
            "filename": filename,
            "action": record.action,
            "status": record.status.value,
        })
        return filename

    def write_content(self, action: str, content: str) -> str:
        """
        Write pre-rendered report content under the next free suffix.

        Used for report bodies the agent produced inline, which are kept
        verbatim.
        """
        action = sanitize_action(action) or "Unknown"
        ensure_dir(self.working_folder)

        suffix = self._next_suffix()
        while True:
            filename = self._format_filename(action, suffix)
            path = self.working_folder / filename
            try:
                # Exclusive create; a racing writer moves us to the next suffix
                with path.open("x", encoding="utf-8") as f:
                    f.write(content)
                return filename
            except FileExistsError:
                suffix = self._bump(suffix)
            except OSError as e:
                raise FileSystemError(f"Failed to write report {path}: {e}")

    def _format_filename(self, action: str, suffix: int) -> str:
        if self.suffix_mode == SUFFIX_TIMESTAMP:
            return f"report-{action}-{suffix:014d}.md"
        return f"report-{action}-{suffix:03d}.md"

    def _next_suffix(self) -> int:
        existing = [report_suffix(name) for name in self.list_filenames()]
        highest = max((s for s in existing if s is not None), default=0)
        if self.suffix_mode == SUFFIX_TIMESTAMP:
            stamp = int(self._clock().strftime("%Y%m%d%H%M%S"))
            return stamp if stamp > highest else self._bump(highest)
        return highest + 1

    def _bump(self, suffix: int) -> int:
        if self.suffix_mode == SUFFIX_TIMESTAMP:
            when = datetime.strptime(f"{suffix:014d}", "%Y%m%d%H%M%S") + timedelta(seconds=1)
            return int(when.strftime("%Y%m%d%H%M%S"))
        return suffix + 1

    def list_filenames(self) -> list[str]:
        """Report filenames ordered by numeric suffix."""
        if not self.working_folder.is_dir():
            return []
        names = [
            p.name for p in self.working_folder.iterdir()
            if p.is_file() and REPORT_FILENAME.match(p.name)
        ]
        return sorted(names, key=lambda name: (report_suffix(name), name))

    def read_report(self, filename: str) -> Optional[ReportRecord]:
        """Parse one report file, None if missing or unreadable."""
        path = self.working_folder / filename
        try:
            content = read_file(path)
        except FileSystemError:
            return None

        data = extract_json_block(content)
        if data is None:
            logger.warning("Report %s has no readable JSON block", filename)
            return None

        payload = None
        for heading in PAYLOAD_HEADINGS:
            index = content.find(heading)
            if index != -1:
                payload = content[index + len(heading):].strip()
                break

        return ReportRecord.from_dict(data, payload=payload)

    def read_all(self) -> list[ReportRecord]:
        """All readable reports in sequence order."""
        records = []
        for filename in self.list_filenames():
            record = self.read_report(filename)
            if record is not None:
                records.append(record)
        return records

    def latest_filename(self) -> Optional[str]:
        names = self.list_filenames()
        return names[-1] if names else None

    def latest_status(self) -> Optional[ReportStatus]:
        """
        Status of the highest-sequence report.

        Returns None when there are no reports, the latest one cannot be
        parsed, or its status is not recognized.
        """
        filename = self.latest_filename()
        if filename is None:
            return None
        record = self.read_report(filename)
        if record is None or not isinstance(record.status, ReportStatus):
            return None
        return record.status

    def remove_reports(self, action: str) -> list[str]:
        """Delete every report for one action; returns the removed names."""
        removed = []
        wanted = sanitize_action(action)
        for filename in self.list_filenames():
            match = REPORT_FILENAME.match(filename)
            if match and match.group("action") == wanted:
                (self.working_folder / filename).unlink()
                removed.append(filename)
        if removed:
            self._log("reports_removed", {"action": action, "files": removed})
        return removed
