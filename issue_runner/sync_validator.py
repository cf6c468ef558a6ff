"""
Pre-publish gate for a working folder.

Every check runs and every failure is collected, so one pass shows all
the problems:

1. original-issue.md and revised-issue.md exist and differ
2. at least one report file exists
3. the highest-sequence report is terminal and publishable

UploadPrecheck reports record earlier failed gates; they are never
counted as reports of the operation itself.
4. the remote work item is still in the operation's required status
   (only with a tracker; an unreachable tracker is a warning, not a failure)

The result is computed fresh on every call.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from issue_runner.models import (
    ReportRecord,
    ReportStatus,
    SyncContext,
    ValidationAssets,
    ValidationResult,
)
from issue_runner.output_manager import ORIGINAL_ISSUE_FILE, REVISED_ISSUE_FILE
from issue_runner.report_sequencer import REPORT_FILENAME, ReportSequencer

if TYPE_CHECKING:
    from issue_runner.logger import RunnerLogger

logger = logging.getLogger(__name__)

PRECHECK_ACTION = "UploadPrecheck"


class SyncValidator:
    """Decides whether a working folder may be published."""

    def __init__(self, logger: Optional[RunnerLogger] = None) -> None:
        self.logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self.logger:
            self.logger.log(event_type, data, level=level)

    def validate(self, context: SyncContext) -> ValidationResult:
        """
        Run every check against the folder.

        Args:
            context: Folder, operation and optional tracker.

        Returns:
            ValidationResult; is_valid is True only with no errors.
        """
        errors: list[str] = []
        warnings: list[str] = []
        assets = ValidationAssets()
        sequencer = ReportSequencer(context.working_folder)

        issue_errors = self._check_issue_files(context)
        if issue_errors:
            errors.extend(issue_errors)
        else:
            assets.has_revised_body = True

        reports = [name for name in sequencer.list_filenames() if not is_precheck_report(name)]
        if reports:
            assets.report_filenames = reports
        else:
            errors.append("No report-*.md files found in working folder")

        status_error, status = self._check_terminal_status(sequencer, reports)
        if status is not None and status.is_terminal:
            assets.has_terminal_status = True
            assets.terminal_status = status
        if status_error:
            errors.append(status_error)

        remote_error, remote_warning = self._check_remote_status(context)
        if remote_error:
            errors.append(remote_error)
        if remote_warning:
            warnings.append(remote_warning)

        result = ValidationResult(
            is_valid=not errors,
            errors=errors,
            assets=assets,
            warnings=warnings,
        )
        self._log("sync_validation", {
            "folder": str(context.working_folder),
            "is_valid": result.is_valid,
            "errors": errors,
            "warnings": warnings,
        }, level="info" if result.is_valid else "warn")
        return result

    def _check_issue_files(self, context: SyncContext) -> list[str]:
        original = context.working_folder / ORIGINAL_ISSUE_FILE
        revised = context.working_folder / REVISED_ISSUE_FILE

        errors = []
        if not original.is_file():
            errors.append(f"{ORIGINAL_ISSUE_FILE} not found in working folder")
        if not revised.is_file():
            errors.append(f"{REVISED_ISSUE_FILE} not found in working folder")
        if errors:
            return errors

        try:
            if original.read_bytes() == revised.read_bytes():
                return [f"{REVISED_ISSUE_FILE} is identical to {ORIGINAL_ISSUE_FILE} - no changes made"]
        except OSError as e:
            return [f"Failed to read issue files: {e}"]
        return []

    def _check_terminal_status(
        self,
        sequencer: ReportSequencer,
        reports: list[str],
    ) -> tuple[Optional[str], Optional[ReportStatus]]:
        if not reports:
            return "Cannot check terminal status - no reports found", None

        latest = reports[-1]
        record = sequencer.read_report(latest)
        if record is None:
            return f"Failed to parse latest report: {latest}", None

        status = record.status
        if not isinstance(status, ReportStatus):
            return (
                f"Latest report ({latest}) has unknown status '{status}'. "
                "Expected: Failed, Blocked, or Complete"
            ), None

        if not status.is_terminal:
            return (
                f"Latest report ({latest}) does not have terminal status. "
                f"Found: {status.value}, Expected: Failed, Blocked, or Complete"
            ), status

        if not status.is_publishable:
            return (
                f"Latest report ({latest}) has status '{status.value}' which cannot be published. "
                "Only 'Blocked' or 'Complete' can be published."
            ), status

        return None, status

    def _check_remote_status(self, context: SyncContext) -> tuple[Optional[str], Optional[str]]:
        """Returns (error, warning)."""
        if context.tracker is None or not context.required_status:
            return None, None

        try:
            current = context.tracker.get_status(context.issue_id)
        except Exception as e:
            message = f"Could not verify remote status of {context.issue_id}: {e}"
            logger.warning(message)
            return None, message

        if current is None:
            message = f"Could not verify remote status of {context.issue_id}: tracker unavailable"
            logger.warning(message)
            return None, message

        if current != context.required_status:
            return (
                f"Work item {context.issue_id} is not in the expected status for "
                f"'{context.operation}'. Current: '{current}', Expected: "
                f"'{context.required_status}'. It may have changed during the operation."
            ), None
        return None, None

    def write_precheck_report(self, context: SyncContext, result: ValidationResult) -> Optional[str]:
        """
        Record a failed gate as an UploadPrecheck report in the folder.

        Best effort: returns the filename, or None if it could not be written.
        """
        record = ReportRecord(
            issue_id=context.issue_id,
            operation=context.operation,
            action=PRECHECK_ACTION,
            working_folder=str(context.working_folder),
            status=ReportStatus.FAILED,
            summary="Pre-publish validation failed",
            payload=format_failure_summary(result),
        )
        try:
            return ReportSequencer(context.working_folder).write(record)
        except Exception as e:
            logger.warning("Could not write precheck report: %s", e)
            return None


def is_precheck_report(filename: str) -> bool:
    match = REPORT_FILENAME.match(filename)
    return bool(match) and match.group("action") == PRECHECK_ACTION


def format_failure_summary(result: ValidationResult) -> str:
    """Markdown summary of a validation result."""
    lines = ["### Precheck Failures", ""]
    for error in result.errors:
        lines.append(f"- ❌ {error}")
    for warning in result.warnings:
        lines.append(f"- ⚠ {warning}")

    lines.extend(["", "### Assets Pending Publish", ""])
    assets = result.assets
    if assets.has_revised_body:
        lines.append(f"- ✅ {REVISED_ISSUE_FILE} (ready)")
    else:
        lines.append(f"- ❌ {REVISED_ISSUE_FILE} (missing or unchanged)")

    if assets.report_filenames:
        lines.append(f"- ✅ {len(assets.report_filenames)} report(s) found:")
        lines.extend(f"  - {name}" for name in assets.report_filenames)
    else:
        lines.append("- ❌ No reports found")

    if assets.has_terminal_status and assets.terminal_status is not None:
        lines.append(f"- ✅ Terminal status: {assets.terminal_status.value}")
    else:
        lines.append("- ❌ No terminal status in latest report")

    return "\n".join(lines) + "\n"
