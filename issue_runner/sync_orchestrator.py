"""
Publishes a validated working folder to the tracker.

Three artifact classes are published independently:
- comments: comment-NNN.md files, then report files, in order
- issue body: revised-issue.md
- status transition: Complete -> success status, Blocked -> blocked status

A failure in one class never stops the others. The attempt succeeds only
if every attempted class succeeded. Comment and body classes are skipped
(and count as successful) when the context suppresses them, which is the
case in continuous-save mode where the agent already saved as it went.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from issue_runner.content_cleaner import clean_comment_content, clean_issue_body
from issue_runner.models import (
    PublishResult,
    ReportStatus,
    SyncContext,
    UploadedAssets,
    ValidationResult,
)
from issue_runner.output_manager import REVISED_ISSUE_FILE, OutputManager
from issue_runner.sync_validator import SyncValidator
from issue_runner.utils.fs import FileSystemError, read_file

if TYPE_CHECKING:
    from issue_runner.logger import RunnerLogger
    from issue_runner.operation_log import OperationLog

logger = logging.getLogger(__name__)

STATUS_PUBLISHING = "Publishing"
STATUS_PUBLISHED = "Published"
STATUS_PUBLISH_FAILED = "Publish Failed"
STATUS_PRECHECK_FAILED = "Blocked - Precheck Failed"


class SyncOrchestrator:
    """
    Runs the pre-publish gate and then publishes each artifact class.

    All tracker calls are optional in the sense that a failure is
    collected into the result, never raised.
    """

    def __init__(
        self,
        validator: Optional[SyncValidator] = None,
        operation_log: Optional[OperationLog] = None,
        logger: Optional[RunnerLogger] = None,
        record_precheck_failures: bool = False,
    ) -> None:
        """
        Args:
            validator: Gate to run first; a default one is created if omitted.
            operation_log: Where start, completion and failure entries go.
            logger: Optional event logger.
            record_precheck_failures: Also write an UploadPrecheck report when
                the gate fails. Off by default; the validator skips such reports.
        """
        self._logger = logger
        self.validator = validator or SyncValidator(logger=logger)
        self.operation_log = operation_log
        self.record_precheck_failures = record_precheck_failures

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "sync_orchestrator"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def publish(self, context: SyncContext) -> PublishResult:
        """
        Validate and publish one working folder.

        Args:
            context: Folder, operation statuses and tracker client.

        Returns:
            PublishResult with per-class outcomes and every error collected.
        """
        try:
            validation = self.validator.validate(context)
            if not validation.is_valid:
                return self._reject(context, validation)
            self._record(context, STATUS_PUBLISHING)
            result = self._publish_assets(context, validation)
        except Exception as e:
            logger.exception("Unexpected error publishing %s", context.working_folder)
            result = PublishResult(success=False, errors=[f"Unexpected publish error: {e}"])
            self._record_failure(context, result)
            return result

        self._record(
            context,
            STATUS_PUBLISHED if result.success else STATUS_PUBLISH_FAILED,
            error="; ".join(result.errors) or None,
        )
        self._store_attempt(context, result, validation)
        self._log("publish_complete", {
            "issue_id": context.issue_id,
            "success": result.success,
            "assets": result.uploaded_assets.to_dict(),
            "errors": result.errors,
        }, level="info" if result.success else "warn")
        return result

    def _reject(self, context: SyncContext, validation: ValidationResult) -> PublishResult:
        result = PublishResult(success=False, errors=list(validation.errors))
        if self.record_precheck_failures:
            self.validator.write_precheck_report(context, validation)
        self._record(context, STATUS_PRECHECK_FAILED, error="; ".join(validation.errors))
        self._store_attempt(context, result, validation)
        self._log("publish_rejected", {
            "issue_id": context.issue_id,
            "errors": validation.errors,
        }, level="warn")
        return result

    def _publish_assets(self, context: SyncContext, validation: ValidationResult) -> PublishResult:
        tracker = context.tracker
        if tracker is None:
            return PublishResult(success=False, errors=["No tracker client configured"])

        assets = UploadedAssets()
        errors: list[str] = []
        manager = OutputManager(context.working_folder)

        if context.suppress_comments:
            comments_ok = True
        else:
            comments_ok = self._publish_comments(
                context, manager, validation.assets.report_filenames, assets, errors
            )

        if context.suppress_body:
            body_ok = True
            assets.issue_body = True
        else:
            body_ok = self._publish_body(context, errors)
            assets.issue_body = body_ok

        status_ok = True
        target = self._target_status(context, validation.assets.terminal_status)
        if target:
            status_ok = self._publish_status(context, target, errors)
            assets.status_update = status_ok

        return PublishResult(
            success=comments_ok and body_ok and status_ok,
            uploaded_assets=assets,
            errors=errors,
        )

    def _publish_comments(
        self,
        context: SyncContext,
        manager: OutputManager,
        reports: list[str],
        assets: UploadedAssets,
        errors: list[str],
    ) -> bool:
        ok = True
        for filename in manager.comment_files() + reports:
            try:
                text = clean_comment_content(read_file(manager.path(filename))).strip()
            except FileSystemError as e:
                errors.append(f"Could not read {filename}: {e}")
                ok = False
                continue
            if not text:
                continue
            try:
                posted = context.tracker.add_comment(context.issue_id, text)
            except Exception as e:
                errors.append(f"Failed to post {filename}: {e}")
                ok = False
                continue
            if posted:
                assets.comments.append(filename)
            else:
                errors.append(f"Failed to post {filename}")
                ok = False
        return ok

    def _publish_body(self, context: SyncContext, errors: list[str]) -> bool:
        try:
            body = clean_issue_body(read_file(context.working_folder / REVISED_ISSUE_FILE))
        except FileSystemError as e:
            errors.append(f"Could not read {REVISED_ISSUE_FILE}: {e}")
            return False
        if not body.strip():
            errors.append(f"{REVISED_ISSUE_FILE} is empty after cleaning")
            return False
        try:
            updated = context.tracker.update_body(context.issue_id, body)
        except Exception as e:
            errors.append(f"Failed to update issue body: {e}")
            return False
        if not updated:
            errors.append("Failed to update issue body")
        return bool(updated)

    @staticmethod
    def _target_status(context: SyncContext, status: Optional[ReportStatus]) -> Optional[str]:
        if status == ReportStatus.COMPLETE:
            return context.success_status
        if status == ReportStatus.BLOCKED:
            return context.blocked_status
        return None

    def _publish_status(self, context: SyncContext, target: str, errors: list[str]) -> bool:
        try:
            updated = context.tracker.update_status(context.issue_id, target)
        except Exception as e:
            errors.append(f"Failed to move {context.issue_id} to '{target}': {e}")
            return False
        if not updated:
            errors.append(f"Failed to move {context.issue_id} to '{target}'")
        return bool(updated)

    def _record(self, context: SyncContext, status: str, error: Optional[str] = None) -> None:
        if self.operation_log is None:
            return
        try:
            self.operation_log.record(
                context.issue_id,
                context.operation,
                status,
                str(context.working_folder),
                error=error,
            )
        except Exception as e:
            logger.warning("Could not append to operation log: %s", e)

    def _store_attempt(
        self,
        context: SyncContext,
        result: PublishResult,
        validation: Optional[ValidationResult],
    ) -> None:
        try:
            OutputManager(context.working_folder).record_publish_attempt(result, validation)
        except Exception as e:
            logger.warning("Could not record publish attempt: %s", e)

    def _record_failure(self, context: SyncContext, result: PublishResult) -> None:
        self._record(context, STATUS_PUBLISH_FAILED, error="; ".join(result.errors))
        self._store_attempt(context, result, None)
        self._log("publish_failed", {
            "issue_id": context.issue_id,
            "errors": result.errors,
        }, level="error")
