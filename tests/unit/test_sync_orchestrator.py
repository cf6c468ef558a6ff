"""Tests for publishing a working folder."""

import json
from unittest.mock import Mock

from issue_runner.models import ReportStatus, SyncContext
from issue_runner.operation_log import OperationLog
from issue_runner.report_sequencer import ReportSequencer
from issue_runner.sync_orchestrator import SyncOrchestrator


def _context(folder, tracker, **kwargs):
    kwargs.setdefault("required_status", "In Review")
    kwargs.setdefault("success_status", "Done")
    kwargs.setdefault("blocked_status", "Blocked")
    return SyncContext(
        issue_id="ENG-1",
        operation="Review",
        working_folder=folder,
        tracker=tracker,
        **kwargs,
    )


def _attempts(folder):
    return json.loads((folder / "operation-report.json").read_text())["publishAttempts"]


class TestPublish:

    def test_publishes_every_class(self, publishable_folder, tracker):
        result = SyncOrchestrator().publish(_context(publishable_folder, tracker))

        assert result.success
        assert result.uploaded_assets.comments == ["comment-001.md", "report-Review-001.md"]
        assert result.uploaded_assets.issue_body
        assert result.uploaded_assets.status_update
        tracker.update_status.assert_called_once_with("ENG-1", "Done")

    def test_published_body_is_cleaned(self, publishable_folder, tracker):
        SyncOrchestrator().publish(_context(publishable_folder, tracker))
        body = tracker.update_body.call_args.args[1]
        assert body == "Users need to log in with SSO."

    def test_comment_failure_does_not_stop_body(self, publishable_folder, tracker):
        tracker.add_comment.side_effect = RuntimeError("rate limited")

        result = SyncOrchestrator().publish(_context(publishable_folder, tracker))

        assert result.success is False
        assert result.uploaded_assets.comments == []
        assert result.uploaded_assets.issue_body is True
        assert any("Failed to post comment-001.md" in e for e in result.errors)
        tracker.update_body.assert_called_once()

    def test_blocked_report_uses_blocked_status(self, publishable_folder, tracker, report_writer):
        report_writer(publishable_folder, ReportStatus.BLOCKED)
        SyncOrchestrator().publish(_context(publishable_folder, tracker))
        tracker.update_status.assert_called_once_with("ENG-1", "Blocked")

    def test_no_target_status_skips_transition(self, publishable_folder, tracker):
        result = SyncOrchestrator().publish(_context(publishable_folder, tracker, success_status=None))
        assert result.success
        assert not result.uploaded_assets.status_update
        tracker.update_status.assert_not_called()

    def test_failed_status_update(self, publishable_folder, tracker):
        tracker.update_status.return_value = False
        result = SyncOrchestrator().publish(_context(publishable_folder, tracker))
        assert not result.success
        assert "Failed to move ENG-1 to 'Done'" in result.errors

    def test_suppressed_classes_count_as_success(self, publishable_folder, tracker):
        context = _context(publishable_folder, tracker, suppress_comments=True, suppress_body=True)
        result = SyncOrchestrator().publish(context)

        assert result.success
        assert result.uploaded_assets.issue_body
        tracker.add_comment.assert_not_called()
        tracker.update_body.assert_not_called()

    def test_without_tracker(self, publishable_folder):
        result = SyncOrchestrator().publish(_context(publishable_folder, None))
        assert not result.success
        assert result.errors == ["No tracker client configured"]

    def test_attempt_is_recorded(self, publishable_folder, tracker):
        orchestrator = SyncOrchestrator()
        orchestrator.publish(_context(publishable_folder, tracker))
        tracker.update_body.return_value = False
        orchestrator.publish(_context(publishable_folder, tracker))

        attempts = _attempts(publishable_folder)
        assert [a["success"] for a in attempts] == [True, False]
        assert attempts[0]["validation"]["is_valid"] is True


class TestRejection:

    def test_failed_gate_publishes_nothing(self, publishable_folder, tracker):
        tracker.get_status.return_value = "Done"
        result = SyncOrchestrator().publish(_context(publishable_folder, tracker))

        assert not result.success
        assert result.errors
        tracker.add_comment.assert_not_called()
        tracker.update_body.assert_not_called()
        tracker.update_status.assert_not_called()

    def test_failed_gate_leaves_reports_alone(self, publishable_folder, tracker):
        (publishable_folder / "revised-issue.md").unlink()
        SyncOrchestrator().publish(_context(publishable_folder, tracker))

        assert ReportSequencer(publishable_folder).list_filenames() == ["report-Review-001.md"]
        assert _attempts(publishable_folder)[0]["success"] is False

    def test_precheck_report_on_request(self, publishable_folder, tracker):
        (publishable_folder / "revised-issue.md").unlink()
        SyncOrchestrator(record_precheck_failures=True).publish(_context(publishable_folder, tracker))

        names = ReportSequencer(publishable_folder).list_filenames()
        assert names[-1].startswith("report-UploadPrecheck-")

    def test_retry_succeeds_once_the_cause_is_fixed(self, publishable_folder, tracker):
        orchestrator = SyncOrchestrator(record_precheck_failures=True)
        tracker.get_status.return_value = "Todo"
        assert not orchestrator.publish(_context(publishable_folder, tracker)).success

        tracker.get_status.return_value = "In Review"
        result = orchestrator.publish(_context(publishable_folder, tracker))

        assert result.success, result.errors
        assert result.uploaded_assets.comments == ["comment-001.md", "report-Review-001.md"]
        tracker.update_status.assert_called_once_with("ENG-1", "Done")

    def test_validator_error_is_collected(self, publishable_folder, tracker):
        validator = Mock()
        validator.validate.side_effect = RuntimeError("disk vanished")

        result = SyncOrchestrator(validator=validator).publish(_context(publishable_folder, tracker))

        assert not result.success
        assert result.errors == ["Unexpected publish error: disk vanished"]
        assert _attempts(publishable_folder)[-1]["success"] is False
        tracker.add_comment.assert_not_called()

    def test_operation_log_failure_does_not_escape(self, publishable_folder, tracker):
        operation_log = Mock()
        operation_log.record.side_effect = PermissionError("read-only")

        result = SyncOrchestrator(operation_log=operation_log).publish(_context(publishable_folder, tracker))

        assert result.success


class TestOperationLog:

    def test_publish_entries(self, tmp_path, publishable_folder, tracker):
        log = OperationLog(tmp_path / "work")
        SyncOrchestrator(operation_log=log).publish(_context(publishable_folder, tracker))

        text = log.read("ENG-1")
        assert text.startswith("# Operation Log for ENG-1")
        assert text.index("**Status**: Publishing") < text.index("**Status**: Published")

    def test_rejection_entry(self, tmp_path, publishable_folder, tracker):
        tracker.get_status.return_value = "Done"
        log = OperationLog(tmp_path / "work")
        SyncOrchestrator(operation_log=log).publish(_context(publishable_folder, tracker))
        assert "**Status**: Blocked - Precheck Failed" in log.read("ENG-1")
