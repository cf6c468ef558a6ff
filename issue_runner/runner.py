"""
Operation runner.

Drives one operation attempt end to end:

1. check the operation name and the work item prefix
2. allocate a working folder
3. check the work item is in the operation's required status
4. snapshot the work item into original-issue.md / revised-issue.md
5. assemble instructions.md from the general and operation templates
6. run the coding agent
7. persist its output and decide the final status
8. publish automatically when the status is Completed or Blocked

Every step is recorded in the item's issue-operation-log.md. Also provides
publish-only retries for an existing folder and a readiness listing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from issue_runner.agent_invoker import AgentInvoker
from issue_runner.config import OperationConfig, RunnerConfig
from issue_runner.errors import (
    OperationError,
    PromptNotFoundError,
    get_user_action_message,
)
from issue_runner.logger import RunnerLogger, get_logger
from issue_runner.models import (
    AgentInvocationResult,
    InstructionReplacements,
    IssueSnapshot,
    OutcomeStatus,
    OutputFileReferences,
    PublishResult,
    ReportStatus,
    SyncContext,
    ValidationResult,
)
from issue_runner.operation_log import OperationLog
from issue_runner.output_manager import (
    INSTRUCTIONS_FILE,
    ORIGINAL_ISSUE_FILE,
    REVISED_ISSUE_FILE,
    OutputManager,
)
from issue_runner.output_parser import OutputParser
from issue_runner.prompt_assembler import PromptAssembler
from issue_runner.report_sequencer import ReportSequencer
from issue_runner.state_cache import StateCacheRefresher, StateMapper
from issue_runner.sync_orchestrator import SyncOrchestrator
from issue_runner.sync_validator import PRECHECK_ACTION, SyncValidator
from issue_runner.tracker import LinearTracker
from issue_runner.working_folder import WorkingFolderManager, parse_folder_name

if TYPE_CHECKING:
    from issue_runner.tracker import TrackerClient

# A revised body a human froze for review; restored before publishing.
LOCKED_REVISED_FILE = REVISED_ISSUE_FILE + ".locked"

ProgressCallback = Callable[[str, dict], None]


@dataclass
class RunResult:
    """Outcome of OperationRunner.run()."""
    issue_id: str
    operation: str
    working_folder: Path
    status: Optional[OutcomeStatus] = None       # None when the agent did not run
    invocation: Optional[AgentInvocationResult] = None
    output_files: Optional[OutputFileReferences] = None
    publish: Optional[PublishResult] = None
    message: str = ""


@dataclass
class UploadResult:
    """Outcome of a publish-only pass."""
    working_folder: Path
    validation: Optional[ValidationResult] = None   # Set on dry runs
    publish: Optional[PublishResult] = None
    restored_locked_body: bool = False
    removed_prechecks: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        if self.publish is not None:
            return self.publish.success
        return bool(self.validation and self.validation.is_valid)


@dataclass
class FolderStatus:
    """Readiness of one working folder for publishing."""
    path: Path
    operation: str
    has_original: bool
    has_revised: bool
    locked: bool
    reports: list[str]
    latest_status: Optional[ReportStatus]
    modified: datetime

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def ready(self) -> bool:
        return self.has_original and (self.has_revised or self.locked) and bool(self.reports)


def build_tracker(config: RunnerConfig, logger: Optional[RunnerLogger] = None) -> LinearTracker:
    """LinearTracker wired to the shared workflow-state cache."""
    tracker = LinearTracker(config.tracker, logger=logger)
    tracker.state_mapper = StateMapper(build_refresher(config, tracker, logger))
    return tracker


def build_refresher(
    config: RunnerConfig,
    tracker: LinearTracker,
    logger: Optional[RunnerLogger] = None,
) -> StateCacheRefresher:
    return StateCacheRefresher(
        config.state_cache_path,
        tracker.fetch_workflow_states,
        stale_threshold_minutes=config.state_cache.stale_threshold_minutes,
        lock_timeout_seconds=config.state_cache.lock_timeout_seconds,
        logger=logger,
    )


class OperationRunner:
    """Runs operations against work items and publishes their results."""

    def __init__(
        self,
        config: RunnerConfig,
        tracker: Optional[TrackerClient] = None,
        invoker: Optional[AgentInvoker] = None,
        logger: Optional[RunnerLogger] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Args:
            config: Loaded runner configuration.
            tracker: Tracker client; None runs fully offline.
            invoker: Agent invoker (created from config if not provided).
            logger: Event logger; one per work item is created if omitted.
            progress_callback: Optional callback(event, data) for CLI output.
        """
        self.config = config
        self.tracker = tracker
        self.invoker = invoker
        self._logger = logger
        self._progress_callback = progress_callback
        self.folders = WorkingFolderManager(config.work_path)
        self.operation_log = OperationLog(config.work_path)
        self.assembler = PromptAssembler()
        self.parser = OutputParser()

    def _emit_progress(self, event: str, data: Optional[dict] = None) -> None:
        if self._progress_callback:
            self._progress_callback(event, data or {})

    def _logger_for(self, issue_id: str) -> RunnerLogger:
        return self._logger or get_logger(issue_id, self.config)

    def _invoker_for(self, logger: RunnerLogger) -> AgentInvoker:
        if self.invoker is not None:
            return self.invoker
        return AgentInvoker(binary=self.config.agent.binary, logger=logger)

    def resolve_operation(self, operation: str) -> OperationConfig:
        """
        Raises:
            OperationError: If no operation has that name.
        """
        op = self.config.get_operation(operation)
        if op is None:
            valid = ", ".join(self.config.operations) or "(none configured)"
            raise OperationError(
                f"Invalid operation '{operation}'. Valid operations are: {valid}"
            )
        return op

    def check_issue_prefix(self, issue_id: str) -> None:
        prefixes = self.config.issue_prefixes
        if prefixes and not any(issue_id.startswith(p) for p in prefixes):
            raise OperationError(
                f"Issue ID '{issue_id}' does not match configured prefix. "
                f"Expected prefix: {', '.join(prefixes)}"
            )

    def prompt_paths(self, op: OperationConfig) -> tuple[Path, Path]:
        """
        Raises:
            PromptNotFoundError: If either template is missing.
        """
        general = self.config.prompts_path / self.config.general_prompt
        operation = self.config.prompts_path / op.prompt_file
        for path in (general, operation):
            if not path.is_file():
                raise PromptNotFoundError(str(path))
        return general, operation

    def sync_context(self, op: OperationConfig, issue_id: str, folder: Path) -> SyncContext:
        continuous = self.config.sync.continuous_save
        return SyncContext(
            issue_id=issue_id,
            operation=op.name,
            working_folder=folder,
            tracker=self.tracker,
            required_status=op.required_status,
            success_status=op.success_status,
            blocked_status=op.blocked_status,
            suppress_comments=continuous,
            suppress_body=continuous,
        )

    def _record(self, issue_id: str, op: OperationConfig, status: str, folder: Path, **kwargs: Any) -> None:
        self.operation_log.record(issue_id, op.name, status, folder.name, **kwargs)
        self._emit_progress("operation_log", {"status": status, "error": kwargs.get("error")})

    def run(
        self,
        operation: str,
        issue_id: str,
        no_agent: bool = False,
        timeout_minutes: Optional[float] = None,
        headed: bool = False,
        seek_permissions: bool = False,
        test_invalid_issue: bool = False,
    ) -> RunResult:
        """
        Run one operation attempt.

        Args:
            operation: Operation name (case-insensitive).
            issue_id: Work item identifier.
            no_agent: Prepare the folder and instructions only.
            timeout_minutes: Agent timeout; falls back to the configured one.
            headed: Run the agent interactively.
            seek_permissions: Let the agent ask for permissions.
            test_invalid_issue: Add the failure-handling instructions block.

        Raises:
            OperationError: Unknown operation, prefix mismatch, or the work
                item is not in the required status.
            PromptNotFoundError, PromptFormatError: Template problems.
        """
        op = self.resolve_operation(operation)
        self.check_issue_prefix(issue_id)
        general_path, operation_path = self.prompt_paths(op)
        logger = self._logger_for(issue_id)

        folder = self.folders.allocate(issue_id, op.name)
        self._emit_progress("folder_created", {"path": str(folder)})

        with logger.operation_context(op.name, working_folder=folder):
            self._check_remote_status(op, issue_id, folder)
            self._record(issue_id, op, "Started", folder)

            self._write_snapshot(op, issue_id, folder)

            instructions = self.assembler.assemble(
                general_path,
                operation_path,
                InstructionReplacements(issue_id, op.name, str(folder)),
                folder / INSTRUCTIONS_FILE,
                inject_save_protocol=self.config.sync.continuous_save,
                test_invalid_issue=test_invalid_issue,
            )
            self._emit_progress("instructions_assembled", {"path": str(instructions)})

            result = RunResult(issue_id=issue_id, operation=op.name, working_folder=folder)
            if no_agent:
                result.message = "Agent invocation skipped"
                self._record(issue_id, op, "Agent Skipped", folder)
            else:
                self._run_agent(op, issue_id, folder, instructions, result, logger,
                                timeout_minutes, headed, seek_permissions)

            self._record(issue_id, op, "Finished", folder)
            logger.info("operation_outcome", {
                "folder": str(folder),
                "status": result.status.value if result.status else None,
            })
        return result

    def _check_remote_status(self, op: OperationConfig, issue_id: str, folder: Path) -> None:
        if self.tracker is None or not op.required_status:
            return
        try:
            current = self.tracker.get_status(issue_id)
        except Exception as e:
            self._record(issue_id, op, "Blocked - Validation Error", folder, error=str(e))
            raise OperationError(f"Could not validate status of {issue_id}: {e}") from e

        if current is None:
            # Tracker unreachable or no credentials: proceed without the check
            self._emit_progress("status_unverified", {"issue_id": issue_id})
            return
        if current != op.required_status:
            self._record(issue_id, op, "Blocked - Wrong Status", folder)
            raise OperationError(
                f"Issue {issue_id} is not in the required status '{op.required_status}' "
                f"for operation '{op.name}' (current: '{current}')."
            )

    def _write_snapshot(self, op: OperationConfig, issue_id: str, folder: Path) -> None:
        manager = OutputManager(folder)
        snapshot = IssueSnapshot(identifier=issue_id, title=issue_id, status="Unknown")
        error = None
        if self.tracker is not None:
            try:
                snapshot = self.tracker.get_issue(issue_id)
            except Exception as e:
                error = str(e)
        manager.write_issue_files(snapshot)
        if error:
            self._record(issue_id, op, "Issue Extraction Failed", folder, error=error)
        else:
            self._record(issue_id, op, "Issue Extracted", folder)

    def _run_agent(
        self,
        op: OperationConfig,
        issue_id: str,
        folder: Path,
        instructions: Path,
        result: RunResult,
        logger: RunnerLogger,
        timeout_minutes: Optional[float],
        headed: bool,
        seek_permissions: bool,
    ) -> None:
        invoker = self._invoker_for(logger)
        if not invoker.is_available():
            result.message = f"Agent CLI '{invoker.binary}' not found; invocation skipped"
            self._record(issue_id, op, "Agent Skipped - CLI Not Found", folder)
            return

        if timeout_minutes is not None:
            timeout_seconds = timeout_minutes * 60
        else:
            timeout_seconds = self.config.agent.timeout_seconds

        self._record(issue_id, op, "Agent Invocation Started", folder)
        self._emit_progress("agent_started", {"headed": headed})
        invocation = invoker.invoke(
            instructions,
            timeout_seconds=timeout_seconds,
            headed=headed,
            skip_permissions=self.config.agent.skip_permissions and not seek_permissions,
        )
        result.invocation = invocation

        if not invocation.success:
            result.status = OutcomeStatus.FAILED
            if invocation.error_type is not None:
                result.message = get_user_action_message(invocation.error_type, invoker.binary)
            self._record(issue_id, op, "Agent Failed", folder,
                         error=invocation.stderr.strip() or "Unknown error")
            return

        sequencer = ReportSequencer(folder, suffix_mode=self.config.sync.report_suffix, logger=logger)
        manager = OutputManager(folder, sequencer)
        if headed:
            refs = OutputFileReferences()
            fallback = OutcomeStatus.COMPLETED
        else:
            parsed = self.parser.parse(invocation.stdout)
            refs = manager.write_output_files(parsed)
            manager.write_reports(self.parser.extract_report_records(invocation.stdout))
            fallback = parsed.status
        refs.reports = sequencer.list_filenames()
        result.output_files = refs

        status = manager.latest_outcome() or fallback
        result.status = status
        manager.update_operation_report(status, refs, manager.summary_from_reports() or "")
        self._record(issue_id, op, f"Agent {status.value}", folder, output_files=refs)

        if status in (OutcomeStatus.COMPLETED, OutcomeStatus.BLOCKED):
            self._emit_progress("publish_started", {"status": status.value})
            result.publish = self._orchestrator(logger).publish(self.sync_context(op, issue_id, folder))
            if not result.publish.success:
                result.message = (
                    f"Publish failed; retry with: issue-runner upload {op.name} {issue_id} "
                    f"--folder {folder.name}"
                )

    def _orchestrator(self, logger: RunnerLogger) -> SyncOrchestrator:
        return SyncOrchestrator(
            validator=SyncValidator(logger=logger),
            operation_log=self.operation_log,
            logger=logger,
        )

    def find_folder(self, op: OperationConfig, issue_id: str, folder_tag: Optional[str] = None) -> Path:
        """
        Raises:
            OperationError: If no matching folder exists.
        """
        if folder_tag:
            folder = self.folders.resolve_folder(issue_id, folder_tag)
        else:
            folder = self.folders.latest_folder(issue_id, op.name)
        if folder is None:
            wanted = f"matching '{folder_tag}'" if folder_tag else f"for operation '{op.name}'"
            raise OperationError(f"No working folder {wanted} found for {issue_id}")
        return folder

    def publish_only(
        self,
        operation: str,
        issue_id: str,
        folder_tag: Optional[str] = None,
        dry_run: bool = False,
    ) -> UploadResult:
        """
        Publish an existing working folder again.

        Without a tag the newest folder of the operation is used. A dry run
        only validates and changes nothing on disk.
        """
        op = self.resolve_operation(operation)
        folder = self.find_folder(op, issue_id, folder_tag)
        logger = self._logger_for(issue_id)
        context = self.sync_context(op, issue_id, folder)
        upload = UploadResult(working_folder=folder)

        if dry_run:
            upload.validation = SyncValidator(logger=logger).validate(context)
            if (folder / LOCKED_REVISED_FILE).exists() and not (folder / REVISED_ISSUE_FILE).exists():
                upload.validation.warnings.append(
                    f"{REVISED_ISSUE_FILE} is locked; it will be restored on upload"
                )
            return upload

        upload.restored_locked_body = restore_locked_body(folder)
        upload.removed_prechecks = ReportSequencer(folder, logger=logger).remove_reports(PRECHECK_ACTION)
        upload.publish = self._orchestrator(logger).publish(context)
        return upload

    def folder_status(self, folder: Path) -> FolderStatus:
        sequencer = ReportSequencer(folder)
        parsed = parse_folder_name(folder.name)
        return FolderStatus(
            path=folder,
            operation=parsed[0] if parsed else "",
            has_original=(folder / ORIGINAL_ISSUE_FILE).is_file(),
            has_revised=(folder / REVISED_ISSUE_FILE).is_file(),
            locked=(folder / LOCKED_REVISED_FILE).is_file(),
            reports=sequencer.list_filenames(),
            latest_status=sequencer.latest_status(),
            modified=datetime.fromtimestamp(folder.stat().st_mtime),
        )

    def list_uploads(self, issue_id: str, folder_tag: Optional[str] = None) -> list[FolderStatus]:
        """
        Readiness of the item's working folders, oldest first.

        With a tag only the matching folder is returned.

        Raises:
            OperationError: If a tag is given and no folder matches.
        """
        if folder_tag:
            folder = self.folders.resolve_folder(issue_id, folder_tag)
            if folder is None:
                raise OperationError(f"No working folder matching '{folder_tag}' found for {issue_id}")
            return [self.folder_status(folder)]
        return [self.folder_status(f) for f in self.folders.list_folders(issue_id)]


def restore_locked_body(folder: Path) -> bool:
    """Rename a locked revised body back into place; True if renamed."""
    locked = folder / LOCKED_REVISED_FILE
    revised = folder / REVISED_ISSUE_FILE
    if locked.is_file() and not revised.exists():
        locked.rename(revised)
        return True
    return False
