"""
Core data models for the issue runner.

This module defines the data structures passed between the lifecycle
components:
- Enums for parsed outcomes and report statuses
- Dataclasses for agent results, parsed output, report records,
  validation and publish results
- JSON serialization support for the persisted models
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING

from issue_runner.errors import AgentErrorType

if TYPE_CHECKING:
    from issue_runner.tracker import TrackerClient


class OutcomeStatus(Enum):
    """Outcome of one agent run, as derived from its output."""
    COMPLETED = "Completed"
    BLOCKED = "Blocked"
    FAILED = "Failed"


class ReportStatus(Enum):
    """
    Status carried by a report record.

    IN_PROGRESS is the only non-terminal value. Of the terminal values
    only BLOCKED and COMPLETE may be published.
    """
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"
    BLOCKED = "Blocked"
    COMPLETE = "Complete"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_publishable(self) -> bool:
        return self in PUBLISHABLE_STATUSES

    @classmethod
    def parse(cls, value: Any) -> Optional[ReportStatus]:
        """Map a raw status string to a ReportStatus, None if unrecognized."""
        if isinstance(value, ReportStatus):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().replace(" ", "").replace("_", "").lower()
        for status in cls:
            if status.value.lower() == normalized:
                return status
        # Agents write "Completed" as often as "Complete"
        if normalized == "completed":
            return cls.COMPLETE
        return None


TERMINAL_STATUSES = frozenset({ReportStatus.FAILED, ReportStatus.BLOCKED, ReportStatus.COMPLETE})
PUBLISHABLE_STATUSES = frozenset({ReportStatus.BLOCKED, ReportStatus.COMPLETE})


@dataclass(frozen=True)
class InstructionReplacements:
    """Values substituted into the general instruction template."""
    issue_id: str
    operation: str
    working_folder: str


@dataclass
class AgentInvocationResult:
    """
    Result of one agent process run.

    success is True only for exit code 0. Timeouts and spawn failures
    always carry success=False with a synthesized stderr message.
    """
    exit_code: Optional[int]
    stdout: str
    stderr: str
    success: bool
    timed_out: bool = False
    error_type: Optional[AgentErrorType] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["error_type"] = self.error_type.name if self.error_type else None
        return data


@dataclass(frozen=True)
class ParsedOutput:
    """Structured view of an agent's stdout. Never mutated after parsing."""
    status: OutcomeStatus = OutcomeStatus.FAILED
    revised_body: Optional[str] = None
    comments: list[str] = field(default_factory=list)
    blocking_questions: list[str] = field(default_factory=list)
    embedded_report: Optional[dict[str, Any]] = None
    context_note: Optional[str] = None


@dataclass
class ReportRecord:
    """
    One lifecycle event written by the agent or the runner.

    Persisted as report-<action>-<suffix>.md; the suffix, not the file
    modification time, orders records within a working folder.
    """
    issue_id: str
    operation: str
    action: str
    working_folder: str
    status: ReportStatus
    summary: str
    timestamp: Optional[str] = None
    payload: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON block stored in report files."""
        return {
            "workItemId": self.issue_id,
            "operation": self.operation,
            "action": self.action,
            "workingFolder": self.working_folder,
            "status": self.status.value if isinstance(self.status, ReportStatus) else self.status,
            "timestamp": self.timestamp,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], payload: Optional[str] = None) -> ReportRecord:
        """
        Create from a report JSON block.

        Accepts the legacy keys issueId and operationStatus. An unknown
        status is kept as the raw string so validation can name it.
        """
        raw_status = data.get("status", data.get("operationStatus"))
        status = ReportStatus.parse(raw_status)
        return cls(
            issue_id=data.get("workItemId", data.get("issueId", "")),
            operation=data.get("operation", ""),
            action=data.get("action", ""),
            working_folder=data.get("workingFolder", ""),
            status=status if status is not None else raw_status,
            summary=data.get("summary", ""),
            timestamp=data.get("timestamp"),
            payload=payload,
        )


@dataclass
class ExtractedReport:
    """A report file body found inline in agent output."""
    filename: str
    content: str


@dataclass
class ValidationAssets:
    """What the validator found in the working folder."""
    has_revised_body: bool = False
    report_filenames: list[str] = field(default_factory=list)
    has_terminal_status: bool = False
    terminal_status: Optional[ReportStatus] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["terminal_status"] = self.terminal_status.value if self.terminal_status else None
        return data


@dataclass
class ValidationResult:
    """
    Outcome of the pre-publish gate.

    Computed fresh on every call. errors holds every failed check;
    warnings holds checks that could not be performed.
    """
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    assets: ValidationAssets = field(default_factory=ValidationAssets)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "assets": self.assets.to_dict(),
        }


@dataclass
class UploadedAssets:
    """Which artifact classes reached the tracker."""
    comments: list[str] = field(default_factory=list)
    issue_body: bool = False
    status_update: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PublishResult:
    """Aggregated outcome of a publish attempt."""
    success: bool
    uploaded_assets: UploadedAssets = field(default_factory=UploadedAssets)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "uploaded_assets": self.uploaded_assets.to_dict(),
            "errors": list(self.errors),
        }


@dataclass
class SyncContext:
    """Everything the validator and orchestrator need for one folder."""
    issue_id: str
    operation: str
    working_folder: Path
    tracker: Optional[TrackerClient] = None
    required_status: Optional[str] = None
    success_status: Optional[str] = None
    blocked_status: Optional[str] = None
    suppress_comments: bool = False
    suppress_body: bool = False


@dataclass
class OutputFileReferences:
    """Files written from one agent run, relative to the working folder."""
    revised_issue: Optional[str] = None
    comments: list[str] = field(default_factory=list)
    context_dump: Optional[str] = None
    reports: list[str] = field(default_factory=list)

    def all_files(self) -> list[str]:
        files: list[str] = []
        if self.revised_issue:
            files.append(self.revised_issue)
        files.extend(self.comments)
        if self.context_dump:
            files.append(self.context_dump)
        files.extend(self.reports)
        return files


@dataclass
class OperationLogEntry:
    """One section of issue-operation-log.md."""
    timestamp: str
    operation: str
    status: str
    folder_path: str
    error: Optional[str] = None
    output_files: Optional[OutputFileReferences] = None


@dataclass
class IssueSnapshot:
    """Work item fields fetched from the tracker."""
    identifier: str
    title: str = ""
    description: str = ""
    status: str = ""
    url: str = ""
    priority: Optional[int] = None
    assignee: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class RunnerEncoder(json.JSONEncoder):
    """JSON encoder that handles issue runner model types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Path):
            return str(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def model_to_json(obj: Any, **kwargs: Any) -> str:
    """Serialize a model object to JSON string."""
    return json.dumps(obj, cls=RunnerEncoder, **kwargs)
