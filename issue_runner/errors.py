"""
Error types for the issue runner.

This module provides:
- RunnerError and its subclasses for fatal, caller-visible failures
- AgentErrorType enum for categorizing agent process failures
- ErrorClassifier for detecting error types from agent CLI output

Agent process failures are never raised. They are returned as data on
AgentInvocationResult, tagged with an AgentErrorType.
"""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Optional


class RunnerError(Exception):
    """Base exception for issue runner failures."""
    pass


class PromptNotFoundError(RunnerError):
    """Raised when an instruction template file does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Prompt file not found: {path}")
        self.path = path


class PromptFormatError(RunnerError):
    """Raised when an operation template has an invalid heading structure."""

    def __init__(self, path: str, message: str, line_number: Optional[int] = None) -> None:
        location = f"{path}:{line_number}" if line_number is not None else path
        super().__init__(f"Invalid prompt format in {location}: {message}")
        self.path = path
        self.line_number = line_number


class WorkingFolderError(RunnerError):
    """Raised when a working folder cannot be created."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to create working folder {path}: {reason}")
        self.path = path


class ReportValidationError(RunnerError):
    """Raised when a report record is missing a field or has a bad value."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"Invalid report field '{field_name}': {message}")
        self.field_name = field_name


class OperationError(RunnerError):
    """
    Raised when an operation cannot start.

    Covers unknown operation names, issue ids with an unexpected prefix,
    and work items whose remote status does not allow the operation.
    """
    pass


class AgentErrorType(Enum):
    """
    Classification of agent CLI failures.

    Used to decide what to tell the user after a failed invocation.
    """

    # Authentication errors - require user action
    AUTH_REQUIRED = auto()      # Not logged in

    # Rate limiting
    RATE_LIMIT = auto()         # Hit usage limits

    # Server errors
    SERVER_OVERLOADED = auto()  # 529/503 errors

    # Local failures
    TIMEOUT = auto()            # Killed after the configured timeout
    CLI_CRASH = auto()          # Non-zero exit without a known pattern
    CLI_NOT_FOUND = auto()      # Binary could not be spawned
    MISSING_INSTRUCTIONS = auto()  # Instructions file absent, nothing spawned

    UNKNOWN = auto()


class ErrorClassifier:
    """
    Classifies agent failures from CLI output.

    Uses pattern matching on stderr/stdout to determine error type.
    """

    AUTH_PATTERNS = [
        r"unauthorized",
        r"not\s+logged\s+in",
        r"login\s+required",
        r"authentication\s+required",
        r"please\s+log\s+in",
        r"invalid\s+api\s+key",
    ]

    RATE_LIMIT_PATTERNS = [
        r"rate.?limit",
        r"usage\s+limit\s+reached",
        r"too\s+many\s+requests",
        r"\b429\b",
    ]

    OVERLOAD_PATTERNS = [
        r"\b529\b",
        r"overloaded",
        r"\b503\b",
        r"service\s+unavailable",
    ]

    SPAWN_PATTERNS = [
        r"failed\s+to\s+spawn",
        r"no\s+such\s+file\s+or\s+directory",
        r"command\s+not\s+found",
    ]

    @classmethod
    def classify(
        cls,
        stderr: str,
        stdout: str = "",
        returncode: Optional[int] = None,
        timed_out: bool = False,
    ) -> AgentErrorType:
        """
        Classify an agent failure based on its output.

        Args:
            stderr: Standard error output from the agent
            stdout: Standard output from the agent
            returncode: Process exit code, None if the process never exited
            timed_out: Whether the invoker killed the process

        Returns:
            AgentErrorType classification
        """
        if timed_out:
            return AgentErrorType.TIMEOUT

        combined = f"{stderr} {stdout}".lower()

        if returncode is None and cls._matches_any(combined, cls.SPAWN_PATTERNS):
            return AgentErrorType.CLI_NOT_FOUND

        # Auth first, it always needs the user
        if cls._matches_any(combined, cls.AUTH_PATTERNS):
            return AgentErrorType.AUTH_REQUIRED

        if cls._matches_any(combined, cls.RATE_LIMIT_PATTERNS):
            return AgentErrorType.RATE_LIMIT

        if cls._matches_any(combined, cls.OVERLOAD_PATTERNS):
            return AgentErrorType.SERVER_OVERLOADED

        if returncode not in (None, 0):
            return AgentErrorType.CLI_CRASH

        return AgentErrorType.UNKNOWN

    @classmethod
    def _matches_any(cls, text: str, patterns: list[str]) -> bool:
        """Check if text matches any of the given patterns."""
        for pattern in patterns:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        return False


def get_user_action_message(error_type: AgentErrorType, binary: str = "claude") -> str:
    """
    Generate a short message explaining how to recover from an agent failure.

    Args:
        error_type: The classified failure
        binary: Agent binary name, used in install/login hints

    Returns:
        One or two lines of guidance for the terminal.
    """
    if error_type == AgentErrorType.AUTH_REQUIRED:
        return f"The agent CLI is not authenticated. Run `{binary}` once and log in, then retry."

    if error_type == AgentErrorType.CLI_NOT_FOUND:
        return (
            f"The agent CLI `{binary}` could not be started. "
            "Install it or set agent.binary in config.yaml."
        )

    if error_type == AgentErrorType.RATE_LIMIT:
        return "The agent hit its usage limit. Wait a few minutes, then retry with `issue-runner upload` or `run`."

    if error_type == AgentErrorType.SERVER_OVERLOADED:
        return "The agent backend is overloaded. Retry shortly."

    if error_type == AgentErrorType.TIMEOUT:
        return "The agent was stopped after the configured timeout. Raise --timeout or agent.timeout_seconds."

    if error_type == AgentErrorType.MISSING_INSTRUCTIONS:
        return "The instructions file was not written. Check the prompt templates."

    return "The agent exited with an error. Check the working folder and logs for details."
