# tests/conftest.py

import stat
import sys
import textwrap
from pathlib import Path
from unittest.mock import Mock

import pytest
from typer.testing import CliRunner

from issue_runner.config import OperationConfig, RunnerConfig
from issue_runner.logger import clear_logger_cache
from issue_runner.models import IssueSnapshot, ReportRecord, ReportStatus
from issue_runner.report_sequencer import ReportSequencer


GENERAL_PROMPT = """# Agent Instructions

You are working on <ArgIssueId> for the <ArgOperation> operation.

## Working Folder

Save everything under <ArgWorkingFolder>.
"""

REVIEW_PROMPT = """## Review

Review the issue and write a report.
"""


@pytest.fixture(autouse=True)
def _isolate_logger_cache():
    clear_logger_cache()
    yield
    clear_logger_cache()


@pytest.fixture
def runner_config(tmp_path):
    """RunnerConfig rooted in tmp_path with one Review operation and its prompts."""
    config = RunnerConfig(
        repo_root=str(tmp_path),
        issue_prefixes=["ENG-"],
        operations={
            "Review": OperationConfig(
                name="Review",
                prompt_file="review.md",
                required_status="In Review",
                success_status="Done",
                blocked_status="Blocked",
            ),
        },
    )
    config.prompts_path.mkdir(parents=True)
    (config.prompts_path / "general.md").write_text(GENERAL_PROMPT)
    (config.prompts_path / "review.md").write_text(REVIEW_PROMPT)
    return config


@pytest.fixture
def tracker():
    """Tracker client double where every call succeeds."""
    client = Mock()
    client.get_status.return_value = "In Review"
    client.get_issue.return_value = IssueSnapshot(
        identifier="ENG-1",
        title="Add login",
        description="Users need to log in.",
        status="In Review",
    )
    client.add_comment.return_value = True
    client.update_body.return_value = True
    client.update_status.return_value = True
    client.check_connection.return_value = True
    return client


def write_report(folder: Path, status: ReportStatus, action: str = "Review", summary: str = "done") -> str:
    """Write one report record into folder and return its filename."""
    record = ReportRecord(
        issue_id="ENG-1",
        operation="Review",
        action=action,
        working_folder=str(folder),
        status=status,
        summary=summary,
    )
    return ReportSequencer(folder).write(record)


@pytest.fixture
def publishable_folder(tmp_path):
    """Working folder with a changed body and a Complete report."""
    folder = tmp_path / "work" / "item-ENG-1" / "op-Review-20250101120000"
    folder.mkdir(parents=True)
    (folder / "original-issue.md").write_text("# Add login\n\nUsers need to log in.\n")
    (folder / "revised-issue.md").write_text(
        "# Add login\n\nUsers need to log in with SSO.\n\n## Metadata\n- **Status**: In Review\n"
    )
    (folder / "comment-001.md").write_text("Clarified the login method.")
    write_report(folder, ReportStatus.COMPLETE)
    return folder


@pytest.fixture
def fake_agent(tmp_path):
    """
    Factory for an executable fake agent CLI.

    The body is Python run after the instructions were read from stdin
    into the variable `instructions`, unless read_stdin is False.
    """
    def _make(body: str, name: str = "fake-agent", read_stdin: bool = True) -> Path:
        script = tmp_path / "bin" / name
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(
            f"#!{sys.executable}\n"
            "import sys, time\n"
            + ("instructions = sys.stdin.read()\n" if read_stdin else "")
            + textwrap.dedent(body)
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


def write_config_yaml(project: Path, extra: str = "") -> Path:
    """Write a minimal config.yaml plus prompts into a project directory."""
    (project / ".issue-runner" / "prompts").mkdir(parents=True, exist_ok=True)
    (project / ".issue-runner" / "prompts" / "general.md").write_text(GENERAL_PROMPT)
    (project / ".issue-runner" / "prompts" / "review.md").write_text(REVIEW_PROMPT)
    path = project / "config.yaml"
    path.write_text(
        "issue_prefixes: [ENG-]\n"
        "operations:\n"
        "  Review:\n"
        "    prompt_file: review.md\n"
        "    required_status: In Review\n"
        "    success_status: Done\n"
        "    blocked_status: Blocked\n"
        + extra
    )
    return path


@pytest.fixture
def report_writer():
    """write_report(folder, status, action=..., summary=...) -> filename"""
    return write_report


@pytest.fixture
def config_yaml():
    """write_config_yaml(project, extra="") -> path"""
    return write_config_yaml
