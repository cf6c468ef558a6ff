"""
Parser for the agent's free-form output.

The agent is asked to answer in Markdown using a few known level-2
sections. Parsing runs in two passes over the same text:

1. strict: the fenced JSON block under "## report-json"
2. lenient: every level-2 section outside code fences, by heading

Status precedence is a contract: the structured block wins, then the
presence of questions, revised body or comments, then the task-list
checklist. Anything that does not fit is kept as the revised body when
it is long enough to matter.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from issue_runner.models import ExtractedReport, OutcomeStatus, ParsedOutput
from issue_runner.report_sequencer import extract_json_block, render_report, sanitize_action

logger = logging.getLogger(__name__)

REPORT_JSON_HEADING = "report-json"
REVISED_BODY_HEADING = "revised issue content"
CONTEXT_HEADING = "context dump"

MIN_RAW_BODY_LENGTH = 100

_HEADING = re.compile(r"^##\s+(.*?)\s*#*\s*$")
_COMMENT_HEADING = re.compile(r"^comment\s+\d+$", re.IGNORECASE)
_QUESTIONS_HEADING = re.compile(r"^blocking\s+questions?$", re.IGNORECASE)
_TASK_LIST_HEADING = re.compile(r"^task\s+list\b", re.IGNORECASE)
_TASK_ITEM = re.compile(r"^\d+\.\s*\(")
_LIST_MARKER = re.compile(r"^(?:[-*+]|\d+[.)])\s*")
_REPORT_ANCHOR = re.compile(r"report-([A-Za-z0-9-]+?)-(\d+)\.md")

_STATUS_MAP = {
    "complete": OutcomeStatus.COMPLETED,
    "completed": OutcomeStatus.COMPLETED,
    "blocked": OutcomeStatus.BLOCKED,
    "failed": OutcomeStatus.FAILED,
}


@dataclass
class Section:
    """A level-2 section: heading text and the lines below it."""
    heading: str
    body: str


def split_sections(text: str) -> list[Section]:
    """
    Split Markdown into level-2 sections.

    Headings inside ``` fences do not start a section. Text before the
    first heading is dropped.
    """
    sections: list[Section] = []
    heading: Optional[str] = None
    body: list[str] = []
    in_fence = False

    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_fence = not in_fence
        elif not in_fence:
            match = _HEADING.match(stripped)
            if match:
                if heading is not None:
                    sections.append(Section(heading, "\n".join(body)))
                heading = match.group(1)
                body = []
                continue
        if heading is not None:
            body.append(line)

    if heading is not None:
        sections.append(Section(heading, "\n".join(body)))
    return sections


class OutputParser:
    """Turns raw agent stdout into ParsedOutput and report files."""

    def parse(self, raw_text: str) -> ParsedOutput:
        """
        Parse agent output. Never raises.

        Args:
            raw_text: The agent's stdout.

        Returns:
            ParsedOutput; status defaults to FAILED.
        """
        if not raw_text or not raw_text.strip():
            return ParsedOutput()

        sections = split_sections(raw_text)

        # Strict pass
        embedded_report = self._find_structured_block(sections)
        structured_status = None
        if embedded_report is not None:
            raw_status = embedded_report.get("status", embedded_report.get("operationStatus"))
            if isinstance(raw_status, str):
                structured_status = _STATUS_MAP.get(raw_status.strip().lower())
            if structured_status is None:
                logger.warning("Structured report has unrecognized status: %r", raw_status)

        # Lenient pass
        revised_body: Optional[str] = None
        context_note: Optional[str] = None
        comments: list[str] = []
        questions: list[str] = []
        task_lines: Optional[list[str]] = None

        for section in sections:
            heading = section.heading.strip()
            lowered = heading.lower()
            if lowered == REVISED_BODY_HEADING and revised_body is None:
                revised_body = section.body.strip()
            elif _COMMENT_HEADING.match(heading):
                comment = section.body.strip()
                if comment:
                    comments.append(comment)
            elif _QUESTIONS_HEADING.match(heading) and not questions:
                questions = _extract_list_items(section.body)
            elif lowered == CONTEXT_HEADING and context_note is None:
                context_note = section.body.strip()
            elif _TASK_LIST_HEADING.match(heading) and task_lines is None:
                task_lines = [
                    line.strip() for line in section.body.split("\n")
                    if _TASK_ITEM.match(line.strip())
                ]

        if revised_body == "":
            revised_body = None

        status = OutcomeStatus.FAILED
        if structured_status is not None:
            status = structured_status
        else:
            if questions:
                status = OutcomeStatus.BLOCKED
            elif revised_body or comments:
                status = OutcomeStatus.COMPLETED

            # Checklist fallback
            if revised_body is None and task_lines:
                done = [line for line in task_lines if re.search(r"\([xX]\)", line)]
                blocked = [line for line in task_lines if "(-)" in line]
                if len(done) == len(task_lines):
                    status = OutcomeStatus.COMPLETED
                elif blocked:
                    status = OutcomeStatus.BLOCKED
                revised_body = raw_text

        if revised_body is None and len(raw_text) > MIN_RAW_BODY_LENGTH:
            revised_body = raw_text

        return ParsedOutput(
            status=status,
            revised_body=revised_body,
            comments=comments,
            blocking_questions=questions,
            embedded_report=embedded_report,
            context_note=context_note,
        )

    def _find_structured_block(self, sections: list[Section]) -> Optional[dict[str, Any]]:
        """Return the last well-formed report JSON block, if any."""
        found: Optional[dict[str, Any]] = None
        for section in sections:
            if section.heading.strip().lower() != REPORT_JSON_HEADING:
                continue
            data = extract_json_block(section.body)
            if data is not None:
                found = data
        return found

    def extract_report_records(self, raw_text: str) -> list[ExtractedReport]:
        """
        Find report files written inline in the output.

        Each "report-<action>-<n>.md" mention followed by a report-json
        block becomes one record. Without any, a single structured block
        is turned into report-<action>-001.md.
        """
        reports: list[ExtractedReport] = []
        seen: set[str] = set()
        anchors = list(_REPORT_ANCHOR.finditer(raw_text or ""))

        for index, anchor in enumerate(anchors):
            end = anchors[index + 1].start() if index + 1 < len(anchors) else len(raw_text)
            segment = raw_text[anchor.end():end]
            marker = segment.find(f"## {REPORT_JSON_HEADING}")
            if marker == -1:
                continue
            filename = f"report-{sanitize_action(anchor.group(1))}-{int(anchor.group(2)):03d}.md"
            if filename in seen:
                continue
            seen.add(filename)
            reports.append(ExtractedReport(filename=filename, content=segment[marker:].strip()))

        if reports:
            return reports

        parsed = self.parse(raw_text) if raw_text else ParsedOutput()
        if parsed.embedded_report is not None:
            data = parsed.embedded_report
            action = sanitize_action(str(data.get("action") or "Unknown")) or "Unknown"
            reports.append(ExtractedReport(
                filename=f"report-{action}-001.md",
                content=render_report(data),
            ))
        return reports


def _extract_list_items(body: str) -> list[str]:
    """Keep bulleted or numbered lines, with their markers stripped."""
    items = []
    for line in body.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped[0] in "-*+" or re.match(r"^\d+[.)]", stripped):
            item = _LIST_MARKER.sub("", stripped, count=1).strip()
            if item:
                items.append(item)
    return items
