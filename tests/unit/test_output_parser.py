"""Tests for OutputParser status precedence and artifact extraction."""

from issue_runner.models import OutcomeStatus
from issue_runner.output_parser import OutputParser, split_sections


def _report_block(status, action="Review"):
    return (
        "## report-json\n"
        "```json\n"
        f'{{"workItemId": "ENG-1", "operation": "Review", "action": "{action}", '
        f'"status": "{status}", "summary": "s"}}\n'
        "```\n"
    )


CHECKLIST_DONE = """Working through the task list now.

## Task List
1. (x) Read the issue
2. (x) Check acceptance criteria
3. (X) Write the summary
"""


class TestStatusPrecedence:

    def test_structured_blocked_beats_completed_checklist(self):
        raw = CHECKLIST_DONE + "\n" + _report_block("Blocked")
        parsed = OutputParser().parse(raw)
        assert parsed.status == OutcomeStatus.BLOCKED
        assert parsed.embedded_report["status"] == "Blocked"

    def test_structured_complete_maps_to_completed(self):
        parsed = OutputParser().parse(_report_block("Complete"))
        assert parsed.status == OutcomeStatus.COMPLETED

    def test_last_well_formed_block_wins(self):
        raw = (
            _report_block("Blocked")
            + "\n## report-json\n```json\n{broken\n```\n"
            + _report_block("Complete")
        )
        assert OutputParser().parse(raw).status == OutcomeStatus.COMPLETED

    def test_malformed_block_falls_back_to_sections(self):
        raw = "## report-json\n```json\n{oops}\n```\n\n## Revised Issue Content\nNew body\n"
        parsed = OutputParser().parse(raw)
        assert parsed.embedded_report is None
        assert parsed.status == OutcomeStatus.COMPLETED
        assert parsed.revised_body == "New body"

    def test_questions_mean_blocked(self):
        raw = "## Blocking Questions\n- Which IdP?\n- SSO only?\n\n## Revised Issue Content\nBody\n"
        parsed = OutputParser().parse(raw)
        assert parsed.status == OutcomeStatus.BLOCKED
        assert parsed.blocking_questions == ["Which IdP?", "SSO only?"]

    def test_checklist_all_done_is_completed_with_raw_body(self):
        parsed = OutputParser().parse(CHECKLIST_DONE)
        assert parsed.status == OutcomeStatus.COMPLETED
        assert parsed.revised_body == CHECKLIST_DONE

    def test_checklist_with_blocked_item(self):
        raw = "## Task List\n1. (x) Read\n2. (-) Ask product\n3. ( ) Write\n"
        assert OutputParser().parse(raw).status == OutcomeStatus.BLOCKED

    def test_checklist_partially_done_is_failed(self):
        raw = "## Task List\n1. (x) Read\n2. ( ) Write\n"
        assert OutputParser().parse(raw).status == OutcomeStatus.FAILED

    def test_empty_output_is_failed(self):
        parsed = OutputParser().parse("")
        assert parsed.status == OutcomeStatus.FAILED
        assert parsed.revised_body is None
        assert parsed.comments == []


class TestSections:

    def test_comments_in_order(self):
        raw = "## Comment 1\nFirst\n\n## Comment 2\nSecond\n\n## Comment 3\n\n"
        assert OutputParser().parse(raw).comments == ["First", "Second"]

    def test_context_dump(self):
        parsed = OutputParser().parse("## Context Dump\nLooked at auth.py\n")
        assert parsed.context_note == "Looked at auth.py"

    def test_headings_inside_fences_are_ignored(self):
        raw = "## Revised Issue Content\nBody\n```md\n## Comment 1\nnot a comment\n```\n"
        parsed = OutputParser().parse(raw)
        assert parsed.comments == []
        assert "## Comment 1" in parsed.revised_body

    def test_long_unstructured_output_becomes_body(self):
        raw = "Plain prose without any headings. " * 5
        parsed = OutputParser().parse(raw)
        assert parsed.revised_body == raw
        assert parsed.status == OutcomeStatus.FAILED

    def test_short_unstructured_output_is_dropped(self):
        assert OutputParser().parse("ok").revised_body is None

    def test_split_sections_drops_preamble(self):
        sections = split_sections("intro\n## A\none\n## B\ntwo")
        assert [(s.heading, s.body) for s in sections] == [("A", "one"), ("B", "two")]


class TestReportExtraction:

    def test_inline_reports_by_anchor(self):
        raw = (
            "Saved report-Review-1.md:\n"
            + _report_block("InProgress")
            + "\nThen report-Review-2.md:\n"
            + _report_block("Complete")
        )
        reports = OutputParser().extract_report_records(raw)
        assert [r.filename for r in reports] == ["report-Review-001.md", "report-Review-002.md"]
        assert reports[1].content.startswith("## report-json")
        assert '"Complete"' in reports[1].content

    def test_anchor_without_block_is_skipped(self):
        raw = "I would write report-Review-1.md but did not.\n"
        assert OutputParser().extract_report_records(raw) == []

    def test_single_structured_block_is_synthesized(self):
        reports = OutputParser().extract_report_records(_report_block("Blocked", action="Groom"))
        assert len(reports) == 1
        assert reports[0].filename == "report-Groom-001.md"
        assert "## Report Payload" in reports[0].content
