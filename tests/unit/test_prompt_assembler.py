"""Tests for instruction assembly and operation template validation."""

import pytest

from issue_runner.errors import PromptFormatError, PromptNotFoundError
from issue_runner.models import InstructionReplacements
from issue_runner.prompt_assembler import (
    INVALID_ISSUE_BLOCK,
    SAVE_PROTOCOL_ANCHOR,
    PromptAssembler,
)

GENERAL = """# Instructions

Work item: <ArgIssueId>
Operation: <ArgOperation>

## Working Folder

Use <ArgWorkingFolder> for every file. Mention <ArgIssueId> in reports.

## Output

Answer in Markdown.
"""

OPERATION = """## Review

Review the work item.
"""


@pytest.fixture
def templates(tmp_path):
    general = tmp_path / "general.md"
    operation = tmp_path / "review.md"
    general.write_text(GENERAL)
    operation.write_text(OPERATION)
    return general, operation


REPLACEMENTS = InstructionReplacements(issue_id="X-1", operation="Review", working_folder="/tmp/op")


class TestAssemble:

    def test_placeholders_are_replaced_everywhere(self, tmp_path, templates):
        output = PromptAssembler().assemble(*templates, REPLACEMENTS, tmp_path / "out" / "instructions.md")
        text = output.read_text()
        assert "X-1" in text
        assert "<ArgIssueId>" not in text
        assert "<ArgOperation>" not in text
        assert "<ArgWorkingFolder>" not in text
        assert text.count("X-1") == 2
        assert "/tmp/op" in text

    def test_general_then_operation(self, tmp_path, templates):
        text = PromptAssembler().assemble(*templates, REPLACEMENTS, tmp_path / "i.md").read_text()
        assert text.index("# Instructions") < text.index("## Review")
        assert text.endswith(OPERATION)

    def test_save_protocol_goes_inside_working_folder_section(self, tmp_path, templates):
        text = PromptAssembler().assemble(
            *templates, REPLACEMENTS, tmp_path / "i.md", inject_save_protocol=True
        ).read_text()
        anchor = text.index(SAVE_PROTOCOL_ANCHOR)
        protocol = text.index("### Save Protocol")
        assert anchor < protocol < text.index("## Output")

    def test_invalid_issue_block_uses_replaced_id(self, tmp_path, templates):
        text = PromptAssembler().assemble(
            *templates, REPLACEMENTS, tmp_path / "i.md", test_invalid_issue=True
        ).read_text()
        assert "X-1-INVALID" in text
        assert INVALID_ISSUE_BLOCK.splitlines()[0] in text

    def test_missing_template(self, tmp_path, templates):
        general, _ = templates
        with pytest.raises(PromptNotFoundError) as exc:
            PromptAssembler().assemble(general, tmp_path / "nope.md", REPLACEMENTS, tmp_path / "i.md")
        assert "nope.md" in str(exc.value)
        assert not (tmp_path / "i.md").exists()


class TestValidatePromptFormat:

    def test_valid_template(self):
        PromptAssembler().validate_prompt_format("\n## Deliver\nText\n### Sub\n", "deliver.md")

    def test_level1_heading_rejected_with_line(self):
        with pytest.raises(PromptFormatError) as exc:
            PromptAssembler().validate_prompt_format("## Deliver\n\n# Title\n", "deliver.md")
        assert exc.value.line_number == 3
        assert "deliver.md:3" in str(exc.value)

    def test_two_level2_headings_rejected(self):
        with pytest.raises(PromptFormatError) as exc:
            PromptAssembler().validate_prompt_format("## A\ntext\n## B\n", "op.md")
        assert exc.value.line_number == 3

    def test_content_before_heading_rejected(self):
        with pytest.raises(PromptFormatError):
            PromptAssembler().validate_prompt_format("intro\n## A\n", "op.md")

    def test_no_heading_rejected(self):
        with pytest.raises(PromptFormatError):
            PromptAssembler().validate_prompt_format("just text\n", "op.md")

    def test_headings_in_fences_are_ignored(self):
        text = "## Deliver\n```md\n# Not a title\n## Not a section\n```\n"
        PromptAssembler().validate_prompt_format(text, "op.md")


class TestInjectAfterAnchor:

    def test_missing_anchor_appends(self):
        result = PromptAssembler().inject_after_anchor("Intro\n", "## Working Folder", "BLOCK")
        assert result == "Intro\n\nBLOCK"

    def test_anchor_as_last_section(self):
        result = PromptAssembler().inject_after_anchor("## Working Folder\nUse it\n", "## Working Folder", "BLOCK")
        assert result == "## Working Folder\nUse it\n\nBLOCK"
