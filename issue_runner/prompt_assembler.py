"""
Instruction assembly for agent runs.

The agent receives one Markdown document: the shared general template
(with placeholders filled in) followed by the operation template. Operation
templates are inserted under the general template's headings, so they must
open with a single "## " heading and contain no "# " headings.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Union

from issue_runner.errors import PromptFormatError, PromptNotFoundError
from issue_runner.models import InstructionReplacements
from issue_runner.utils.fs import FileSystemError, read_file, write_file

PathLike = Union[str, Path]

SAVE_PROTOCOL_ANCHOR = "## Working Folder"

SAVE_PROTOCOL_BLOCK = """### Save Protocol

Save your work to the working folder as you go instead of only at the end:

- After every meaningful change to the issue body, write the full body to
  `revised-issue.md`.
- After every lifecycle event, write a report file named
  `report-<action>-<NNN>.md` where NNN continues the highest existing number.
- Never edit or delete an existing report file.
"""

INVALID_ISSUE_BLOCK = """## Failure Handling Test

This run exercises failure handling. Treat the work item as
`<ArgIssueId>-INVALID`, which does not exist. Report the failure through
the normal report protocol with status `Failed` and do not modify any
other work item.
"""

_LEVEL1 = re.compile(r"^#\s+")
_LEVEL2 = re.compile(r"^##\s+")


class PromptAssembler:
    """Builds the instructions file handed to the agent."""

    def assemble(
        self,
        general_path: PathLike,
        operation_path: PathLike,
        replacements: InstructionReplacements,
        output_path: PathLike,
        inject_save_protocol: bool = False,
        test_invalid_issue: bool = False,
    ) -> Path:
        """
        Assemble and write the instructions.

        Args:
            general_path: Shared template, may contain placeholders.
            operation_path: Operation template, validated for heading structure.
            replacements: Values for <ArgIssueId>, <ArgOperation>, <ArgWorkingFolder>.
            output_path: Where to write the result (parents created).
            inject_save_protocol: Add the incremental save instructions.
            test_invalid_issue: Add the deliberate invalid-issue block.

        Returns:
            The output path.

        Raises:
            PromptNotFoundError: If either template is missing.
            PromptFormatError: If the operation template is malformed.
        """
        general = self.load_prompt_file(general_path)
        operation = self.load_prompt_file(operation_path)

        self.validate_prompt_format(operation, str(operation_path))

        if inject_save_protocol:
            general = self.inject_after_anchor(general, SAVE_PROTOCOL_ANCHOR, SAVE_PROTOCOL_BLOCK)
        if test_invalid_issue:
            general = general.rstrip("\n") + "\n\n" + INVALID_ISSUE_BLOCK

        general = self.perform_replacements(general, replacements)
        content = general + "\n" + operation

        output_path = Path(output_path)
        write_file(output_path, content)
        return output_path

    def load_prompt_file(self, path: PathLike) -> str:
        path = Path(path)
        if not path.exists():
            raise PromptNotFoundError(str(path))
        try:
            return read_file(path)
        except FileSystemError as e:
            raise PromptNotFoundError(str(path)) from e

    def perform_replacements(self, text: str, replacements: InstructionReplacements) -> str:
        """Replace every placeholder occurrence literally."""
        text = text.replace("<ArgIssueId>", replacements.issue_id)
        text = text.replace("<ArgOperation>", replacements.operation)
        text = text.replace("<ArgWorkingFolder>", replacements.working_folder)
        return text

    def validate_prompt_format(self, text: str, path: str) -> None:
        """
        Check the operation template's heading structure.

        Headings inside ``` fences are ignored.

        Raises:
            PromptFormatError: Naming the offending line.
        """
        lines = text.split("\n")
        in_fence = False
        level2_lines: list[int] = []

        for index, raw in enumerate(lines, start=1):
            line = raw.strip()
            if line.startswith("```"):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            if _LEVEL1.match(line):
                raise PromptFormatError(
                    path,
                    "level-1 heading (#) is not allowed in operation prompts",
                    index,
                )
            if _LEVEL2.match(line):
                level2_lines.append(index)

        if not level2_lines:
            raise PromptFormatError(path, "no level-2 heading (##) found; operation prompts must start with one")

        if len(level2_lines) > 1:
            raise PromptFormatError(
                path,
                f"found {len(level2_lines)} level-2 headings (##); exactly one is allowed",
                level2_lines[1],
            )

        first_non_blank = next(i for i, raw in enumerate(lines, start=1) if raw.strip())
        if level2_lines[0] != first_non_blank:
            raise PromptFormatError(
                path,
                f"level-2 heading must be the first non-blank line (first content is line {first_non_blank})",
                level2_lines[0],
            )

    def inject_after_anchor(self, text: str, anchor: str, block: str) -> str:
        """
        Insert block at the end of the anchor section.

        The section runs until the next level-2 heading outside a fence.
        Without the anchor the block is appended.
        """
        lines = text.split("\n")
        anchor_index = None
        in_fence = False
        for index, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith("```"):
                in_fence = not in_fence
                continue
            if not in_fence and stripped == anchor:
                anchor_index = index
                break

        if anchor_index is None:
            return text.rstrip("\n") + "\n\n" + block

        insert_at = len(lines)
        in_fence = False
        for index in range(anchor_index + 1, len(lines)):
            stripped = lines[index].strip()
            if stripped.startswith("```"):
                in_fence = not in_fence
                continue
            if not in_fence and _LEVEL2.match(stripped):
                insert_at = index
                break

        before = "\n".join(lines[:insert_at]).rstrip("\n")
        after = "\n".join(lines[insert_at:])
        if after:
            return f"{before}\n\n{block}\n{after}"
        return f"{before}\n\n{block}"
