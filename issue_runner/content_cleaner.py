"""
Content cleanup applied right before publishing to the tracker.

The tracker shows the title separately and has no use for the local
Metadata section, so both are stripped from issue bodies. Comments lose
any stray "# Operation Log for ..." title lines copied from the log.
"""

from __future__ import annotations

import re

_METADATA_HEADING = re.compile(r"^##\s+Metadata\s*$", re.IGNORECASE)
_LEVEL2 = re.compile(r"^##\s+")
_TITLE = re.compile(r"^#\s+.+")
_LOG_TITLE = re.compile(r"^#\s+Operation\s+Log\s+for\s+", re.IGNORECASE)


def clean_issue_body(content: str) -> str:
    """
    Remove Metadata sections and title headings from an issue body.

    Every "## Metadata" section is dropped up to the next level-2 heading.
    Every level-1 heading is dropped together with the blank lines after it.
    """
    if not content:
        return content

    kept: list[str] = []
    in_metadata = False
    for line in content.split("\n"):
        stripped = line.strip()
        if _METADATA_HEADING.match(stripped):
            in_metadata = True
            continue
        if in_metadata and _LEVEL2.match(stripped):
            in_metadata = False
        if not in_metadata:
            kept.append(line)

    result: list[str] = []
    skipping_blank = False
    for line in kept:
        stripped = line.strip()
        if _TITLE.match(stripped):
            skipping_blank = True
            continue
        if skipping_blank and not stripped:
            continue
        skipping_blank = False
        result.append(line)

    return "\n".join(result).rstrip()


def clean_comment_content(content: str) -> str:
    """Remove "# Operation Log for" lines outside code fences."""
    if not content:
        return content

    kept: list[str] = []
    in_fence = False
    for line in content.split("\n"):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_fence = not in_fence
            kept.append(line)
            continue
        if in_fence or not _LOG_TITLE.match(stripped):
            kept.append(line)

    return "\n".join(kept).rstrip().lstrip("\n")
