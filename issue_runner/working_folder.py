"""
Working folder allocation.

Every operation attempt gets its own directory:

    <workroot>/item-<issue_id>/op-<operation>-<YYYYMMDDHHMMSS>

The timestamp keeps folders human-sortable. Two allocations for the same
item and operation within one second get a "-2", "-3", ... suffix instead
of sharing a folder. Folders are never deleted here; publish-only retries
find them again through resolve_folder().
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from issue_runner.errors import WorkingFolderError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_FOLDER_PATTERN = re.compile(r"^op-(?P<operation>.+)-(?P<stamp>\d{14})(?:-(?P<counter>\d+))?$")


class WorkingFolderManager:
    """Creates and looks up per-operation working folders."""

    def __init__(
        self,
        work_root: Path,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Args:
            work_root: Directory holding the item-<id> folders.
            clock: Returns the current time; injectable for tests.
        """
        self.work_root = Path(work_root)
        self._clock = clock or datetime.now

    def issue_dir(self, issue_id: str) -> Path:
        return self.work_root / f"item-{issue_id}"

    def folder_name(self, operation: str, when: Optional[datetime] = None) -> str:
        """Build the op-<operation>-<timestamp> folder name."""
        when = when or self._clock()
        return f"op-{operation}-{when.strftime(TIMESTAMP_FORMAT)}"

    def allocate(self, issue_id: str, operation: str) -> Path:
        """
        Create a fresh working folder for one operation attempt.

        Args:
            issue_id: Work item identifier.
            operation: Operation name.

        Returns:
            Path to the newly created folder.

        Raises:
            WorkingFolderError: If a directory cannot be created.
        """
        item_dir = self.issue_dir(issue_id)
        try:
            item_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkingFolderError(str(item_dir), str(e))

        base_name = self.folder_name(operation)
        candidate = item_dir / base_name
        counter = 1
        while True:
            try:
                candidate.mkdir()
                break
            except FileExistsError:
                counter += 1
                candidate = item_dir / f"{base_name}-{counter}"
            except OSError as e:
                raise WorkingFolderError(str(candidate), str(e))

        if counter > 1:
            logger.debug("Folder %s existed, allocated %s", base_name, candidate.name)
        return candidate

    def list_folders(self, issue_id: str, operation: Optional[str] = None) -> list[Path]:
        """
        List existing working folders for a work item, oldest first.

        Args:
            issue_id: Work item identifier.
            operation: Only include folders for this operation (case-insensitive).
        """
        item_dir = self.issue_dir(issue_id)
        if not item_dir.is_dir():
            return []

        folders = []
        for path in item_dir.iterdir():
            if not path.is_dir():
                continue
            match = _FOLDER_PATTERN.match(path.name)
            if not match:
                continue
            if operation and match.group("operation").lower() != operation.lower():
                continue
            folders.append(path)

        return sorted(folders, key=_folder_sort_key)

    def latest_folder(self, issue_id: str, operation: str) -> Optional[Path]:
        """Most recent folder for an operation, or None."""
        folders = self.list_folders(issue_id, operation)
        return folders[-1] if folders else None

    def resolve_folder(self, issue_id: str, tag: str) -> Optional[Path]:
        """
        Find a folder by name or tag.

        An exact folder name wins; otherwise the newest folder whose name
        contains the tag is returned.
        """
        folders = self.list_folders(issue_id)
        for folder in folders:
            if folder.name == tag:
                return folder
        matches = [f for f in folders if tag in f.name]
        return matches[-1] if matches else None


def _folder_sort_key(path: Path) -> tuple[str, int, str]:
    match = _FOLDER_PATTERN.match(path.name)
    if not match:
        return ("", 0, path.name)
    return (match.group("stamp"), int(match.group("counter") or 1), path.name)


def parse_folder_name(name: str) -> Optional[tuple[str, str]]:
    """Split a folder name into (operation, timestamp), None if it is not one."""
    match = _FOLDER_PATTERN.match(name)
    if not match:
        return None
    return match.group("operation"), match.group("stamp")
