"""
File system helpers for the issue runner.

Working folders, report files and the state cache are plain UTF-8 files.
This module keeps the handful of operations they need in one place:
- Directory creation (mkdir -p semantics)
- Atomic writes (temp file in the same directory, then os.replace)
- Appends for log-style files
- Reads with a single error type
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


class FileSystemError(Exception):
    """Raised when a file system operation fails."""
    pass


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist.

    Args:
        path: Directory to create, parents included.

    Returns:
        Path: The directory path.

    Raises:
        FileSystemError: If the directory cannot be created.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    The content goes to a temp file created next to the target and is then
    renamed over it, so readers see either the old or the new file in full.

    Raises:
        FileSystemError: If the write fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def write_file(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """Write content to a file, creating parent directories."""
    path = Path(path)
    ensure_dir(path.parent)
    try:
        path.write_text(content, encoding=encoding)
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def append_file(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """Append content to a file, creating it (and its parents) if needed."""
    path = Path(path)
    ensure_dir(path.parent)
    try:
        with path.open("a", encoding=encoding) as f:
            f.write(content)
    except OSError as e:
        raise FileSystemError(f"Failed to append to file {path}: {e}")


def read_file(path: str | Path, encoding: str = "utf-8") -> str:
    """
    Read a text file.

    Raises:
        FileSystemError: If the file is missing, not a file, or unreadable.
    """
    path = Path(path)

    if not path.exists():
        raise FileSystemError(f"File not found: {path}")

    if not path.is_file():
        raise FileSystemError(f"Not a file: {path}")

    try:
        return path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise FileSystemError(f"Failed to decode file {path} with encoding {encoding}: {e}")
    except OSError as e:
        raise FileSystemError(f"Failed to read file {path}: {e}")
