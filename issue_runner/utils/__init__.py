"""Utility modules for the issue runner."""

from issue_runner.utils.fs import (
    FileSystemError,
    append_file,
    ensure_dir,
    read_file,
    safe_write,
    write_file,
)

__all__ = [
    "FileSystemError",
    "append_file",
    "ensure_dir",
    "read_file",
    "safe_write",
    "write_file",
]
