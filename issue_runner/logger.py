"""
Per-work-item JSONL event log.

Every lifecycle component reports events through a RunnerLogger; the
entries land in <runner_dir>/logs/<issue>-YYYY-MM-DD.jsonl and are
mirrored to the standard logging tree under issue_runner.logger.
"""

from __future__ import annotations

import json
import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from issue_runner.config import RunnerConfig, get_config

_std_logger = logging.getLogger(__name__)

LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class RunnerLogger:
    """
    Event log for one work item.

    Entries are JSON objects with timestamp, level, event_type, issue_id
    and data. Inside operation_context they also carry the operation name
    and, when known, the working folder.
    """

    def __init__(
        self,
        issue_id: str,
        config: Optional[RunnerConfig] = None,
        logs_dir: Optional[Path] = None,
    ) -> None:
        self.issue_id = issue_id
        self._config = config
        self._logs_dir = Path(logs_dir) if logs_dir is not None else None
        self._scope: dict[str, str] = {}

    @property
    def config(self) -> RunnerConfig:
        if self._config is None:
            self._config = get_config()
        return self._config

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir if self._logs_dir is not None else self.config.logs_path

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        day = date or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        # Identifiers come from the command line
        safe_id = re.sub(r"[^A-Za-z0-9._-]", "_", self.issue_id)
        return self.logs_dir / f"{safe_id}-{day}.jsonl"

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = "info",
    ) -> None:
        """
        Append one event.

        Raises:
            ValueError: If level is not info, warn or error.
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level '{level}'")

        entry: dict[str, Any] = {
            "timestamp": _utc_stamp(),
            "level": level,
            "event_type": event_type,
            "issue_id": self.issue_id,
            **self._scope,
            "data": data or {},
        }

        path = self._get_log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")

        _std_logger.log(LEVELS[level], "%s %s %s", self.issue_id, event_type, entry["data"])

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, "info")

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, "warn")

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, "error")

    @contextmanager
    def operation_context(
        self,
        operation: str,
        working_folder: Optional[Union[str, Path]] = None,
    ) -> Iterator[RunnerLogger]:
        """
        Tag every entry written inside the block with the operation.

        operation_end records how long the block ran and, if it raised,
        the exception; the exception still propagates.
        """
        previous = self._scope
        self._scope = {"operation": operation}
        if working_folder is not None:
            self._scope["working_folder"] = str(working_folder)

        started = time.monotonic()
        self.info("operation_start")
        end_data: dict[str, Any] = {}
        try:
            yield self
        except BaseException as e:
            end_data["error"] = f"{type(e).__name__}: {e}"
            raise
        finally:
            end_data["duration_seconds"] = round(time.monotonic() - started, 3)
            self.log("operation_end", end_data, level="error" if "error" in end_data else "info")
            self._scope = previous

    def _iter_entries(self, date: Optional[str]) -> Iterator[dict[str, Any]]:
        path = self._get_log_path(date)
        if not path.exists():
            return
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue

    def read_logs(
        self,
        date: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Entries for one day (today by default), oldest first.

        level, event_type and operation filter on equality; limit keeps
        the first N matches.
        """
        entries = []
        for entry in self._iter_entries(date):
            if level and entry.get("level") != level:
                continue
            if event_type and entry.get("event_type") != event_type:
                continue
            if operation and entry.get("operation") != operation:
                continue
            entries.append(entry)
            if limit and len(entries) >= limit:
                break
        return entries


_logger_cache: dict[str, RunnerLogger] = {}


def get_logger(issue_id: str, config: Optional[RunnerConfig] = None) -> RunnerLogger:
    """Shared RunnerLogger for a work item; the first call's config wins."""
    if issue_id not in _logger_cache:
        _logger_cache[issue_id] = RunnerLogger(issue_id, config)
    return _logger_cache[issue_id]


def clear_logger_cache() -> None:
    _logger_cache.clear()
