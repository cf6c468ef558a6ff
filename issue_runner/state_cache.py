"""
Workflow-state name to id cache.

The tracker needs state ids to move a work item, but operations are
configured with state names. The mapping is fetched from the tracker and
cached in one JSON file shared by every runner process:

    {"nameToId": {"Done": "..."}, "_metadata": {"fetchedAt": "...", "sourceGroups": ["ENG"]}}

Refresh protocol:
- refresh only when the file is missing, unreadable or older than the
  staleness threshold (or when forced)
- hold a file lock on the sibling .lock file while refreshing; give up
  after lock_timeout_seconds, unless the holder has had it for more than
  twice that long, in which case it is presumed abandoned
- re-check after acquiring the lock, since another process may have
  refreshed while we waited
- write a temp file in the same directory and os.replace() it over the
  cache, so readers always see a complete file
- every failure returns False and leaves the previous file in place
"""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from filelock import FileLock, Timeout

from issue_runner.utils.fs import FileSystemError, ensure_dir, safe_write

if TYPE_CHECKING:
    from issue_runner.logger import RunnerLogger

logger = logging.getLogger(__name__)

StateFetcher = Callable[[], "tuple[dict[str, str], list[str]]"]

_BYPASS = object()


class StateCacheRefresher:
    """Keeps the workflow-state cache file fresh."""

    def __init__(
        self,
        cache_path: Path,
        fetch: StateFetcher,
        stale_threshold_minutes: float = 90,
        lock_timeout_seconds: float = 10,
        retry_interval_seconds: float = 1.0,
        logger: Optional[RunnerLogger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            cache_path: The JSON cache file.
            fetch: Returns (name_to_id, source_groups); may raise.
            stale_threshold_minutes: Age after which the cache is refreshed.
            lock_timeout_seconds: How long to wait for another refresher.
            retry_interval_seconds: Polling interval while waiting.
            logger: Optional event logger.
            clock: Returns epoch seconds; injectable for tests.
        """
        self.cache_path = Path(cache_path)
        self.lock_path = self.cache_path.with_name(self.cache_path.name + ".lock")
        self.owner_path = self.cache_path.with_name(self.cache_path.name + ".lock.owner")
        self._fetch = fetch
        self.stale_threshold_seconds = stale_threshold_minutes * 60
        self.lock_timeout_seconds = lock_timeout_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self._logger = logger
        self._clock = clock

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "state_cache"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def read_cache(self) -> Optional[dict[str, Any]]:
        """Parsed cache file, None if missing or invalid."""
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict) or not isinstance(data.get("nameToId"), dict):
            return None
        return data

    def age_seconds(self) -> Optional[float]:
        """Seconds since the cache was fetched, None if there is no usable cache."""
        data = self.read_cache()
        if data is None:
            return None
        fetched_at = (data.get("_metadata") or {}).get("fetchedAt")
        if isinstance(fetched_at, str):
            try:
                when = datetime.fromisoformat(fetched_at.replace("Z", "+00:00"))
                return self._clock() - when.timestamp()
            except ValueError:
                pass
        try:
            return self._clock() - self.cache_path.stat().st_mtime
        except OSError:
            return None

    def needs_refresh(self) -> bool:
        age = self.age_seconds()
        return age is None or age > self.stale_threshold_seconds

    def fetch(self) -> dict[str, Any]:
        """Fetch a complete replacement cache document."""
        name_to_id, groups = self._fetch()
        return {
            "nameToId": dict(name_to_id),
            "_metadata": {
                "fetchedAt": datetime.fromtimestamp(self._clock(), timezone.utc)
                .isoformat(timespec="seconds").replace("+00:00", "Z"),
                "sourceGroups": list(groups),
            },
        }

    def refresh(self, force: bool = False) -> bool:
        """
        Refresh the cache if stale, or unconditionally when forced.

        Returns:
            True only if this call fetched and wrote a new cache file.
        """
        if not force and not self.needs_refresh():
            return False

        try:
            ensure_dir(self.cache_path.parent)
            self.lock_path.touch(exist_ok=True)
        except (FileSystemError, OSError) as e:
            logger.warning("Cannot prepare state cache lock: %s", e)
            return False

        observed = self._stamp()
        lock = self._acquire()
        if lock is None:
            self._log("state_cache_lock_timeout", {"lock": str(self.lock_path)}, level="warn")
            return False

        try:
            if force:
                if self._stamp() != observed:
                    self._log("state_cache_refreshed_elsewhere", {"forced": True})
                    return False
            elif not self.needs_refresh():
                self._log("state_cache_refreshed_elsewhere", {"forced": False})
                return False

            try:
                document = self.fetch()
            except Exception as e:
                logger.warning("Workflow state fetch failed: %s", e)
                self._log("state_cache_fetch_failed", {"error": str(e)}, level="warn")
                return False

            try:
                safe_write(self.cache_path, json.dumps(document, indent=2) + "\n")
            except FileSystemError as e:
                logger.warning("Could not write state cache: %s", e)
                return False

            self._log("state_cache_refreshed", {
                "states": len(document["nameToId"]),
                "forced": force,
            })
            return True
        finally:
            self._release(lock)

    def _stamp(self) -> Optional[tuple[int, int, int]]:
        try:
            st = self.cache_path.stat()
        except OSError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _acquire(self) -> Any:
        """
        Wait for the lock in retry_interval steps.

        Returns the held FileLock, _BYPASS when the holder looks abandoned,
        or None on timeout.
        """
        lock = FileLock(str(self.lock_path))
        deadline = time.monotonic() + self.lock_timeout_seconds
        while True:
            remaining = deadline - time.monotonic()
            try:
                lock.acquire(timeout=max(0.0, min(self.retry_interval_seconds, remaining)))
                self._write_owner()
                return lock
            except Timeout:
                if time.monotonic() < deadline:
                    continue

            held_for = self._owner_age()
            if held_for is not None and held_for > 2 * self.lock_timeout_seconds:
                logger.warning(
                    "State cache lock held for %.0fs, presuming it abandoned", held_for
                )
                self._log("state_cache_lock_abandoned", {"held_seconds": held_for}, level="warn")
                return _BYPASS
            return None

    def _release(self, lock: Any) -> None:
        if lock is _BYPASS:
            return
        try:
            self.owner_path.unlink()
        except OSError:
            pass
        lock.release()

    def _write_owner(self) -> None:
        try:
            self.owner_path.write_text(
                json.dumps({"pid": os.getpid(), "acquiredAt": self._clock()}),
                encoding="utf-8",
            )
        except OSError as e:
            logger.debug("Could not record lock owner: %s", e)

    def _owner_age(self) -> Optional[float]:
        try:
            data = json.loads(self.owner_path.read_text(encoding="utf-8"))
            return self._clock() - float(data["acquiredAt"])
        except (OSError, ValueError, KeyError, TypeError):
            return None


class StateMapper:
    """Name and id lookups over the cache, refreshing it when needed."""

    def __init__(self, refresher: StateCacheRefresher) -> None:
        self.refresher = refresher

    def mapping(self) -> dict[str, str]:
        data = self.refresher.read_cache()
        return dict(data["nameToId"]) if data else {}

    def _lookup(self, name: str, group: Optional[str]) -> Optional[str]:
        mapping = self.mapping()
        if group and f"{group}/{name}" in mapping:
            return mapping[f"{group}/{name}"]
        return mapping.get(name)

    def resolve(self, name: str, group: Optional[str] = None) -> Optional[str]:
        """
        Id for a state name, preferring the group's own state.

        A stale cache is refreshed first; a name missing from a fresh
        cache triggers one forced refresh.
        """
        self.refresher.refresh()
        state_id = self._lookup(name, group)
        if state_id is None and self.refresher.refresh(force=True):
            state_id = self._lookup(name, group)
        return state_id

    def name_for(self, state_id: str) -> Optional[str]:
        for key, value in self.mapping().items():
            if value == state_id:
                return key.split("/", 1)[-1]
        return None
