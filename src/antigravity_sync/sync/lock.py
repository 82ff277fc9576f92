"""Cross-process sync lock: an exclusively created marker file at the repository root."""

from __future__ import annotations

import contextlib
import logging
import os
import time
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".sync.lock"
DEFAULT_STALE_SECONDS = 300


class SyncLock:
    """Guards one local repository against two host processes syncing at once.

    The marker holds a millisecond epoch timestamp. A marker older than
    *stale_seconds* belongs to a crashed process and is reclaimed.
    """

    def __init__(self, repo_path: str | Path, stale_seconds: float = DEFAULT_STALE_SECONDS):
        self.path = Path(repo_path) / LOCK_FILE_NAME
        self.stale_seconds = stale_seconds

    def acquire(self) -> bool:
        if self._try_create():
            return True

        age = self.age_seconds()
        if age is not None:
            if age <= self.stale_seconds:
                return False
            if not self._reclaim():
                return False
        return self._try_create()

    def release(self) -> None:
        self._unlink()

    def is_locked(self) -> bool:
        return self.path.exists()

    def age_seconds(self) -> float | None:
        """Age of the current marker, or None if there is none."""
        return _marker_age(self.path)

    @contextlib.contextmanager
    def held(self):
        """Yield whether the lock was acquired; release on exit only if we own it."""
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(int(time.time() * 1000)))
        return True

    def _reclaim(self) -> bool:
        """Take a stale marker out of the way; False if it turned out to be live.

        The marker is renamed to a name only this process knows, so of several
        processes reclaiming at once exactly one gets it. Its age is checked
        again after the rename: a marker created since our first look is put back.
        """
        claimed = self.path.with_name(f"{self.path.name}.{os.getpid()}.{time.time_ns()}")
        try:
            os.rename(self.path, claimed)
        except FileNotFoundError:
            # Another process claimed it first.
            return False
        try:
            age = _marker_age(claimed)
            if age is not None and age <= self.stale_seconds:
                logger.debug("Sync lock %s was renewed, leaving it in place", self.path)
                with contextlib.suppress(FileExistsError):
                    os.link(claimed, self.path)
                return False
            logger.info("Removing stale sync lock %s (age=%.0fs)", self.path, age or 0)
            return True
        finally:
            with contextlib.suppress(FileNotFoundError):
                claimed.unlink()

    def _unlink(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


def _marker_age(path: Path) -> float | None:
    # A marker without a parseable timestamp (caught mid-write) is aged by its mtime.
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    try:
        created = int(raw) / 1000
    except ValueError:
        try:
            created = path.stat().st_mtime
        except FileNotFoundError:
            return None
    return time.time() - created
