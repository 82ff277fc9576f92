"""Filesystem watcher feeding the change debouncer."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .filter import FilterEngine

logger = logging.getLogger(__name__)

_RELEVANT_EVENTS = {"created", "modified", "deleted", "moved"}


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: ChangeWatcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENTS:
            return
        self.watcher.dispatch(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self.watcher.dispatch(dest)


class ChangeWatcher:
    """Watches the working directory and reports included paths on the event loop."""

    def __init__(
        self,
        local_path: str | Path,
        filter_engine: FilterEngine,
        on_change: Callable[[str], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.local_path = Path(local_path)
        self.filter = filter_engine
        self.on_change = on_change
        self.loop = loop
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        if self._observer is not None:
            return True
        if not self.local_path.is_dir():
            logger.warning("Not watching %s: directory does not exist", self.local_path)
            return False
        self.loop = self.loop or asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.local_path), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.local_path)
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None

    def dispatch(self, path: str | bytes) -> None:
        """Called from the observer thread."""
        path = os.fsdecode(path)
        relative_path = os.path.relpath(path, self.local_path)
        if relative_path.startswith(".."):
            return
        relative_path = relative_path.replace(os.sep, "/")
        if not self.filter.is_included(relative_path):
            return
        self.loop.call_soon_threadsafe(self.on_change, relative_path)
