"""SyncService: the long-running host for one engine, its timers and its watcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ..core.config import SyncConfig, load_sync_config
from ..core.errors import SyncError
from .engine import SyncEngine
from .filter import FilterEngine
from .scheduler import AutoSyncScheduler, ChangeDebouncer, CountdownCallback
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class SyncService:
    """Owns the engine and drives it from asyncio.

    Engine operations are blocking and run in a worker thread, one at a time:
    an operation requested while another is running is skipped, not queued.
    """

    def __init__(self, engine: SyncEngine, config_loader: Callable[[], SyncConfig] = load_sync_config):
        self.engine = engine
        self.config_loader = config_loader
        self.scheduler: AutoSyncScheduler | None = None
        self.debouncer: ChangeDebouncer | None = None
        self.watcher: ChangeWatcher | None = None
        self._countdown: CountdownCallback | None = None
        self._op_lock = asyncio.Lock()

    @property
    def auto_sync_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def run_exclusive(self, operation: Callable[[], Any]) -> Any:
        if self._op_lock.locked():
            self.engine.events.log("Skipped: a sync operation is already running")
            return None
        async with self._op_lock:
            return await asyncio.to_thread(operation)

    async def sync(self) -> Any:
        return await self.run_exclusive(self.engine.sync)

    async def push(self) -> Any:
        return await self.run_exclusive(self.engine.push)

    async def pull(self) -> Any:
        return await self.run_exclusive(self.engine.pull)

    async def start(self) -> bool:
        """Initialize the engine and start automatic sync when enabled.

        Returns False when sync is not configured or disabled.
        """
        config = self.config_loader()
        if not config.repository_url:
            self.engine.events.log("Sync is not configured. Run `ags init` first.", "warning")
            return False
        if not config.enabled:
            self.engine.events.log("Sync is disabled in configuration")
            return False

        try:
            await self.run_exclusive(self.engine.initialize)
        except SyncError as exc:
            # The timer keeps retrying; a transient failure must not stop the service.
            self.engine.events.log(f"Initialization failed: {exc}", "error")

        if config.auto_sync:
            self.start_auto_sync()
        return True

    async def stop(self) -> None:
        """Stop the timers and wait for any operation already in flight."""
        scheduler = self.scheduler
        self.stop_auto_sync()
        if scheduler is not None:
            await scheduler.wait_stopped()
        async with self._op_lock:
            pass

    def start_auto_sync(self) -> None:
        if self.auto_sync_running:
            return
        config = self.config_loader()
        self.scheduler = AutoSyncScheduler(self.sync, config.interval_seconds, on_countdown=self._countdown)
        self.scheduler.start()

        self.debouncer = ChangeDebouncer(config.debounce_seconds, self._flush_changes)
        filter_engine = FilterEngine(config.local_path, config.exclude_patterns, config.sync_folders)
        self.watcher = ChangeWatcher(config.local_path, filter_engine, self.debouncer.notify)
        self.watcher.start()
        self.engine.events.log(f"Auto-sync every {config.sync_interval_minutes} min")

    def stop_auto_sync(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.debouncer is not None:
            self.debouncer.cancel()
        if self.watcher is not None:
            self.watcher.stop()
        self.scheduler = None
        self.debouncer = None
        self.watcher = None

    def set_countdown_callback(self, callback: CountdownCallback | None) -> None:
        self._countdown = callback
        if self.scheduler is not None:
            self.scheduler.set_countdown_callback(callback)

    def seconds_until_next(self) -> float | None:
        return self.scheduler.seconds_until_next() if self.scheduler else None

    async def _flush_changes(self, paths: set[str]) -> None:
        if not self.config_loader().auto_sync:
            logger.debug("Auto-sync disabled, dropping %d change(s)", len(paths))
            return
        self.engine.events.log(f"{len(paths)} local change(s) settled, pushing")
        await self.push()
