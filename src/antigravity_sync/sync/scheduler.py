"""Timers for automatic sync: the periodic scheduler and the change debouncer.

Both live on the asyncio event loop. Neither cancels work in flight; stopping
only prevents future runs.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

CountdownCallback = Callable[[int], None]


class AutoSyncScheduler:
    """Runs *run* every *interval_seconds*.

    ``next_run_at`` (loop time) is the single source of truth; the countdown
    shown to the user is sampled from it once per tick.
    """

    def __init__(
        self,
        run: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        on_countdown: CountdownCallback | None = None,
        tick: float = 1.0,
    ):
        self.run = run
        self.interval_seconds = max(float(interval_seconds), 0.01)
        self.on_countdown = on_countdown
        self.tick = tick
        self.next_run_at: float | None = None
        self.runs = 0
        self._task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._stopping = False
        self._wake = asyncio.Event()
        self.next_run_at = loop.time() + self.interval_seconds
        self._task = loop.create_task(self._loop())

    def stop(self) -> None:
        self._stopping = True
        self.next_run_at = None
        if self._wake is not None:
            self._wake.set()

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    def trigger_now(self) -> None:
        if not self.running:
            return
        self.next_run_at = asyncio.get_running_loop().time()
        self._wake.set()

    def set_countdown_callback(self, callback: CountdownCallback | None) -> None:
        self.on_countdown = callback

    def seconds_until_next(self) -> float | None:
        if self.next_run_at is None:
            return None
        return max(0.0, self.next_run_at - asyncio.get_running_loop().time())

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopping:
            remaining = self.seconds_until_next()
            if remaining is None:
                break
            if remaining <= 0:
                await self._attempt()
                if self._stopping:
                    break
                # Reschedule after every attempt, successful or not.
                self.next_run_at = loop.time() + self.interval_seconds
                continue

            self._emit_countdown(remaining)
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=min(self.tick, remaining))
            except asyncio.TimeoutError:
                pass

    async def _attempt(self) -> None:
        self.runs += 1
        try:
            await self.run()
        except Exception:
            logger.exception("Scheduled sync failed; will retry at the next interval")

    def _emit_countdown(self, remaining: float) -> None:
        if self.on_countdown is None:
            return
        try:
            self.on_countdown(math.ceil(remaining))
        except Exception:
            logger.warning("Countdown callback failed", exc_info=True)


class ChangeDebouncer:
    """Collects changed paths and flushes them once the burst has gone quiet.

    ``notify`` must be called on the loop thread; watchers in other threads
    hand events over with ``loop.call_soon_threadsafe``.
    """

    def __init__(self, quiet_seconds: float, flush: Callable[[set[str]], Awaitable[Any]]):
        self.quiet_seconds = quiet_seconds
        self.flush = flush
        self.pending: set[str] = set()
        self._handle: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None

    def notify(self, relative_path: str) -> None:
        self.pending.add(relative_path)
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.quiet_seconds, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.pending.clear()

    async def wait_flushed(self) -> None:
        if self._flush_task is not None:
            await self._flush_task

    def _fire(self) -> None:
        self._handle = None
        paths, self.pending = self.pending, set()
        if paths:
            self._flush_task = asyncio.get_running_loop().create_task(self._run_flush(paths))

    async def _run_flush(self, paths: set[str]) -> None:
        logger.info("Flushing %d changed path(s)", len(paths))
        try:
            await self.flush(paths)
        except Exception:
            logger.exception("Change-triggered push failed")
