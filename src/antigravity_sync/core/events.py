"""Structured event channel between the sync engine and whatever presents it.

The engine publishes; a CLI, panel or test subscribes. Subscribers never feed
back into control decisions.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "success", "warning", "error")


@dataclass(frozen=True)
class SyncEvent:
    kind: str
    """``log``, ``state``, ``countdown`` or ``stats``."""

    message: str = ""
    severity: str = "info"
    state: str | None = None
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[SyncEvent], None]


class EventBus:
    """Observer fan-out plus a bounded history of recent events."""

    def __init__(self, history: int = 200):
        self._subscribers: list[Subscriber] = []
        self._history: deque[SyncEvent] = deque(maxlen=history)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: SyncEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.warning("Event subscriber %r failed", callback, exc_info=True)

    def log(self, message: str, severity: str = "info", **data) -> None:
        if severity not in SEVERITIES:
            severity = "info"
        level = {"warning": logging.WARNING, "error": logging.ERROR}.get(severity, logging.INFO)
        logger.log(level, message)
        self.publish(SyncEvent(kind="log", message=message, severity=severity, data=data))

    def recent(self, limit: int | None = None) -> list[SyncEvent]:
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit else events
