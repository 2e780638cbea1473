"""Lifecycle events emitted by the orchestration core.

Events are delivered synchronously to subscribers on the event loop thread.
A failing subscriber is logged and skipped so that formatting or reporting
code can never interfere with scheduling.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hotbuild.logging import get_logger

log = get_logger("events")


class EventKind(Enum):
    """Types of events emitted by the orchestrator and its components."""

    WATCH_STARTED = "watch_started"
    WATCH_STOPPED = "watch_stopped"
    FILES_CHANGED = "files_changed"
    NOTHING_TO_BUILD = "nothing_to_build"
    BUILD_STARTED = "build_started"
    BUILD_COMPLETED = "build_completed"
    ALL_BUILDS_COMPLETE = "all_builds_complete"
    WATCHER_CRASHED = "watcher_crashed"
    WATCHER_RESTARTING = "watcher_restarting"
    WATCHER_FAILED = "watcher_failed"
    RESTART_ATTEMPTS_RESET = "restart_attempts_reset"


@dataclass
class Event:
    """A single emitted event."""

    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.monotonic)


EventCallback = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe hub.

    Example:
        bus = EventBus()
        unsubscribe = bus.subscribe(EventKind.BUILD_COMPLETED, print)
        ...
        unsubscribe()
    """

    def __init__(self, history_size: int = 0) -> None:
        """Initialize the bus.

        Args:
            history_size: Number of recent events to keep in ``history``
                (0 disables the record).
        """
        self._subscribers: list[tuple[EventKind | None, EventCallback]] = []
        self._history: deque[Event] | None = (
            deque(maxlen=history_size) if history_size > 0 else None
        )

    def subscribe(
        self,
        kind: EventKind | None,
        callback: EventCallback,
    ) -> Callable[[], None]:
        """Register a callback for one event kind, or every event if kind is None.

        Returns:
            A function that removes the subscription.
        """
        entry = (kind, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, kind: EventKind, **payload: Any) -> Event:
        """Deliver an event to all matching subscribers in registration order."""
        event = Event(kind=kind, payload=payload)
        if self._history is not None:
            self._history.append(event)

        for sub_kind, callback in list(self._subscribers):
            if sub_kind is not None and sub_kind is not kind:
                continue
            try:
                callback(event)
            except Exception as e:
                log.warning("Event subscriber for %s failed: %s", kind.value, e)

        return event

    @property
    def history(self) -> list[Event]:
        """Recorded events, oldest first."""
        return list(self._history) if self._history is not None else []

    def events_of(self, kind: EventKind) -> list[Event]:
        """Recorded events of a single kind."""
        return [e for e in self.history if e.kind is kind]
