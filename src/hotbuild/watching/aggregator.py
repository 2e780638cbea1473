"""Debounced change aggregation.

Collapses a burst of change notifications into one ChangeBatch. The timer
measures quiescence: every notification restarts it, so a batch is emitted
only once ``debounce_delay`` seconds pass without a new notification.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterable

from hotbuild.build.models import ChangeBatch
from hotbuild.logging import TRACE, get_logger

log = get_logger("aggregator")

DEFAULT_DEBOUNCE_DELAY = 0.3


class ChangeAggregator:
    """Debounces change notifications into batches.

    The timer handle belongs to the instance, so several aggregators can run
    on one loop without interfering.

    Example:
        aggregator = ChangeAggregator(on_batch=handle_batch, debounce_delay=0.3)
        aggregator.notify(["src/app.ts"])
        aggregator.notify(["src/app.ts", "src/util.ts"])
        # ~0.3s later: handle_batch(ChangeBatch({"src/app.ts", "src/util.ts"}))
    """

    def __init__(
        self,
        on_batch: Callable[[ChangeBatch], None],
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
    ) -> None:
        """Initialize the aggregator.

        Args:
            on_batch: Called once per quiet period with the collected paths.
            debounce_delay: Quiet period in seconds.
        """
        self._on_batch = on_batch
        self._delay = 0.0
        self.set_delay(debounce_delay)
        self._pending: set[str] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._emitted = 0

    @property
    def debounce_delay(self) -> float:
        return self._delay

    def set_delay(self, value: float) -> None:
        """Change the quiet period; a timer already running keeps its deadline."""
        if value < 0:
            raise ValueError("debounce_delay must be non-negative")
        self._delay = value

    @property
    def pending_count(self) -> int:
        """Number of distinct paths waiting for the next batch."""
        return len(self._pending)

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    @property
    def emitted_count(self) -> int:
        """Batches emitted so far."""
        return self._emitted

    def notify(self, paths: Iterable[str | os.PathLike[str]]) -> None:
        """Record changed paths and restart the quiet-period timer.

        Must be called from the event loop thread.
        """
        added = False
        for path in paths:
            self._pending.add(os.fspath(path))
            added = True
        if not added:
            return

        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._fire)
        log.log(TRACE, "Change noted, %d paths pending", len(self._pending))

    def flush(self) -> ChangeBatch | None:
        """Emit pending changes now, regardless of the timer.

        Returns:
            The emitted batch, or None if nothing was pending.
        """
        self._cancel_timer()
        return self._emit()

    def cancel(self) -> int:
        """Drop the timer and pending paths without emitting.

        Returns:
            Number of discarded paths.
        """
        self._cancel_timer()
        dropped = len(self._pending)
        self._pending = set()
        return dropped

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        self._emit()

    def _emit(self) -> ChangeBatch | None:
        if not self._pending:
            return None
        # Swap before calling out so notifications made by the callback
        # land in the next batch
        paths, self._pending = self._pending, set()
        batch = ChangeBatch(paths=frozenset(paths))
        self._emitted += 1
        log.debug("Emitting batch of %d changed paths", len(batch))
        try:
            self._on_batch(batch)
        except Exception as e:
            log.error("Error in change batch callback: %s", e)
        return batch
