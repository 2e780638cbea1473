"""Crash recovery for the watch process.

The supervisor is an explicit state machine:

    STOPPED --start()--> STARTING --started--> WATCHING
    WATCHING --crash--> RESTARTING --backoff elapsed--> STARTING
    RESTARTING --attempts exhausted--> FAILED --reset()--> STOPPED

A failed start is handled like a crash. Delays double with every
consecutive crash (base, 2*base, 4*base, ...) and the attempt counter is
cleared on the next successful start. FAILED is terminal until reset().
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Protocol

from hotbuild.build.models import RestartState
from hotbuild.errors import RestartExhaustedError, WatchProcessCrash
from hotbuild.events import EventBus, EventKind
from hotbuild.logging import get_logger
from hotbuild.watching.watcher import CrashCallback

log = get_logger("supervisor")


class SupervisorState(Enum):
    """States of the restart supervisor."""

    STOPPED = "stopped"
    STARTING = "starting"
    WATCHING = "watching"
    RESTARTING = "restarting"
    FAILED = "failed"


class WatchProcess(Protocol):
    """A restartable watch process (FileWatcher in production)."""

    async def start(self, on_crash: CrashCallback | None = None) -> None:
        """Start watching; raise if the start cannot be confirmed."""
        ...

    def stop(self) -> None: ...

    def is_running(self) -> bool: ...


class RestartSupervisor:
    """Owns the watch process lifecycle and restarts it with backoff.

    Example:
        supervisor = RestartSupervisor(watcher, events, max_attempts=3, base_delay=1.0)
        await supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        process: WatchProcess,
        events: EventBus | None = None,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        """Initialize the supervisor.

        Args:
            process: The watch process to supervise.
            events: Bus for lifecycle events. A private bus is used if None.
            max_attempts: Restarts allowed per failure streak.
            base_delay: Delay before the first restart, in seconds.
        """
        if max_attempts < 0:
            raise ValueError("Maximum restart attempts must be non-negative")
        self._process = process
        self._events = events or EventBus()
        self._restart = RestartState(max_attempts=max_attempts, base_delay=base_delay)
        self._state = SupervisorState.STOPPED
        self._restart_task: asyncio.Task[None] | None = None
        self._delays: list[float] = []
        self.last_error: BaseException | None = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._restart.attempts

    @property
    def max_attempts(self) -> int:
        return self._restart.max_attempts

    @property
    def delays(self) -> list[float]:
        """Backoff delays scheduled during the current failure streak."""
        return list(self._delays)

    def is_watching(self) -> bool:
        return self._state is SupervisorState.WATCHING

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "attempts": self._restart.attempts,
            "max_attempts": self._restart.max_attempts,
            "can_restart": not self._restart.exhausted,
        }

    def set_max_attempts(self, max_attempts: int) -> None:
        if max_attempts < 0:
            raise ValueError("Maximum restart attempts must be non-negative")
        self._restart.max_attempts = max_attempts

    def set_base_delay(self, base_delay: float) -> None:
        if base_delay < 0:
            raise ValueError("Restart base delay must be non-negative")
        self._restart.base_delay = base_delay

    def _transition(self, new_state: SupervisorState) -> None:
        if new_state is not self._state:
            log.debug("Supervisor %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    async def start(self) -> None:
        """Start the watch process.

        Only valid from STOPPED; from FAILED, reset() must be called first.
        """
        if self._state is SupervisorState.FAILED:
            log.warning("Watcher restarts exhausted; reset() is required before starting")
            return
        if self._state is not SupervisorState.STOPPED:
            log.warning("Supervisor already active (%s)", self._state.value)
            return
        self._transition(SupervisorState.STARTING)
        await self._launch()

    async def _launch(self) -> None:
        try:
            await self._process.start(on_crash=self.report_crash)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.report_crash(WatchProcessCrash(f"Watcher failed to start: {e}", cause=e))
            return

        if self._state is not SupervisorState.STARTING:
            # Stopped while the start was in progress
            self._process.stop()
            return

        self._transition(SupervisorState.WATCHING)
        self._restart.attempts = 0
        self._delays.clear()
        self._events.emit(EventKind.WATCH_STARTED)

    def report_crash(self, crash: WatchProcessCrash) -> None:
        """Handle a crash of the watch process (called by the process)."""
        # A restart already pending covers any further report
        if self._state in (
            SupervisorState.STOPPED,
            SupervisorState.FAILED,
            SupervisorState.RESTARTING,
        ):
            log.debug("Ignoring crash report in state %s: %s", self._state.value, crash)
            return

        self.last_error = crash
        log.error("Watch process crashed: %s", crash)
        self._events.emit(EventKind.WATCHER_CRASHED, error=crash, recoverable=True)
        self._transition(SupervisorState.RESTARTING)

        if self._restart.exhausted:
            exhausted = RestartExhaustedError(self._restart.max_attempts)
            self.last_error = exhausted
            self._transition(SupervisorState.FAILED)
            log.error("%s; watcher will not be restarted", exhausted)
            self._events.emit(
                EventKind.WATCHER_FAILED,
                error=exhausted,
                max_attempts=self._restart.max_attempts,
                recoverable=False,
            )
            return

        self._restart.attempts += 1
        delay = self._restart.next_delay()
        self._delays.append(delay)
        log.warning(
            "Restarting watcher in %.2fs (attempt %d/%d)",
            delay,
            self._restart.attempts,
            self._restart.max_attempts,
        )
        self._events.emit(
            EventKind.WATCHER_RESTARTING,
            attempt=self._restart.attempts,
            max_attempts=self._restart.max_attempts,
            delay=delay,
        )
        self._cancel_restart()
        self._restart_task = asyncio.create_task(self._restart_after(delay))

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._state is not SupervisorState.RESTARTING:
            return
        self._restart_task = None
        self._transition(SupervisorState.STARTING)
        await self._launch()

    def _cancel_restart(self) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

    def reset(self) -> None:
        """Clear the attempt counter; leaves FAILED for STOPPED."""
        self._restart.attempts = 0
        self._delays.clear()
        if self._state is SupervisorState.FAILED:
            self._transition(SupervisorState.STOPPED)
            self.last_error = None
        self._events.emit(EventKind.RESTART_ATTEMPTS_RESET)

    async def stop(self) -> None:
        """Cancel any pending restart and stop the watch process."""
        self._cancel_restart()
        was_active = self._state is not SupervisorState.STOPPED
        self._process.stop()
        if self._state is not SupervisorState.FAILED:
            self._transition(SupervisorState.STOPPED)
        if was_active:
            self._events.emit(EventKind.WATCH_STOPPED)
        # Let a cancelled restart task unwind
        await asyncio.sleep(0)
