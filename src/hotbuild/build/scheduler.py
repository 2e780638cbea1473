"""Bounded-parallel build scheduling.

The scheduler is a work-conserving pool driven from the event loop: up to
``max_parallel`` builds are in flight, and each completion immediately
admits the next queued target. All RunState mutations happen on the loop
thread (admission and completion bookkeeping never await), so completions
of concurrent builds cannot interleave inside an update.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Protocol

from hotbuild.build.dispatch import (
    DispatchResult,
    check_result,
    collect_warnings,
    troubleshooting_hint,
)
from hotbuild.build.models import BuildStatus, BuildTask, RunState, TargetDescriptor
from hotbuild.build.reporter import format_summary, progress_line, summarize
from hotbuild.errors import BuildFailure, InvalidInputError
from hotbuild.events import EventBus, EventKind
from hotbuild.logging import get_logger, log_build_output

log = get_logger("scheduler")


class Dispatcher(Protocol):
    """What the scheduler needs from build dispatch."""

    def output_dir_for(self, target: TargetDescriptor) -> Path: ...

    async def execute(self, target: TargetDescriptor, output_dir: Path) -> DispatchResult: ...


def default_max_parallel(parallel: bool = True) -> int:
    """Half the available CPUs (at least one), or one when parallel is off."""
    if not parallel:
        return 1
    return max(1, (os.cpu_count() or 1) // 2)


def _log_hint(name: str, error: str) -> None:
    hint = troubleshooting_hint(error)
    if hint:
        log.info("[%s] Suggestion: %s", name, hint)


class BuildScheduler:
    """Runs batches of targets with a concurrency cap.

    Example:
        scheduler = BuildScheduler(dispatcher, events, max_parallel=2)
        results = await scheduler.run(targets)
        for name, task in results.items():
            print(name, task.status.value)
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        events: EventBus | None = None,
        max_parallel: int | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            dispatcher: Performs the actual builds.
            events: Bus for lifecycle events. A private bus is used if None.
            max_parallel: Concurrency cap; defaults to default_max_parallel().
        """
        self._dispatcher = dispatcher
        self._events = events or EventBus()
        self._max_parallel = default_max_parallel()
        if max_parallel is not None:
            self.max_parallel = max_parallel

        self._current: RunState | None = None
        self._current_done: asyncio.Event | None = None
        self._last: RunState | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._shutdown_requested = False

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    @max_parallel.setter
    def max_parallel(self, value: int) -> None:
        """Set the cap for subsequent batches; a running batch keeps its own."""
        if value < 1:
            raise ValueError("max_parallel must be at least 1")
        self._max_parallel = value

    @property
    def active_count(self) -> int:
        return self._current.active_count if self._current else 0

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def is_building(self) -> bool:
        """True while at least one build is in flight."""
        return self.active_count > 0

    def snapshot(self) -> dict[str, dict]:
        """Status of every target in the current (or most recent) batch."""
        state = self._current or self._last
        if state is None:
            return {}
        return {name: state.results[name].to_dict() for name in state.order}

    async def run(self, targets: list[TargetDescriptor] | None) -> dict[str, BuildTask]:
        """Build every target and wait until all reach a terminal state.

        Individual build failures are recorded on their tasks; they never
        abort the batch.

        Args:
            targets: Targets to build, in submission order.

        Returns:
            Tasks keyed by target name.

        Raises:
            InvalidInputError: If targets is empty or None, contains duplicate
                names, or a batch is already running on this scheduler.
        """
        if not targets:
            raise InvalidInputError("No targets provided for building")
        if self._current is not None:
            raise InvalidInputError("A build batch is already running")
        names = [t.name for t in targets]
        if len(set(names)) != len(names):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise InvalidInputError(f"Duplicate target names: {', '.join(duplicates)}")

        # The cap is read once; later changes apply to the next batch
        state = RunState.for_targets(list(targets), self._max_parallel)
        done = asyncio.Event()
        self._current = state
        self._current_done = done

        log.info(
            "Starting build for %d targets (max parallel: %d)",
            state.total_expected,
            state.max_parallel,
        )
        self._display_progress(state)

        try:
            for _ in range(min(state.max_parallel, state.total_expected)):
                self._admit_next(state, done)
            self._check_complete(state, done)
            await done.wait()
        finally:
            self._last = state
            if self._current is state:
                self._current = None
                self._current_done = None

        return dict(state.results)

    def request_shutdown(self) -> None:
        """Stop admitting builds. Queued targets are marked skipped;
        builds already running are left to finish."""
        self._shutdown_requested = True
        state = self._current
        if state is not None and state.queue:
            log.info("Shutdown requested, skipping %d queued builds", len(state.queue))
            self._skip_queued(state)
            if self._current_done is not None:
                self._check_complete(state, self._current_done)

    async def wait_idle(self) -> None:
        """Wait for every in-flight build to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _admit_next(self, state: RunState, done: asyncio.Event) -> None:
        if self._shutdown_requested:
            self._skip_queued(state)
            return
        if not state.queue or state.active_count >= state.max_parallel:
            return

        target = state.queue.popleft()
        task = state.results[target.name]
        state.active_count += 1
        state.peak_active = max(state.peak_active, state.active_count)
        task.mark_running()

        log.info("[%s] Build started", target.name)
        self._events.emit(EventKind.BUILD_STARTED, target=target.name, start_time=task.start_time)

        runner = asyncio.create_task(self._run_task(state, task, done))
        self._inflight.add(runner)
        runner.add_done_callback(self._inflight.discard)

    async def _run_task(self, state: RunState, task: BuildTask, done: asyncio.Event) -> None:
        target = task.target
        status = BuildStatus.FAILURE
        try:
            result = await self._dispatcher.execute(
                target, self._dispatcher.output_dir_for(target)
            )
            task.stdout = result.stdout
            task.stderr = result.stderr
            task.warnings.extend(collect_warnings(result.stderr))
            log_build_output(target.name, result.stdout)
            log_build_output(target.name, result.stderr)
            check_result(target, result)
            status = BuildStatus.SUCCESS
        except asyncio.CancelledError:
            task.errors.append("Build cancelled")
            raise
        except BuildFailure as e:
            task.errors.append(str(e))
            log.error("[%s] %s", target.name, e)
            _log_hint(target.name, str(e))
        except Exception as e:
            task.errors.append(f"{type(e).__name__}: {e}")
            log.error("[%s] Build raised %s: %s", target.name, type(e).__name__, e)
            _log_hint(target.name, str(e))
        finally:
            self._complete(state, task, status, done)

    def _complete(
        self,
        state: RunState,
        task: BuildTask,
        status: BuildStatus,
        done: asyncio.Event,
    ) -> None:
        task.mark_finished(status)
        state.active_count -= 1
        state.completed += 1

        log.info(
            "[%s] Build %s (%.0fms)",
            task.name,
            "completed" if task.success else "failed",
            task.duration_ms,
        )
        self._display_progress(state)
        self._events.emit(
            EventKind.BUILD_COMPLETED,
            target=task.name,
            success=task.success,
            duration_ms=task.duration_ms,
            task=task,
        )

        self._admit_next(state, done)
        self._check_complete(state, done)

    def _skip_queued(self, state: RunState) -> None:
        while state.queue:
            target = state.queue.popleft()
            task = state.results[target.name]
            task.errors.append("Build skipped: shutdown requested")
            task.mark_finished(BuildStatus.SKIPPED)
            state.completed += 1
            self._events.emit(
                EventKind.BUILD_COMPLETED,
                target=task.name,
                success=False,
                skipped=True,
                duration_ms=0.0,
                task=task,
            )

    def _check_complete(self, state: RunState, done: asyncio.Event) -> None:
        if done.is_set() or not state.is_complete:
            return

        summary = summarize(state.results, state.order)
        for line in format_summary(summary):
            log.info(line)
        self._events.emit(
            EventKind.ALL_BUILDS_COMPLETE,
            results=dict(state.results),
            total=state.total_expected,
            success_count=summary.success_count,
            summary=summary,
        )
        done.set()

    def _display_progress(self, state: RunState) -> None:
        if state.total_expected > 1:
            log.info(progress_line(state.completed, state.total_expected))
