"""Top-level wiring of the watch-and-rebuild loop.

    supervisor -> watcher -> aggregator -> resolver -> scheduler -> reporter

Everything runs on one event loop. Only one build run is active at a time:
batches that arrive while a run is in progress are merged and processed as
a single follow-up run once it finishes.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from hotbuild.build.dispatch import BuildDispatcher
from hotbuild.build.models import ChangeBatch, TargetDescriptor
from hotbuild.build.reporter import RunSummary, summarize
from hotbuild.build.scheduler import BuildScheduler, Dispatcher, default_max_parallel
from hotbuild.build.staleness import StalenessResolver
from hotbuild.config.schema import Config
from hotbuild.errors import HotbuildError
from hotbuild.events import EventBus, EventKind
from hotbuild.logging import get_logger
from hotbuild.watching.aggregator import ChangeAggregator
from hotbuild.watching.supervisor import RestartSupervisor, WatchProcess
from hotbuild.watching.watcher import FileWatcher

log = get_logger("orchestrator")


def max_parallel_for(config: Config) -> int:
    """Concurrency cap implied by a config."""
    if not config.build.parallel:
        return 1
    if config.build.max_parallel is not None:
        return config.build.max_parallel
    return default_max_parallel()


class Orchestrator:
    """Watches target sources and rebuilds what changed.

    Example:
        orchestrator = Orchestrator(targets, config, project_root=".")
        await orchestrator.start()
        ...
        await orchestrator.shutdown()

    A custom watch process may be passed in; it should feed changed paths
    to notify_changes().
    """

    def __init__(
        self,
        targets: Iterable[TargetDescriptor],
        config: Config,
        *,
        project_root: str | Path = ".",
        dispatcher: Dispatcher | None = None,
        watcher: WatchProcess | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._targets = list(targets)
        self._config = config
        self._project_root = Path(os.path.abspath(project_root))
        self.events = events or EventBus()

        self._dispatcher = dispatcher or BuildDispatcher(
            project_root=self._project_root,
            output_root=config.build.output_root,
            settings=config.build.settings,
            timeout=config.build.timeout,
        )
        self._resolver = StalenessResolver(config.build.output_root, self._project_root)
        self._scheduler = BuildScheduler(
            self._dispatcher, self.events, max_parallel=max_parallel_for(config)
        )
        self._aggregator = ChangeAggregator(self._on_batch, config.watch.debounce_delay)
        self._watcher = watcher or FileWatcher(
            [self._resolver.source_dir_for(t) for t in self._targets],
            self.notify_changes,
            cwd=self._project_root,
            poll_interval=config.watch.poll_interval,
            extensions=config.watch.extensions,
            ignore_patterns=config.watch.ignore_patterns,
            max_files=config.watch.max_files,
        )
        self._supervisor = RestartSupervisor(
            self._watcher,
            self.events,
            max_attempts=config.restart.max_attempts,
            base_delay=config.restart.base_delay,
        )

        self._run_task: asyncio.Task[None] | None = None
        self._pending_paths: set[str] = set()
        self._pending_full = False
        self._last_summary: RunSummary | None = None
        self._closed = False

    @property
    def targets(self) -> list[TargetDescriptor]:
        return list(self._targets)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def supervisor(self) -> RestartSupervisor:
        return self._supervisor

    @property
    def scheduler(self) -> BuildScheduler:
        return self._scheduler

    @property
    def aggregator(self) -> ChangeAggregator:
        return self._aggregator

    @property
    def last_summary(self) -> RunSummary | None:
        """Summary of the most recent completed build run."""
        return self._last_summary

    @property
    def closed(self) -> bool:
        return self._closed

    def is_building(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "watcher": self._supervisor.status(),
            "building": self.is_building(),
            "active_builds": self._scheduler.active_count,
            "max_parallel": self._scheduler.max_parallel,
            "pending_changes": self._aggregator.pending_count + len(self._pending_paths),
            "targets": self._scheduler.snapshot(),
            "last_summary": self._last_summary.to_dict() if self._last_summary else None,
        }

    async def start(self, *, initial_build: bool = False) -> None:
        """Start watching; optionally run a full build straight away."""
        if self._closed:
            raise HotbuildError("Orchestrator has been shut down")
        log.info("Watching %d targets", len(self._targets))
        await self._supervisor.start()
        if initial_build:
            self._enqueue(ChangeBatch())

    def notify_changes(self, paths: Iterable[str]) -> None:
        """Feed changed paths into the debounce window."""
        if self._closed:
            return
        self._aggregator.notify(paths)

    def apply_config(self, config: Config) -> None:
        """Apply debounce, concurrency and restart settings.

        A debounce timer already running and a batch already building keep
        their settings; the new values apply from the next window or batch.
        """
        self._aggregator.set_delay(config.watch.debounce_delay)
        self._scheduler.max_parallel = max_parallel_for(config)
        self._supervisor.set_max_attempts(config.restart.max_attempts)
        self._supervisor.set_base_delay(config.restart.base_delay)
        if isinstance(self._dispatcher, BuildDispatcher):
            self._dispatcher.update_settings(config.build.settings)
            self._dispatcher.timeout = config.build.timeout
        if isinstance(self._watcher, FileWatcher):
            self._watcher.poll_interval = config.watch.poll_interval
        self._config = config
        log.info(
            "Configuration applied (debounce: %.2fs, max parallel: %d)",
            config.watch.debounce_delay,
            self._scheduler.max_parallel,
        )

    async def add_ignore_pattern(self, pattern: str) -> bool:
        """Ignore another glob pattern in the polling watcher."""
        if not isinstance(self._watcher, FileWatcher):
            log.warning("Ignore patterns are managed by the custom watch process")
            return False
        return await self._watcher.add_ignore_pattern(pattern)

    async def remove_ignore_pattern(self, pattern: str) -> bool:
        """Stop ignoring a glob pattern in the polling watcher."""
        if not isinstance(self._watcher, FileWatcher):
            log.warning("Ignore patterns are managed by the custom watch process")
            return False
        return await self._watcher.remove_ignore_pattern(pattern)

    async def rebuild_all(self) -> RunSummary | None:
        """Build every target and wait for the run to finish.

        If a run is in progress, the full rebuild follows it.
        """
        if self._closed:
            raise HotbuildError("Orchestrator has been shut down")
        log.info("Full rebuild requested")
        self._aggregator.cancel()
        self._enqueue(ChangeBatch())
        await self.wait_idle()
        return self._last_summary

    async def build_once(self) -> RunSummary:
        """One full build without watching."""
        summary = await self.rebuild_all()
        return summary if summary is not None else summarize({})

    async def wait_idle(self) -> None:
        """Wait until no build run is active or pending."""
        while self._run_task is not None and not self._run_task.done():
            await asyncio.shield(self._run_task)

    def _on_batch(self, batch: ChangeBatch) -> None:
        log.info("Detected changes in %d files", len(batch))
        self.events.emit(EventKind.FILES_CHANGED, paths=sorted(batch.paths), count=len(batch))
        self._enqueue(batch)

    def _enqueue(self, batch: ChangeBatch) -> None:
        if self._closed:
            return
        if self.is_building():
            if batch.is_empty:
                self._pending_full = True
            else:
                self._pending_paths.update(batch.paths)
            log.debug("Build in progress, deferring %d changed paths", len(batch))
            return
        self._run_task = asyncio.create_task(self._process(batch))

    def _take_pending(self) -> ChangeBatch | None:
        if self._pending_full:
            batch = ChangeBatch()
        elif self._pending_paths:
            batch = ChangeBatch(paths=frozenset(self._pending_paths))
        else:
            return None
        self._pending_full = False
        self._pending_paths = set()
        return batch

    async def _process(self, batch: ChangeBatch | None) -> None:
        while batch is not None and not self._closed:
            try:
                selected = self._resolver.select(batch, self._targets)
                if not selected:
                    log.info("No targets need rebuilding")
                    self.events.emit(EventKind.NOTHING_TO_BUILD, paths=sorted(batch.paths))
                else:
                    results = await self._scheduler.run(selected)
                    self._last_summary = summarize(results, [t.name for t in selected])
            except asyncio.CancelledError:
                raise
            except HotbuildError as e:
                log.error("Build run failed: %s", e)
            batch = self._take_pending()

    async def shutdown(self) -> None:
        """Stop watching and let in-flight builds finish. Idempotent."""
        if self._closed:
            return
        self._closed = True
        log.info("Shutting down")

        dropped = self._aggregator.cancel()
        if dropped:
            log.debug("Discarded %d pending changes", dropped)
        self._pending_paths = set()
        self._pending_full = False

        self._scheduler.request_shutdown()
        await self._supervisor.stop()
        await self._scheduler.wait_idle()
        if self._run_task is not None:
            await asyncio.gather(self._run_task, return_exceptions=True)
            self._run_task = None
        log.info("Shutdown complete")
