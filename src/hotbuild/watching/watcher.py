"""Polling file watcher over the targets' source trees.

Polling is preferred over native notification APIs for cross-platform
reliability. Each cycle walks the watched roots, diffs modification times
against the previous snapshot and reports changed paths in one call.

A cycle that fails as a whole (a root vanished, the file ceiling was hit)
ends the poll task; the failure is reported through the crash callback so
a supervisor can restart the watcher.
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from hotbuild.errors import WatchProcessCrash
from hotbuild.logging import get_logger

log = get_logger("watching")

CrashCallback = Callable[[WatchProcessCrash], None]


@dataclass
class FileState:
    """Last observed state of a watched file."""

    mtime: float
    size: int


class WatchLimitExceeded(OSError):
    """More files matched than the configured ceiling allows."""


def matches_any(relative: str, patterns: Iterable[str]) -> bool:
    """Glob match of a '/'-separated relative path against ignore patterns.

    ``dir/**`` matches everything below ``dir``; ``**/x`` also matches ``x``
    at the top level.
    """
    path = PurePosixPath(relative)
    for pattern in patterns:
        if fnmatch.fnmatch(relative, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(relative, pattern[3:]):
            return True
        if pattern.endswith("/**"):
            prefix = pattern[:-3]
            if "*" not in prefix and (
                relative == prefix or path.is_relative_to(PurePosixPath(prefix))
            ):
                return True
            if prefix.startswith("**/"):
                name = prefix[3:]
                if name in path.parts[:-1] or relative == name:
                    return True
    return False


class FileWatcher:
    """Watches source trees for changes using polling.

    Example:
        watcher = FileWatcher(["src/a", "src/b"], on_change=aggregator.notify)
        await watcher.start(on_crash=supervisor.report_crash)
        ...
        watcher.stop()
    """

    def __init__(
        self,
        roots: Iterable[str | Path],
        on_change: Callable[[list[str]], None],
        *,
        cwd: str | Path = ".",
        poll_interval: float = 0.5,
        extensions: Iterable[str] | None = None,
        ignore_patterns: Iterable[str] = (),
        max_files: int = 20000,
    ) -> None:
        """Initialize the file watcher.

        Args:
            roots: Directories to watch. Relative roots resolve against cwd.
            on_change: Receives the list of changed paths of each cycle.
            cwd: Base directory for relative roots and ignore patterns.
            poll_interval: Seconds between polling cycles.
            extensions: File extensions to watch (without dot); None means all.
            ignore_patterns: Glob patterns relative to cwd to skip.
            max_files: Ceiling on the number of watched files.
        """
        self._cwd = Path(os.path.abspath(cwd))
        self._roots = self._dedupe_roots(roots)
        self._on_change = on_change
        self.poll_interval = poll_interval
        self._extensions = (
            {e.lower().lstrip(".") for e in extensions} if extensions is not None else None
        )
        self._ignore = list(ignore_patterns)
        self._max_files = max_files

        self._snapshot: dict[str, FileState] = {}
        # False until a snapshot exists that a later start can be diffed against
        self._has_baseline = False
        self._task: asyncio.Task[None] | None = None
        self._on_crash: CrashCallback | None = None
        self._running = False

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @poll_interval.setter
    def poll_interval(self, value: float) -> None:
        self._poll_interval = max(0.01, value)

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    @property
    def watched_count(self) -> int:
        return len(self._snapshot)

    def is_running(self) -> bool:
        return self._running

    def _dedupe_roots(self, roots: Iterable[str | Path]) -> list[Path]:
        resolved: list[Path] = []
        for root in roots:
            p = Path(root)
            if not p.is_absolute():
                p = self._cwd / p
            p = Path(os.path.normpath(p))
            if p not in resolved:
                resolved.append(p)
        # Drop roots nested inside another root
        return [
            r for r in resolved
            if not any(r != other and r.is_relative_to(other) for other in resolved)
        ]

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self._cwd).as_posix()
        except ValueError:
            return path.as_posix()

    def _skip_dir(self, path: Path) -> bool:
        # Match against a child name so "dir/**" style patterns match the directory
        return bool(self._ignore) and matches_any(self._relative(path) + "/_", self._ignore)

    def _wanted(self, path: Path) -> bool:
        if self._ignore and matches_any(self._relative(path), self._ignore):
            return False
        if self._extensions is None:
            return True
        return path.suffix.lower().lstrip(".") in self._extensions

    def scan(self) -> dict[str, FileState]:
        """Walk all roots and return the current file states.

        Raises:
            OSError: If a root cannot be listed.
            WatchLimitExceeded: If more than max_files files match.
        """
        states: dict[str, FileState] = {}
        for root in self._roots:
            stack = [root]
            while stack:
                current = stack.pop()
                try:
                    with os.scandir(current) as it:
                        entries = list(it)
                except OSError as e:
                    # A missing root is a hard failure; unreadable subdirectories are not
                    if current == root:
                        raise
                    log.warning("Error listing %s: %s", current, e)
                    continue
                for entry in entries:
                    path = Path(entry.path)
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if not self._skip_dir(path):
                                stack.append(path)
                            continue
                        if not entry.is_file() or not self._wanted(path):
                            continue
                        st = entry.stat()
                    except FileNotFoundError:
                        continue  # Removed between listing and stat
                    except OSError as e:
                        log.warning("Error checking %s: %s", path, e)
                        continue
                    states[str(path)] = FileState(mtime=st.st_mtime, size=st.st_size)
                    if len(states) > self._max_files:
                        raise WatchLimitExceeded(
                            f"More than {self._max_files} files under watched roots"
                        )
        return states

    @staticmethod
    def diff(
        previous: dict[str, FileState], current: dict[str, FileState]
    ) -> list[str]:
        """Paths created, modified or deleted between two snapshots."""
        changed = [path for path, state in current.items() if previous.get(path) != state]
        changed.extend(path for path in previous if path not in current)
        return changed

    def check_changes(self) -> list[str]:
        """Rescan and return paths created, modified or deleted since last scan."""
        current = self.scan()
        changed = self.diff(self._snapshot, current)
        self._snapshot = current
        return changed

    async def start(self, on_crash: CrashCallback | None = None) -> None:
        """Take a snapshot and launch the polling task.

        On a restart the fresh snapshot is diffed against the one kept from
        the previous run, and files that changed while the watcher was down
        are reported to the change callback. The first start only records
        the baseline.

        Returns once the watcher is confirmed running.

        Raises:
            OSError: If the snapshot fails; nothing is left running.
        """
        if self._running:
            log.warning("FileWatcher already running")
            return

        self._on_crash = on_crash
        previous = self._snapshot if self._has_baseline else None
        self._snapshot = self.scan()
        self._has_baseline = True
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        log.info(
            "FileWatcher started (%d files, %d roots, interval: %.2fs)",
            len(self._snapshot),
            len(self._roots),
            self._poll_interval,
        )

        if previous is not None:
            missed = self.diff(previous, self._snapshot)
            if missed:
                log.info("%d files changed while the watcher was down", len(missed))
                self._notify(missed)

    @property
    def ignore_patterns(self) -> list[str]:
        return list(self._ignore)

    async def add_ignore_pattern(self, pattern: str) -> bool:
        """Ignore another glob pattern, restarting the watcher if it is running.

        Returns:
            False if the pattern was already present.
        """
        if pattern in self._ignore:
            return False
        self._ignore.append(pattern)
        log.info("Added ignore pattern: %s", pattern)
        await self._restart_for_patterns()
        return True

    async def remove_ignore_pattern(self, pattern: str) -> bool:
        """Stop ignoring a glob pattern, restarting the watcher if it is running.

        Returns:
            False if the pattern was not present.
        """
        if pattern not in self._ignore:
            return False
        self._ignore.remove(pattern)
        log.info("Removed ignore pattern: %s", pattern)
        await self._restart_for_patterns()
        return True

    async def _restart_for_patterns(self) -> None:
        # The watched file set changed; a diff against the old snapshot would be noise
        self._has_baseline = False
        if not self._running:
            return
        on_crash = self._on_crash
        self.stop()
        try:
            await self.start(on_crash)
        except OSError as e:
            log.error("FileWatcher failed to restart: %s", e)
            if on_crash is not None:
                on_crash(WatchProcessCrash(f"File watcher failed to restart: {e}", cause=e))

    def _notify(self, changed: list[str]) -> None:
        try:
            self._on_change(changed)
        except Exception as e:
            log.error("Error in file change callback: %s", e)

    async def _poll_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._poll_interval)
                if not self._running:
                    break
                changed = self.check_changes()
                if changed:
                    log.debug("Detected %d changed files", len(changed))
                    self._notify(changed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._running = False
            log.error("FileWatcher crashed: %s", e)
            if self._on_crash is not None:
                self._on_crash(WatchProcessCrash(f"File watcher crashed: {e}", cause=e))
        finally:
            # A cancelled task unwinding after a restart must not stop its successor
            if self._task is asyncio.current_task():
                self._running = False

    def stop(self) -> None:
        """Stop the polling loop."""
        was_running = self._running
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if was_running:
            log.info("FileWatcher stopped")
