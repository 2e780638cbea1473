"""Tests for the polling file watcher."""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path

import pytest

from hotbuild.errors import WatchProcessCrash
from hotbuild.watching.watcher import FileWatcher, WatchLimitExceeded, matches_any


def write(path: Path, text: str = "x", mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class TestMatchesAny:
    """Ignore pattern matching."""

    def test_directory_suffix(self) -> None:
        assert matches_any("node_modules/pkg/index.js", ["node_modules/**"])
        assert not matches_any("src/node_modules_backup.js", ["node_modules/**"])

    def test_any_depth_prefix(self) -> None:
        assert matches_any("src/a/node_modules/x.js", ["**/node_modules/**"])
        assert matches_any("node_modules/x.js", ["**/node_modules/**"])
        assert matches_any("debug.log", ["**/*.log"])

    def test_plain_glob(self) -> None:
        assert matches_any("src/app.test.ts", ["*.test.ts"])
        assert not matches_any("src/app.ts", ["*.test.ts"])


class TestScan:
    """Snapshotting and change detection."""

    def test_filters_by_extension(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts")
        write(tmp_path / "src" / "notes.md")
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, extensions=["ts"])

        states = watcher.scan()

        assert set(states) == {str(tmp_path / "src" / "app.ts")}

    def test_descends_into_subdirectories(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "lib" / "deep" / "util.ts")
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, extensions=["ts"])
        assert str(tmp_path / "src" / "lib" / "deep" / "util.ts") in watcher.scan()

    def test_skips_ignored_directories(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "node_modules" / "dep" / "index.js")
        write(tmp_path / "src" / "index.js")
        watcher = FileWatcher(
            ["src"],
            lambda paths: None,
            cwd=tmp_path,
            ignore_patterns=["**/node_modules/**"],
        )
        assert set(watcher.scan()) == {str(tmp_path / "src" / "index.js")}

    def test_nested_roots_deduplicated(self, tmp_path: Path) -> None:
        (tmp_path / "src" / "a").mkdir(parents=True)
        watcher = FileWatcher(["src", "src/a", "./src"], lambda paths: None, cwd=tmp_path)
        assert watcher.roots == [tmp_path / "src"]

    def test_detects_create_modify_delete(self, tmp_path: Path) -> None:
        kept = write(tmp_path / "src" / "kept.ts", mtime=1000)
        removed = write(tmp_path / "src" / "removed.ts", mtime=1000)
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path)
        watcher._snapshot = watcher.scan()

        write(kept, "changed", mtime=2000)
        removed.unlink()
        created = write(tmp_path / "src" / "new.ts")

        assert set(watcher.check_changes()) == {str(kept), str(removed), str(created)}
        assert watcher.check_changes() == []

    def test_missing_root_raises(self, tmp_path: Path) -> None:
        watcher = FileWatcher(["missing"], lambda paths: None, cwd=tmp_path)
        with pytest.raises(OSError):
            watcher.scan()

    def test_file_ceiling(self, tmp_path: Path) -> None:
        for i in range(5):
            write(tmp_path / "src" / f"f{i}.ts")
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, max_files=3)
        with pytest.raises(WatchLimitExceeded):
            watcher.scan()


class TestPolling:
    """The asynchronous poll loop."""

    @pytest.mark.asyncio
    async def test_reports_changes(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts", mtime=1000)
        changes: list[list[str]] = []
        watcher = FileWatcher(["src"], changes.append, cwd=tmp_path, poll_interval=0.02)

        await watcher.start()
        assert watcher.is_running()
        assert watcher.watched_count == 1
        write(tmp_path / "src" / "app.ts", "new", mtime=2000)
        await asyncio.sleep(0.1)
        watcher.stop()

        assert changes == [[str(tmp_path / "src" / "app.ts")]]
        assert not watcher.is_running()

    @pytest.mark.asyncio
    async def test_start_fails_for_missing_root(self, tmp_path: Path) -> None:
        watcher = FileWatcher(["missing"], lambda paths: None, cwd=tmp_path)
        with pytest.raises(OSError):
            await watcher.start()
        assert not watcher.is_running()

    @pytest.mark.asyncio
    async def test_vanished_root_reports_crash(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts")
        crashes: list[WatchProcessCrash] = []
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, poll_interval=0.02)

        await watcher.start(on_crash=crashes.append)
        shutil.rmtree(tmp_path / "src")
        await asyncio.sleep(0.1)

        assert len(crashes) == 1
        assert isinstance(crashes[0].cause, OSError)
        assert not watcher.is_running()

    @pytest.mark.asyncio
    async def test_callback_error_keeps_polling(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts", mtime=1000)
        calls: list[list[str]] = []

        def on_change(paths: list[str]) -> None:
            calls.append(paths)
            raise RuntimeError("handler bug")

        watcher = FileWatcher(["src"], on_change, cwd=tmp_path, poll_interval=0.02)
        await watcher.start()
        write(tmp_path / "src" / "app.ts", "1", mtime=2000)
        await asyncio.sleep(0.08)
        write(tmp_path / "src" / "app.ts", "2", mtime=3000)
        await asyncio.sleep(0.08)
        watcher.stop()

        assert len(calls) == 2

    def test_poll_interval_floor(self, tmp_path: Path) -> None:
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, poll_interval=0)
        assert watcher.poll_interval == 0.01


class TestRestart:
    """Stopping and starting the same watcher again."""

    @pytest.mark.asyncio
    async def test_first_start_reports_nothing(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts", mtime=1000)
        changes: list[list[str]] = []
        watcher = FileWatcher(["src"], changes.append, cwd=tmp_path, poll_interval=10)

        await watcher.start()
        watcher.stop()

        assert changes == []

    @pytest.mark.asyncio
    async def test_edits_while_down_reported_on_restart(self, tmp_path: Path) -> None:
        app = write(tmp_path / "src" / "app.ts", mtime=1000)
        gone = write(tmp_path / "src" / "gone.ts", mtime=1000)
        changes: list[list[str]] = []
        watcher = FileWatcher(["src"], changes.append, cwd=tmp_path, poll_interval=10)

        await watcher.start()
        watcher.stop()
        write(app, "edited while stopped", mtime=9999)
        gone.unlink()
        await watcher.start()
        watcher.stop()

        assert len(changes) == 1
        assert set(changes[0]) == {str(app), str(gone)}

    @pytest.mark.asyncio
    async def test_edits_before_crash_restart_reported(self, tmp_path: Path) -> None:
        """A root that disappears and comes back is diffed against the last good scan."""
        app = write(tmp_path / "src" / "app.ts", mtime=1000)
        changes: list[list[str]] = []
        crashes: list[WatchProcessCrash] = []
        watcher = FileWatcher(["src"], changes.append, cwd=tmp_path, poll_interval=0.02)

        await watcher.start(on_crash=crashes.append)
        shutil.rmtree(tmp_path / "src")
        await asyncio.sleep(0.1)
        assert len(crashes) == 1

        write(app, "restored", mtime=5000)
        await watcher.start(on_crash=crashes.append)
        watcher.stop()

        assert changes == [[str(app)]]


class TestIgnorePatterns:
    """Adding and removing ignore patterns at runtime."""

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self, tmp_path: Path) -> None:
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path)

        assert await watcher.add_ignore_pattern("**/*.gen.ts") is True
        assert await watcher.add_ignore_pattern("**/*.gen.ts") is False
        assert watcher.ignore_patterns == ["**/*.gen.ts"]

    @pytest.mark.asyncio
    async def test_remove_unknown_pattern(self, tmp_path: Path) -> None:
        watcher = FileWatcher(
            ["src"], lambda paths: None, cwd=tmp_path, ignore_patterns=["dist/**"]
        )

        assert await watcher.remove_ignore_pattern("build/**") is False
        assert await watcher.remove_ignore_pattern("dist/**") is True
        assert watcher.ignore_patterns == []

    @pytest.mark.asyncio
    async def test_running_watcher_restarts_with_new_pattern(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts", mtime=1000)
        generated = write(tmp_path / "src" / "types.gen.ts", mtime=1000)
        changes: list[list[str]] = []
        watcher = FileWatcher(["src"], changes.append, cwd=tmp_path, poll_interval=0.02)

        await watcher.start()
        assert watcher.watched_count == 2
        await watcher.add_ignore_pattern("**/*.gen.ts")

        assert watcher.is_running()
        assert watcher.watched_count == 1
        # Dropping a file from the watched set is not a change
        assert changes == []

        write(generated, "regenerated", mtime=2000)
        await asyncio.sleep(0.1)
        assert changes == []
        watcher.stop()

    @pytest.mark.asyncio
    async def test_removed_pattern_watches_again(self, tmp_path: Path) -> None:
        generated = write(tmp_path / "src" / "types.gen.ts", mtime=1000)
        changes: list[list[str]] = []
        watcher = FileWatcher(
            ["src"],
            changes.append,
            cwd=tmp_path,
            poll_interval=0.02,
            ignore_patterns=["**/*.gen.ts"],
        )

        await watcher.start()
        assert watcher.watched_count == 0
        await watcher.remove_ignore_pattern("**/*.gen.ts")
        assert watcher.watched_count == 1
        assert changes == []

        write(generated, "regenerated", mtime=2000)
        await asyncio.sleep(0.1)
        watcher.stop()

        assert changes == [[str(generated)]]

    @pytest.mark.asyncio
    async def test_failed_restart_reports_crash(self, tmp_path: Path) -> None:
        write(tmp_path / "src" / "app.ts")
        crashes: list[WatchProcessCrash] = []
        watcher = FileWatcher(["src"], lambda paths: None, cwd=tmp_path, poll_interval=10)

        await watcher.start(on_crash=crashes.append)
        shutil.rmtree(tmp_path / "src")
        await watcher.add_ignore_pattern("*.log")

        assert len(crashes) == 1
        assert "failed to restart" in str(crashes[0])
        assert not watcher.is_running()
