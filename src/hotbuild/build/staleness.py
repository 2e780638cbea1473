"""Incremental target selection.

A target is rebuilt when a changed path falls under its source root and its
build output is missing, empty, or older than its newest source file. Any
file-system error during the comparison counts as stale: an unnecessary
rebuild is cheaper than a target silently left out of date.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path, PurePath

from hotbuild.build.models import ChangeBatch, TargetDescriptor
from hotbuild.errors import StalenessCheckError
from hotbuild.logging import VERBOSE, get_logger

log = get_logger("staleness")

# Directory names skipped while scanning a source tree
EXCLUDED_SOURCE_DIRS = frozenset(
    {"node_modules", ".git", ".aws-sam", "dist", "build", "__pycache__", ".venv"}
)


def normalize_path(path: str | os.PathLike[str], root: str | os.PathLike[str]) -> PurePath:
    """Make a path absolute against ``root`` and collapse ``.``/``..`` parts.

    Symlinks are not resolved, so the result matches what a watcher reports.
    """
    p = os.fspath(path)
    if not os.path.isabs(p):
        p = os.path.join(os.fspath(root), p)
    return PurePath(os.path.normpath(p))


def latest_source_mtime(source_root: Path) -> float:
    """Newest modification time of any file under ``source_root``.

    Returns 0.0 for a tree with no files.

    Raises:
        StalenessCheckError: If any directory or file cannot be read.
    """
    latest = 0.0
    stack = [source_root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        if entry.name not in EXCLUDED_SOURCE_DIRS:
                            stack.append(Path(entry.path))
                    elif entry.is_file():
                        latest = max(latest, entry.stat().st_mtime)
        except OSError as e:
            raise StalenessCheckError(str(current), e) from e
    return latest


def latest_output_mtime(output_dir: Path) -> float | None:
    """Newest modification time among build output files.

    Returns None when the directory holds no files at all.

    Raises:
        StalenessCheckError: If the tree cannot be read.
    """
    latest: float | None = None
    stack = [output_dir]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        stack.append(Path(entry.path))
                    elif entry.is_file():
                        mtime = entry.stat().st_mtime
                        latest = mtime if latest is None else max(latest, mtime)
        except OSError as e:
            raise StalenessCheckError(str(current), e) from e
    return latest


class StalenessResolver:
    """Decides which targets a change batch requires rebuilding."""

    def __init__(self, output_root: str | Path, project_root: str | Path = ".") -> None:
        """Initialize the resolver.

        Args:
            output_root: Directory holding one output directory per target.
                Relative paths are resolved against project_root.
            project_root: Base for relative source roots and changed paths.
        """
        self._project_root = Path(os.path.abspath(project_root))
        root = Path(output_root)
        self._output_root = root if root.is_absolute() else self._project_root / root

    @property
    def output_root(self) -> Path:
        return self._output_root

    def output_dir_for(self, target: TargetDescriptor) -> Path:
        """Build output directory for a target."""
        return self._output_root / target.name

    def source_dir_for(self, target: TargetDescriptor) -> Path:
        return Path(normalize_path(target.source_root, self._project_root))

    def is_affected(self, target: TargetDescriptor, paths: Iterable[str]) -> bool:
        """True if any path lies inside the target's source root."""
        root = normalize_path(target.source_root, self._project_root)
        return any(
            normalize_path(p, self._project_root).is_relative_to(root) for p in paths
        )

    def affected_targets(
        self,
        batch: ChangeBatch,
        targets: Iterable[TargetDescriptor],
    ) -> list[TargetDescriptor]:
        """Targets touched by the batch, in their original order."""
        paths = list(batch.paths)
        return [t for t in targets if self.is_affected(t, paths)]

    def is_stale(self, target: TargetDescriptor) -> bool:
        """True if the target's build output is missing, empty or out of date."""
        output_dir = self.output_dir_for(target)
        try:
            if not output_dir.exists():
                log.debug("Build output directory %s does not exist", output_dir)
                return True

            artifact_time = latest_output_mtime(output_dir)
            if artifact_time is None:
                log.debug("No build artifacts found in %s", output_dir)
                return True

            source_time = latest_source_mtime(self.source_dir_for(target))
        except StalenessCheckError as e:
            log.warning("[%s] Error checking artifact freshness, rebuilding: %s", target.name, e)
            return True

        stale = source_time > artifact_time
        if stale:
            log.debug(
                "[%s] Artifacts are stale: source=%.3f artifact=%.3f",
                target.name,
                source_time,
                artifact_time,
            )
        return stale

    def select(
        self,
        batch: ChangeBatch,
        targets: Iterable[TargetDescriptor],
    ) -> list[TargetDescriptor]:
        """Targets to hand to the scheduler for this batch.

        An empty batch is a full run: every target is selected.
        """
        targets = list(targets)
        if batch.is_empty:
            return targets

        selected: list[TargetDescriptor] = []
        paths = list(batch.paths)
        for target in targets:
            if not self.is_affected(target, paths):
                continue
            if self.is_stale(target):
                log.log(VERBOSE, "Target %s needs rebuilding due to file changes", target.name)
                selected.append(target)
            else:
                log.log(VERBOSE, "Target %s is up to date, skipping build", target.name)
        return selected
