"""Core data model for build orchestration.

TargetDescriptor and ChangeBatch are immutable. BuildTask and RunState are
owned by the scheduler and mutated only from the event loop thread; once a
batch completes its tasks are handed to the reporter read-only.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class BuildMethod(str, Enum):
    """Build methods understood by the built-in dispatcher."""

    ESBUILD = "esbuild"
    MAKEFILE = "makefile"
    COMMAND = "command"


@dataclass(frozen=True)
class TargetDescriptor:
    """One independently buildable unit.

    Attributes:
        name: Unique target name; also names the output directory.
        source_root: Path prefix of the target's sources.
        build_method: Key into the dispatcher registry. Kept as a plain
            string so unknown methods survive parsing and fail at dispatch.
        build_parameters: Opaque parameters for the build method.
    """

    name: str
    source_root: str
    build_method: str
    build_parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.build_method, BuildMethod):
            object.__setattr__(self, "build_method", self.build_method.value)
        if not isinstance(self.build_parameters, MappingProxyType):
            object.__setattr__(
                self, "build_parameters", MappingProxyType(dict(self.build_parameters))
            )

    def __hash__(self) -> int:
        return hash(self.name)


@dataclass(frozen=True)
class ChangeBatch:
    """Deduplicated paths collected during one quiet period."""

    paths: frozenset[str] = frozenset()
    created_at: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return not self.paths

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self):
        return iter(self.paths)

    def __contains__(self, path: object) -> bool:
        return path in self.paths


class BuildStatus(Enum):
    """Lifecycle of one target's build: pending -> running -> terminal."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"  # Never admitted because shutdown was requested

    @property
    def is_terminal(self) -> bool:
        return self in (BuildStatus.SUCCESS, BuildStatus.FAILURE, BuildStatus.SKIPPED)


@dataclass
class BuildTask:
    """One target's build attempt."""

    target: TargetDescriptor
    status: BuildStatus = BuildStatus.PENDING
    start_time: float | None = None  # time.time() wall clock
    end_time: float | None = None
    stdout: str = ""
    stderr: str = ""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    _started_perf: float | None = field(default=None, repr=False)
    _duration_ms: float = field(default=0.0, repr=False)

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def success(self) -> bool:
        return self.status is BuildStatus.SUCCESS

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> float:
        """Wall-clock build duration; 0 until the task has finished."""
        return self._duration_ms

    def mark_running(self) -> None:
        self.status = BuildStatus.RUNNING
        self.start_time = time.time()
        self._started_perf = time.perf_counter()

    def mark_finished(self, status: BuildStatus) -> None:
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.end_time = time.time()
        if self._started_perf is not None:
            self._duration_ms = (time.perf_counter() - self._started_perf) * 1000

    def to_dict(self) -> dict[str, Any]:
        """Serialize for event payloads and status snapshots."""
        return {
            "target": self.name,
            "status": self.status.value,
            "success": self.success,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class RunState:
    """Scheduler-scoped state for one batch."""

    max_parallel: int
    queue: deque[TargetDescriptor] = field(default_factory=deque)
    active_count: int = 0
    results: dict[str, BuildTask] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)  # Submission order
    total_expected: int = 0
    completed: int = 0
    peak_active: int = 0

    @classmethod
    def for_targets(cls, targets: list[TargetDescriptor], max_parallel: int) -> RunState:
        state = cls(max_parallel=max_parallel)
        for target in targets:
            state.queue.append(target)
            state.results[target.name] = BuildTask(target=target)
            state.order.append(target.name)
        state.total_expected = len(targets)
        return state

    @property
    def is_complete(self) -> bool:
        return (
            self.active_count == 0
            and not self.queue
            and self.completed == self.total_expected
        )


@dataclass
class RestartState:
    """Supervisor-scoped retry bookkeeping; persists across batches."""

    max_attempts: int = 3
    base_delay: float = 1.0
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        """Backoff delay for the current attempt number (1-based)."""
        return self.base_delay * (2 ** max(0, self.attempts - 1))
