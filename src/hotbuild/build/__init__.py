"""Build orchestration core: target selection, scheduling, dispatch, reporting."""

from hotbuild.build.dispatch import BuildDispatcher, DispatchResult
from hotbuild.build.models import (
    BuildMethod,
    BuildStatus,
    BuildTask,
    ChangeBatch,
    RestartState,
    RunState,
    TargetDescriptor,
)
from hotbuild.build.reporter import RunSummary, TargetResult, format_summary, summarize
from hotbuild.build.scheduler import BuildScheduler, default_max_parallel
from hotbuild.build.staleness import StalenessResolver

__all__ = [
    "BuildDispatcher",
    "BuildMethod",
    "BuildScheduler",
    "BuildStatus",
    "BuildTask",
    "ChangeBatch",
    "DispatchResult",
    "RestartState",
    "RunState",
    "RunSummary",
    "StalenessResolver",
    "TargetDescriptor",
    "TargetResult",
    "default_max_parallel",
    "format_summary",
    "summarize",
]
