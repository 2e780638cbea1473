"""File watching for hotbuild.

Provides the polling watcher, the debounced change aggregator that turns
its notifications into batches, and the supervisor that restarts the
watcher when it crashes.
"""

from hotbuild.watching.aggregator import ChangeAggregator
from hotbuild.watching.supervisor import RestartSupervisor, SupervisorState, WatchProcess
from hotbuild.watching.watcher import FileState, FileWatcher, WatchLimitExceeded

__all__ = [
    "ChangeAggregator",
    "FileState",
    "FileWatcher",
    "RestartSupervisor",
    "SupervisorState",
    "WatchLimitExceeded",
    "WatchProcess",
]
