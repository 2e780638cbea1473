"""hotbuild: watch serverless function sources and rebuild only what changed."""

__version__ = "0.1.0"

# Public API
from hotbuild.build import (
    BuildDispatcher,
    BuildMethod,
    BuildScheduler,
    BuildStatus,
    BuildTask,
    ChangeBatch,
    RunSummary,
    StalenessResolver,
    TargetDescriptor,
)
from hotbuild.config import Config, get_config, load_config
from hotbuild.errors import (
    BuildFailure,
    ConfigError,
    HotbuildError,
    InvalidInputError,
    ManifestError,
    RestartExhaustedError,
    StalenessCheckError,
    UnsupportedBuildMethodError,
    WatchProcessCrash,
)
from hotbuild.events import Event, EventBus, EventKind
from hotbuild.manifest import parse_template, select_targets
from hotbuild.orchestrator import Orchestrator
from hotbuild.watching import ChangeAggregator, FileWatcher, RestartSupervisor, SupervisorState

__all__ = [
    # Main entry points
    "Orchestrator",
    "parse_template",
    "select_targets",
    # Build core
    "BuildDispatcher",
    "BuildMethod",
    "BuildScheduler",
    "BuildStatus",
    "BuildTask",
    "ChangeBatch",
    "RunSummary",
    "StalenessResolver",
    "TargetDescriptor",
    # Watching
    "ChangeAggregator",
    "FileWatcher",
    "RestartSupervisor",
    "SupervisorState",
    # Events
    "Event",
    "EventBus",
    "EventKind",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "BuildFailure",
    "ConfigError",
    "HotbuildError",
    "InvalidInputError",
    "ManifestError",
    "RestartExhaustedError",
    "StalenessCheckError",
    "UnsupportedBuildMethodError",
    "WatchProcessCrash",
]
