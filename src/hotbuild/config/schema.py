"""Configuration schema dataclasses for hotbuild.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_IGNORE_PATTERNS = [
    "node_modules/**",
    ".git/**",
    ".aws-sam/**",
    "**/*.test.js",
    "**/*.test.ts",
    "**/test/**",
    "**/tests/**",
    "**/.DS_Store",
    "**/coverage/**",
]


@dataclass
class WatchConfig:
    """File watching and change aggregation.

    Example config.yaml:
        watch:
          debounce_delay: 0.5
          poll_interval: 1.0
          extensions: [ts, js]
          ignore_patterns:
            - "**/*.generated.ts"
    """

    debounce_delay: float = 0.3  # Quiet period in seconds before a batch is emitted
    poll_interval: float = 0.5  # Seconds between polling cycles
    extensions: list[str] = field(
        default_factory=lambda: ["js", "ts", "json", "yaml", "yml"]
    )
    ignore_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS)
    )
    max_files: int = 20000  # Ceiling on watched files; exceeding it crashes the watcher


@dataclass
class BuildConfig:
    """Build scheduling and dispatch.

    ``settings`` holds build parameter overrides, keyed by target name or
    ``global``. A target-specific entry replaces the global one.
    """

    parallel: bool = True  # False limits the scheduler to one build at a time
    max_parallel: int | None = None  # Explicit limit; default max(1, cpus // 2)
    output_root: str = ".aws-sam/build"  # One output directory per target name
    timeout: float | None = None  # Per-build wall clock limit in seconds
    settings: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class RestartConfig:
    """Watch-process crash recovery."""

    max_attempts: int = 3
    base_delay: float = 1.0  # Seconds; doubled on each consecutive crash


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level when set
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    template_path: str = "template.yaml"
    default_targets: list[str] = field(default_factory=list)
    watch: WatchConfig = field(default_factory=WatchConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    restart: RestartConfig = field(default_factory=RestartConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level keys, kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
