"""Logging configuration for hotbuild.

Uses Python's standard logging module with support for:
- File logging via config or HOTBUILD_LOG environment variable
- Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4)
- Stderr fallback when no log file is configured
- Per-target build output lines tagged with the target name
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hotbuild.config.schema import LoggingConfig

# Custom log levels
TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

# Package root logger
logger = logging.getLogger("hotbuild")

_initialized = False

LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Map --verbose=N to log levels (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class _LowercaseLevelFormatter(logging.Formatter):
    """Formatter that emits lowercase level names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Pick the effective log level from a LoggingConfig.

    The integer verbosity wins over the level name when both are set.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE if config.verbose > 4 else logging.ERROR)
    if config.level:
        return LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None, *, force: bool = False) -> None:
    """Initialize logging based on configuration.

    Call this once at startup. Subsequent calls are no-ops unless
    ``force`` is set, in which case existing handlers are replaced.

    Verbosity levels (--verbose / config.logging.verbose):
        0 = error   - errors only
        1 = warning  - errors + warnings
        2 = info     - normal operation (default)
        3 = verbose  - build output and per-target decisions
        4 = trace    - everything

    Args:
        config: Optional LoggingConfig with level, verbose, and file settings.
        force: Re-initialize even if logging was already set up.
    """
    global _initialized
    if _initialized and not force:
        return
    _initialized = True

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_level = resolve_level(config)
    logger.setLevel(log_level)

    # Format: HH:MM:SS level: message
    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"
    )

    log_path = config.file if config and config.file else os.environ.get("HOTBUILD_LOG")

    if log_path:
        log_path = os.path.expanduser(log_path)
        try:
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"[hotbuild] Failed to open log file: {e}", file=sys.stderr)
            _add_stderr_handler(formatter, log_level)
    elif sys.stderr.isatty():
        _add_stderr_handler(formatter, log_level)


def _add_stderr_handler(formatter: logging.Formatter, level: int = logging.DEBUG) -> None:
    """Add a stderr handler to the logger."""
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "scheduler", "watching").
              If None, returns the root hotbuild logger.

    Returns:
        A configured logger instance.
    """
    if name:
        return logger.getChild(name)
    return logger


def log_build_output(target_name: str, text: str, level: int = VERBOSE) -> None:
    """Log captured build output, one record per non-empty line."""
    build_log = logger.getChild("build")
    if not build_log.isEnabledFor(level):
        return
    for line in text.splitlines():
        line = line.rstrip()
        if line:
            build_log.log(level, "[%s] %s", target_name, line)
