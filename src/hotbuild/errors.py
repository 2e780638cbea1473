"""Exception hierarchy for hotbuild.

Errors local to one target (BuildFailure, StalenessCheckError) are recorded
or recovered where they occur and never abort a batch. Only structurally
invalid calls and exhausted restart attempts are run-level failures.
"""

from __future__ import annotations


class HotbuildError(Exception):
    """Base class for all hotbuild errors."""


class InvalidInputError(HotbuildError, ValueError):
    """A call received a structurally invalid argument (e.g. no targets)."""


class BuildFailure(HotbuildError):
    """A single target's build failed.

    Raised inside build dispatch and caught by the scheduler, which records
    the message on the target's BuildTask.
    """

    def __init__(self, target_name: str, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.target_name = target_name
        self.exit_code = exit_code


class UnsupportedBuildMethodError(BuildFailure):
    """The target names a build method no dispatcher handler is registered for."""

    def __init__(self, target_name: str, build_method: str, supported: list[str]) -> None:
        super().__init__(
            target_name,
            f"Unsupported build method: {build_method!r} "
            f"(supported: {', '.join(sorted(supported)) or 'none'})",
        )
        self.build_method = build_method


class StalenessCheckError(HotbuildError):
    """A file-system error occurred while scanning a source or output tree."""

    def __init__(self, path: str, cause: OSError) -> None:
        super().__init__(f"Could not scan {path}: {cause}")
        self.path = path
        self.cause = cause


class WatchProcessCrash(HotbuildError):
    """The file-watch process died unexpectedly."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RestartExhaustedError(HotbuildError):
    """The supervisor reached its restart ceiling and gave up."""

    def __init__(self, max_attempts: int) -> None:
        super().__init__(f"Maximum restart attempts ({max_attempts}) exceeded")
        self.max_attempts = max_attempts


class ManifestError(HotbuildError):
    """A template could not be parsed or a function definition is invalid."""


class ConfigError(HotbuildError, ValueError):
    """A configuration value failed validation."""
