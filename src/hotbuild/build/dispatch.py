"""Build method dispatch.

The scheduler only knows whether a build succeeded. How a build runs is
decided here: each build method maps to an async handler that invokes an
external tool through a TerminalExecutor and reports its exit status.
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hotbuild.build.models import BuildMethod, TargetDescriptor
from hotbuild.errors import BuildFailure, UnsupportedBuildMethodError
from hotbuild.logging import get_logger
from hotbuild.terminal.protocol import TerminalExecutor
from hotbuild.terminal.subprocess_executor import SubprocessTerminalExecutor

log = get_logger("dispatch")

# How much of stderr to quote in a failure message
STDERR_TAIL_CHARS = 2000


@dataclass
class DispatchResult:
    """Outcome of one build tool invocation."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    tool: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


BuildHandler = Callable[
    [TargetDescriptor, Path, Mapping[str, Any]],
    Awaitable[DispatchResult],
]


def collect_warnings(stderr: str) -> list[str]:
    """Lines of tool stderr that mention a warning."""
    return [
        line.strip()
        for line in stderr.splitlines()
        if "warning" in line.lower() and line.strip()
    ]


# Troubleshooting hints keyed by fragments of the error text; first match wins
_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("enoent", "no such file"), "Check that the file path is correct and the file exists"),
    (
        ("eacces", "permission denied"),
        "Check file permissions and ensure you have access to the directory",
    ),
    (("syntax error", "unexpected token"), "Check for syntax errors in your source code"),
    (
        ("cannot find module", "module not found"),
        "Ensure all dependencies are installed (run npm install)",
    ),
    (
        ("timeout", "timed out", "did not finish"),
        "Build process timed out; consider optimizing the build configuration",
    ),
    # Every esbuild failure names the tool, so this only applies when nothing else did
    (("esbuild",), "Verify esbuild is installed and the build configuration is correct"),
]


def troubleshooting_hint(error: str) -> str | None:
    """Suggest a fix for a build error message, or None if nothing fits."""
    lowered = error.lower()
    for fragments, hint in _HINTS:
        if any(fragment in lowered for fragment in fragments):
            return hint
    return None


def check_result(target: TargetDescriptor, result: DispatchResult) -> None:
    """Raise BuildFailure unless the tool exited cleanly."""
    if result.success:
        return
    tool = result.tool or target.build_method
    stderr = result.stderr.strip()
    if len(stderr) > STDERR_TAIL_CHARS:
        stderr = "..." + stderr[-STDERR_TAIL_CHARS:]
    if result.exit_code is None:
        message = f"{tool} did not finish: {stderr}" if stderr else f"{tool} did not finish"
    else:
        message = f"{tool} failed with exit code {result.exit_code}"
        if stderr:
            message = f"{message}: {stderr}"
    raise BuildFailure(target.name, message, exit_code=result.exit_code)


class BuildDispatcher:
    """Maps build methods to handlers and runs them.

    Example:
        dispatcher = BuildDispatcher(output_root=".aws-sam/build")
        result = await dispatcher.execute(target, dispatcher.output_dir_for(target))
    """

    def __init__(
        self,
        executor: TerminalExecutor | None = None,
        *,
        project_root: str | Path = ".",
        output_root: str | Path = ".aws-sam/build",
        settings: Mapping[str, Mapping[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            executor: Runs external commands. Defaults to a subprocess executor
                rooted at project_root.
            project_root: Base for relative source roots and output_root.
            output_root: Directory holding one output directory per target.
            settings: Build parameter overrides keyed by target name or "global".
            timeout: Optional wall-clock limit per build, in seconds.
        """
        self._project_root = Path(os.path.abspath(project_root))
        root = Path(output_root)
        self._output_root = root if root.is_absolute() else self._project_root / root
        self._executor = executor or SubprocessTerminalExecutor(str(self._project_root))
        self._settings = {k: dict(v) for k, v in (settings or {}).items()}
        self.timeout = timeout

        self._handlers: dict[str, BuildHandler] = {
            BuildMethod.ESBUILD.value: self._run_esbuild,
            BuildMethod.MAKEFILE.value: self._run_makefile,
            BuildMethod.COMMAND.value: self._run_command,
        }

    @property
    def methods(self) -> list[str]:
        """Registered build method names."""
        return list(self._handlers)

    def register(self, method: str, handler: BuildHandler) -> None:
        """Register or replace the handler for a build method."""
        self._handlers[method] = handler

    def update_settings(self, settings: Mapping[str, Mapping[str, Any]]) -> None:
        self._settings = {k: dict(v) for k, v in settings.items()}

    def output_dir_for(self, target: TargetDescriptor) -> Path:
        return self._output_root / target.name

    def source_dir_for(self, target: TargetDescriptor) -> Path:
        root = Path(target.source_root)
        return root if root.is_absolute() else self._project_root / root

    def build_parameters_for(self, target: TargetDescriptor) -> dict[str, Any]:
        """Target parameters with configured overrides applied.

        A target-specific settings entry wins over the "global" entry; only
        one of them is applied.
        """
        params = dict(target.build_parameters)
        if target.name in self._settings:
            params.update(self._settings[target.name])
        elif "global" in self._settings:
            params.update(self._settings["global"])
        return params

    async def execute(self, target: TargetDescriptor, output_dir: Path) -> DispatchResult:
        """Run the target's build method.

        Raises:
            UnsupportedBuildMethodError: If no handler is registered.
            OSError: If the output directory cannot be created.
        """
        handler = self._handlers.get(target.build_method)
        if handler is None:
            raise UnsupportedBuildMethodError(target.name, target.build_method, self.methods)

        output_dir.mkdir(parents=True, exist_ok=True)
        params = self.build_parameters_for(target)
        log.debug("[%s] Dispatching %s build", target.name, target.build_method)
        return await handler(target, output_dir, params)

    async def _run_esbuild(
        self,
        target: TargetDescriptor,
        output_dir: Path,
        params: Mapping[str, Any],
    ) -> DispatchResult:
        entry = params.get("EntryPoints") or ["app.ts"]
        if isinstance(entry, str):
            entry = [entry]
        source_dir = self.source_dir_for(target)

        args = ["esbuild"]
        args.extend(str(source_dir / e) for e in entry)
        args.extend(
            [
                "--bundle",
                "--platform=node",
                f"--target={params.get('Target', 'es2020')}",
                "--external:aws-sdk",
            ]
        )
        if len(entry) == 1:
            args.append(f"--outfile={output_dir / 'app.js'}")
        else:
            args.append(f"--outdir={output_dir}")
        for external in params.get("External", []) or []:
            args.append(f"--external:{external}")
        if params.get("Minify"):
            args.append("--minify")
        if params.get("Sourcemap"):
            args.append("--sourcemap")

        result = await self._executor.execute(
            "npx", args=args, cwd=str(self._project_root), timeout=self.timeout
        )
        return DispatchResult(result.exit_code, result.stdout, result.stderr, tool="esbuild")

    async def _run_makefile(
        self,
        target: TargetDescriptor,
        output_dir: Path,
        params: Mapping[str, Any],
    ) -> DispatchResult:
        source_dir = self.source_dir_for(target)
        makefile = source_dir / "Makefile"
        if not makefile.exists():
            raise BuildFailure(target.name, f"Makefile not found at {makefile}")

        make_target = str(params.get("MakeTarget", "build"))
        result = await self._executor.execute(
            "make",
            args=[make_target],
            cwd=str(source_dir),
            env={"ARTIFACTS_DIR": str(output_dir)},
            timeout=self.timeout,
        )
        return DispatchResult(
            result.exit_code, result.stdout, result.stderr, tool=f"make {make_target}"
        )

    async def _run_command(
        self,
        target: TargetDescriptor,
        output_dir: Path,
        params: Mapping[str, Any],
    ) -> DispatchResult:
        command = params.get("Command")
        argv = (
            shlex.split(command) if isinstance(command, str) else [str(c) for c in command or ()]
        )
        if not argv:
            raise BuildFailure(target.name, "Build method 'command' requires a Command parameter")

        result = await self._executor.execute(
            argv[0],
            args=argv[1:],
            cwd=str(self.source_dir_for(target)),
            env={"ARTIFACTS_DIR": str(output_dir)},
            timeout=self.timeout,
        )
        return DispatchResult(result.exit_code, result.stdout, result.stderr, tool=argv[0])
