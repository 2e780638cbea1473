"""Subprocess-based executor for build tool invocations."""

from __future__ import annotations

import asyncio
import os
import time

from hotbuild.logging import get_logger
from hotbuild.terminal.result import ShellResult

log = get_logger("terminal")

TRUNCATION_MARKER = "\n... (output truncated)"


def _truncate(text: str, limit: int) -> tuple[str, bool]:
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER, True
    return text, False


class SubprocessTerminalExecutor:
    """Execute commands using asyncio subprocesses.

    Spawn errors are reported through the result rather than raised, using
    the conventional shell exit codes (127 not found, 126 not executable).
    """

    def __init__(self, default_cwd: str = ".") -> None:
        """Initialize the subprocess executor.

        Args:
            default_cwd: Default working directory for commands.
        """
        self._default_cwd = default_cwd

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        output_limit: int = 200_000,
    ) -> ShellResult:
        """Run a command, capturing stdout and stderr separately.

        Args:
            command: The program to execute.
            args: Optional list of arguments.
            cwd: Working directory. Uses default_cwd if None.
            env: Additional environment variables.
            timeout: Timeout in seconds. None for no timeout.
            output_limit: Maximum characters captured per stream.

        Returns:
            ShellResult with execution details.
        """
        start_time = time.perf_counter()

        cmd_list = [command]
        if args:
            cmd_list.extend(args)
        full_command = " ".join(cmd_list)

        working_dir = cwd or self._default_cwd

        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        def elapsed_ms() -> float:
            return (time.perf_counter() - start_time) * 1000

        log.debug("Running %s (cwd=%s)", full_command, working_dir)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd_list,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=working_dir,
                env=process_env,
            )
        except FileNotFoundError:
            return ShellResult(
                command=full_command,
                exit_code=127,
                stdout="",
                stderr=f"Command not found: {command}",
                truncated=False,
                status="error",
                duration_ms=elapsed_ms(),
            )
        except PermissionError:
            return ShellResult(
                command=full_command,
                exit_code=126,
                stdout="",
                stderr=f"Permission denied: {command}",
                truncated=False,
                status="error",
                duration_ms=elapsed_ms(),
            )
        except OSError as e:
            return ShellResult(
                command=full_command,
                exit_code=1,
                stdout="",
                stderr=f"Failed to spawn {command}: {e}",
                truncated=False,
                status="error",
                duration_ms=elapsed_ms(),
            )

        try:
            if timeout is not None:
                stdout_data, stderr_data = await asyncio.wait_for(
                    process.communicate(), timeout=timeout
                )
            else:
                stdout_data, stderr_data = await process.communicate()
        except asyncio.TimeoutError:
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass  # Process already gone
            return ShellResult(
                command=full_command,
                exit_code=None,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                truncated=False,
                status="timeout",
                duration_ms=elapsed_ms(),
            )

        stdout, out_truncated = _truncate(
            stdout_data.decode("utf-8", errors="replace"), output_limit
        )
        stderr, err_truncated = _truncate(
            stderr_data.decode("utf-8", errors="replace"), output_limit
        )

        exit_code = process.returncode
        return ShellResult(
            command=full_command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            truncated=out_truncated or err_truncated,
            status="ok" if exit_code == 0 else "error",
            duration_ms=elapsed_ms(),
        )
