"""Executor protocol for running build tools."""

from __future__ import annotations

from typing import Protocol

from hotbuild.terminal.result import ShellResult


class TerminalExecutor(Protocol):
    """Protocol for executing external commands.

    SubprocessTerminalExecutor is the only production implementation;
    tests substitute fakes that record calls.
    """

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        output_limit: int = 200_000,
    ) -> ShellResult:
        """Execute a command and capture its output.

        Args:
            command: The program to run (e.g., "npx", "make").
            args: Optional list of arguments.
            cwd: Working directory. If None, uses the executor's default.
            env: Additional environment variables to set.
            timeout: Timeout in seconds. None means no timeout.
            output_limit: Maximum characters captured per stream.

        Returns:
            ShellResult with exit code, output, and status.
        """
        ...
