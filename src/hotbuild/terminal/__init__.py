"""External process execution for build dispatch."""

from hotbuild.terminal.protocol import TerminalExecutor
from hotbuild.terminal.result import ShellResult
from hotbuild.terminal.subprocess_executor import SubprocessTerminalExecutor

__all__ = [
    "ShellResult",
    "TerminalExecutor",
    "SubprocessTerminalExecutor",
]
