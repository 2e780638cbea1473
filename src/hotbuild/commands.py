"""Runtime commands typed while watching (rs, help, quit)."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from hotbuild.logging import get_logger

log = get_logger("commands")

Action = Callable[[], Awaitable[Any]]

COMMANDS: dict[str, tuple[tuple[str, ...], str]] = {
    "rs": (("restart",), "Trigger a complete rebuild of all selected targets"),
    "help": (("h",), "Display available commands and their descriptions"),
    "quit": (("q", "exit"), "Gracefully stop watching and exit"),
}


def resolve_command(word: str) -> str | None:
    """Map a command name or alias to its canonical name."""
    word = word.strip().lower()
    for name, (aliases, _) in COMMANDS.items():
        if word == name or word in aliases:
            return name
    return None


class CommandHandler:
    """Dispatches runtime commands to orchestrator actions."""

    def __init__(
        self,
        on_restart: Action,
        on_quit: Action,
        console: Console | None = None,
    ) -> None:
        self._on_restart = on_restart
        self._on_quit = on_quit
        self.console = console or Console()

    async def handle(self, line: str) -> str | None:
        """Run one command line.

        Returns:
            The canonical command name, or None for blank or unknown input.
        """
        line = line.strip()
        if not line:
            return None

        name = resolve_command(line.split()[0])
        if name is None:
            self.console.print(f"[red]Unknown command: {line}[/red]")
            self.console.print("Type [bold]help[/bold] for available commands.")
            return None

        log.debug("Executing command: %s", name)
        handlers = {
            "rs": self._cmd_restart,
            "help": self._cmd_help,
            "quit": self._cmd_quit,
        }
        await handlers[name]()
        return name

    async def _cmd_restart(self) -> None:
        self.console.print("[bold]Manual restart triggered[/bold]")
        await self._on_restart()

    async def _cmd_help(self) -> None:
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Aliases")
        table.add_column("Description")
        for name, (aliases, description) in COMMANDS.items():
            table.add_row(name, ", ".join(aliases), description)
        self.console.print(table)

    async def _cmd_quit(self) -> None:
        self.console.print("Shutting down...")
        await self._on_quit()


class CommandRepl:
    """Reads commands from the terminal until quit or end of input."""

    def __init__(self, handler: CommandHandler, history_file: Path | None = None) -> None:
        self.handler = handler
        self._running = False

        history = FileHistory(str(history_file)) if history_file else None
        self.session: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
        )

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        self._running = True
        self.handler.console.print('Type [bold]help[/bold] for available commands.')

        while self._running:
            try:
                line = await asyncio.get_running_loop().run_in_executor(
                    None,
                    lambda: self.session.prompt("hotbuild> "),
                )
            except KeyboardInterrupt:
                continue
            except EOFError:
                break

            if await self.handler.handle(line) == "quit":
                break

        self._running = False

    def stop(self) -> None:
        self._running = False
