"""Command-line interface for hotbuild."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from hotbuild import __version__
from hotbuild.build.models import TargetDescriptor
from hotbuild.build.reporter import render_summary
from hotbuild.config import Config, load_config
from hotbuild.errors import ConfigError, ManifestError
from hotbuild.events import Event, EventKind
from hotbuild.logging import get_logger, setup_logging
from hotbuild.manifest import parse_template, select_targets

log = get_logger("cli")

console = Console()

# Verbosity of a plain run; each -v adds one step (verbose, then trace)
DEFAULT_VERBOSITY = 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hotbuild",
        description="Watch serverless function sources and rebuild what changed",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file layered above the project config (.hotbuild/config.yaml)",
    )
    parser.add_argument(
        "--template",
        type=Path,
        help="SAM or CDK template (default: template.yaml)",
    )
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        metavar="NAME",
        help="Target to build (can be repeated; default: all)",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")
    subparsers.add_parser("watch", help="Watch sources and rebuild on change")
    subparsers.add_parser("build", help="Build once and exit")
    subparsers.add_parser("list", help="List targets found in the template")

    return parser


def print_targets(targets: Sequence[TargetDescriptor]) -> None:
    table = Table(title="Targets")
    table.add_column("Name", style="bold")
    table.add_column("Build method")
    table.add_column("Source root")
    for target in targets:
        table.add_row(target.name, target.build_method, target.source_root)
    console.print(table)


def choose_targets(targets: Sequence[TargetDescriptor]) -> list[TargetDescriptor]:
    """Ask which targets to watch with a checkbox dialog."""
    from prompt_toolkit.shortcuts import checkboxlist_dialog

    chosen = checkboxlist_dialog(
        title="hotbuild",
        text="Which functions do you want to watch for hot-reload?",
        values=[(t.name, f"{t.name} ({t.build_method})") for t in targets],
    ).run()
    if not chosen:
        return []
    return [t for t in targets if t.name in chosen]


async def run_build(targets: list[TargetDescriptor], config: Config, project_root: Path) -> int:
    """Build every target once; non-zero exit if any failed."""
    from hotbuild.orchestrator import Orchestrator

    orchestrator = Orchestrator(targets, config, project_root=project_root)
    try:
        summary = await orchestrator.build_once()
    finally:
        await orchestrator.shutdown()

    render_summary(summary, console)
    return 0 if summary.all_succeeded else 1


async def run_watch(targets: list[TargetDescriptor], config: Config, project_root: Path) -> int:
    """Watch and rebuild until quit, end of input or Ctrl-C."""
    from hotbuild.commands import CommandHandler, CommandRepl
    from hotbuild.orchestrator import Orchestrator

    orchestrator = Orchestrator(targets, config, project_root=project_root)
    quit_requested = asyncio.Event()

    def on_complete(event: Event) -> None:
        render_summary(event.payload["summary"], console)

    def on_failed(event: Event) -> None:
        console.print(f"[red]{event.payload['error']}[/red]")
        console.print("Watching has stopped; type [bold]rs[/bold] to rebuild manually.")

    orchestrator.events.subscribe(EventKind.ALL_BUILDS_COMPLETE, on_complete)
    orchestrator.events.subscribe(EventKind.WATCHER_FAILED, on_failed)

    async def quit_() -> None:
        quit_requested.set()

    repl: CommandRepl | None = None
    repl_task: asyncio.Task[None] | None = None
    try:
        await orchestrator.start(initial_build=True)
        if sys.stdin.isatty():
            repl = CommandRepl(CommandHandler(orchestrator.rebuild_all, quit_))
            repl_task = asyncio.create_task(repl.run())
            repl_task.add_done_callback(lambda _: quit_requested.set())
        await quit_requested.wait()
    finally:
        if repl is not None:
            repl.stop()
        await orchestrator.shutdown()
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    project_root = Path.cwd()
    try:
        config = load_config(project_root=project_root, config_path=parsed.config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 2

    if parsed.quiet:
        config.logging.verbose = 0
    elif parsed.verbose:
        config.logging.verbose = DEFAULT_VERBOSITY + parsed.verbose
    setup_logging(config.logging)

    template = parsed.template or Path(config.template_path)
    try:
        targets = parse_template(template)
        if parsed.mode == "list":
            print_targets(targets)
            return 0
        targets = select_targets(targets, parsed.target or config.default_targets)
    except ManifestError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    if parsed.mode == "watch" and not (parsed.target or config.default_targets):
        if sys.stdin.isatty() and len(targets) > 1:
            targets = choose_targets(targets)

    if not targets:
        console.print("[red]No buildable targets selected[/red]")
        return 1

    log.info("Selected %d targets: %s", len(targets), ", ".join(t.name for t in targets))
    if parsed.mode == "build":
        return asyncio.run(run_build(targets, config, project_root))
    elif parsed.mode == "watch":
        return asyncio.run(run_watch(targets, config, project_root))
    else:
        parser.print_help()
        return 1
