"""Run summaries.

Aggregation is pure: tasks are read, never modified. Per-target entries
follow submission order so summaries read the same regardless of which
build happened to finish first.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from hotbuild.build.dispatch import troubleshooting_hint
from hotbuild.build.models import BuildStatus, BuildTask

if TYPE_CHECKING:
    from rich.console import Console

SUMMARY_RULE = "=" * 60
PROGRESS_BAR_LENGTH = 20


@dataclass(frozen=True)
class TargetResult:
    """Read-only view of one finished task."""

    name: str
    status: BuildStatus
    duration_ms: float
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.status is BuildStatus.SUCCESS

    @property
    def hint(self) -> str | None:
        """Troubleshooting suggestion for a failed target."""
        if self.status is not BuildStatus.FAILURE or not self.errors:
            return None
        return troubleshooting_hint("\n".join(self.errors))


@dataclass(frozen=True)
class RunSummary:
    """Aggregate outcome of one batch."""

    entries: tuple[TargetResult, ...]
    success_count: int
    failure_count: int
    skipped_count: int
    total_duration_ms: float
    mean_duration_ms: float

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def all_succeeded(self) -> bool:
        return self.total > 0 and self.success_count == self.total

    @property
    def failed(self) -> list[TargetResult]:
        return [e for e in self.entries if e.status is BuildStatus.FAILURE]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "total_duration_ms": self.total_duration_ms,
            "mean_duration_ms": self.mean_duration_ms,
            "targets": [
                {
                    "name": e.name,
                    "status": e.status.value,
                    "duration_ms": e.duration_ms,
                    "errors": list(e.errors),
                    "warnings": list(e.warnings),
                }
                for e in self.entries
            ],
        }


def summarize(
    results: Mapping[str, BuildTask],
    order: Sequence[str] | None = None,
) -> RunSummary:
    """Aggregate task results.

    Args:
        results: Tasks keyed by target name.
        order: Submission order of target names. Names missing from
            ``order`` follow in mapping order.

    Returns:
        A RunSummary. Mean duration counts only builds that actually ran.
    """
    names = list(order) if order is not None else []
    names += [n for n in results if n not in names]

    entries = tuple(
        TargetResult(
            name=name,
            status=results[name].status,
            duration_ms=results[name].duration_ms,
            errors=tuple(results[name].errors),
            warnings=tuple(results[name].warnings),
        )
        for name in names
        if name in results
    )

    ran = [e for e in entries if e.status is not BuildStatus.SKIPPED]
    total_duration = sum(e.duration_ms for e in ran)

    return RunSummary(
        entries=entries,
        success_count=sum(1 for e in entries if e.status is BuildStatus.SUCCESS),
        failure_count=sum(1 for e in entries if e.status is BuildStatus.FAILURE),
        skipped_count=sum(1 for e in entries if e.status is BuildStatus.SKIPPED),
        total_duration_ms=total_duration,
        mean_duration_ms=total_duration / len(ran) if ran else 0.0,
    )


def progress_bar(completed: int, total: int) -> str:
    """Render ``[████░░░░]`` for a completion fraction."""
    percentage = round(completed / total * 100) if total else 100
    filled = round(percentage / 100 * PROGRESS_BAR_LENGTH)
    return "[" + "█" * filled + "░" * (PROGRESS_BAR_LENGTH - filled) + "]"


def progress_line(completed: int, total: int) -> str:
    percentage = round(completed / total * 100) if total else 100
    return f"Build Progress: {completed}/{total} ({percentage}%) {progress_bar(completed, total)}"


_STATUS_LABELS = {
    BuildStatus.SUCCESS: "SUCCESS",
    BuildStatus.FAILURE: "FAILED",
    BuildStatus.SKIPPED: "SKIPPED",
}


def format_summary(summary: RunSummary) -> list[str]:
    """Plain-text summary lines for the log."""
    lines = [
        SUMMARY_RULE,
        "BUILD SUMMARY",
        SUMMARY_RULE,
        f"Total Targets: {summary.total}",
        f"Successful: {summary.success_count}",
        f"Failed: {summary.failure_count}",
    ]
    if summary.skipped_count:
        lines.append(f"Skipped: {summary.skipped_count}")
    lines += [
        f"Total Duration: {summary.total_duration_ms:.0f}ms",
        f"Average Duration: {summary.mean_duration_ms:.0f}ms",
        SUMMARY_RULE,
    ]

    for entry in summary.entries:
        label = _STATUS_LABELS.get(entry.status, entry.status.value.upper())
        lines.append(f"  {entry.name}: {label} ({entry.duration_ms:.0f}ms)")
        if entry.status is BuildStatus.FAILURE:
            lines.extend(f"    Error: {error}" for error in entry.errors)
            if entry.hint:
                lines.append(f"    Hint: {entry.hint}")
        lines.extend(f"    Warning: {warning}" for warning in entry.warnings)

    return lines


def render_summary(summary: RunSummary, console: Console) -> None:
    """Print the summary as a rich table."""
    from rich.table import Table

    table = Table(title="Build Summary")
    table.add_column("Target", style="bold")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Details")

    styles = {
        BuildStatus.SUCCESS: "[green]SUCCESS[/green]",
        BuildStatus.FAILURE: "[red]FAILED[/red]",
        BuildStatus.SKIPPED: "[yellow]SKIPPED[/yellow]",
    }
    for entry in summary.entries:
        details = list(entry.errors) if entry.status is BuildStatus.FAILURE else []
        if entry.hint:
            details.append(f"hint: {entry.hint}")
        details += [f"warning: {w}" for w in entry.warnings]
        table.add_row(
            entry.name,
            styles.get(entry.status, entry.status.value),
            f"{entry.duration_ms:.0f}ms",
            "\n".join(details),
        )

    console.print(table)
    console.print(
        f"[bold]{summary.success_count}[/bold] succeeded, "
        f"[bold]{summary.failure_count}[/bold] failed"
        + (f", [bold]{summary.skipped_count}[/bold] skipped" if summary.skipped_count else "")
        + f" in {summary.total_duration_ms:.0f}ms"
    )
