"""Rich terminal output for cfpinner."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TaskID, TextColumn, TimeRemainingColumn
from rich.table import Table
from rich.text import Text

from cfpinner.config import REPORT_COLUMNS
from cfpinner.models import ArtifactMetadata, BatchReport, ProbeOutcome, Verdict
from cfpinner.stats import classify

console = Console()
# Diagnostics only; stdout carries results
err_console = Console(stderr=True)

VERDICT_STYLES = {
    Verdict.HIT: ("✓", "green"),
    Verdict.MISS: ("○", "yellow"),
    Verdict.ERROR: ("✗", "red"),
}


def truncate(value: str, width: int) -> str:
    """Fit *value* into a column of *width*, marking cut values with ``...``.

    Empty values render as ``-``.
    """
    if not value:
        return "-"
    if len(value) > width - 2:
        return value[:width - 5] + "..."
    return value


# ── Progress tracking ─────────────────────────────────────────────────


class ProgressTracker:
    """Live progress bar; outcome lines are printed above it."""

    def __init__(self, description: str = "Probing"):
        self.description = description
        self.progress: Optional[Progress] = None
        self.task_id: Optional[TaskID] = None

    def start(self) -> None:
        self.progress = Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self.progress.start()

    def update(self, completed: int, total: int) -> None:
        if not self.progress:
            return
        if self.task_id is None:
            self.task_id = self.progress.add_task(self.description, total=total)
        self.progress.update(self.task_id, completed=completed, total=total)

    def print_outcome(self, outcome: ProbeOutcome, label: Optional[str] = None) -> None:
        target = self.progress.console if self.progress else console
        target.print(format_outcome(outcome, label))

    def finish(self) -> None:
        if self.progress:
            self.progress.stop()


# ── Per-outcome lines ─────────────────────────────────────────────────


def format_outcome(outcome: ProbeOutcome, label: Optional[str] = None) -> Text:
    """One status line: address, verdict icon, and detail in brackets."""
    verdict = classify(outcome)
    icon, color = VERDICT_STYLES[verdict]
    if label and verdict is not Verdict.ERROR:
        icon, color = "✓", "green"

    line = Text(f"{outcome.address:<20} ")
    line.append(f"{icon} {label or verdict.value}", style=color)
    if outcome.error:
        line.append(f" ({outcome.error})")
    elif label:
        line.append(f" [{outcome.status_code}]", style="dim")
    elif outcome.cache_status:
        line.append(f" [{outcome.cache_status}]", style="dim")
    return line


# ── Report table ──────────────────────────────────────────────────────


def build_report_table(report: BatchReport) -> Table:
    """Build the per-address results table."""
    table = Table(
        show_header=True,
        border_style="bright_black",
        expand=False,
        header_style="bold",
    )
    for key, (label, width) in REPORT_COLUMNS.items():
        table.add_column(label, width=width - 1, no_wrap=True)

    widths = {key: width for key, (_, width) in REPORT_COLUMNS.items()}
    for outcome in report.outcomes:
        verdict = classify(outcome)
        _, color = VERDICT_STYLES[verdict]
        table.add_row(
            truncate(outcome.address, widths["ip"]),
            Text(verdict.value, style=color),
            truncate(outcome.cache_status, widths["cache"]),
            truncate(outcome.pop_code, widths["iata"]),
            truncate(outcome.country, widths["country"]),
            truncate(outcome.ray_id, widths["ray"]),
        )
    return table


def format_summary(report: BatchReport) -> Text:
    """Counts and one-decimal percentages for each verdict."""
    text = Text(f"Summary: {report.total} total checks, ")
    text.append(f"{report.hits} HITs ({report.hit_percent:.1f}%)", style="green")
    text.append(", ")
    text.append(f"{report.misses} MISSes ({report.miss_percent:.1f}%)", style="yellow")
    text.append(", ")
    text.append(f"{report.errors} ERRORs ({report.error_percent:.1f}%)", style="red")
    return text


def render_report(report: BatchReport) -> None:
    """Print the results table followed by the summary line."""
    console.print()
    if report.outcomes:
        console.print(build_report_table(report))
    console.print()
    console.print(format_summary(report))


def render_alive_summary(alive_count: int, tested: int) -> None:
    console.print("\n[green]✓ Scan complete![/green]")
    console.print(f"Found {alive_count} alive CDN nodes out of {tested} tested")


def render_artifact(metadata: ArtifactMetadata) -> None:
    """Describe a freshly generated tracking image and the next steps."""
    console.print("\n[green]✓ Image generated successfully![/green]")
    console.print(f"  Identifier: [bold]{metadata.identifier}[/bold]")
    console.print(f"  File: {metadata.full_path}")
    console.print(f"  Size: {metadata.width}x{metadata.height}")
    console.print("\nNext steps:")
    console.print("  1. Upload this image to your target service")
    console.print("  2. Once uploaded, track it with:")
    console.print(f"     cfpinner track {metadata.identifier} <URL_WHERE_YOU_UPLOADED>")


def render_error(message: str) -> None:
    """Display an error message."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")


def render_warning(message: str) -> None:
    """Display a warning message."""
    err_console.print(f"[yellow]Warning:[/yellow] {message}")
