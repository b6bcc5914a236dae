"""Rich terminal renderer for Airlift runs and registry snapshots.

Color scheme
------------
- green     : SUCCESS (published)
- cyan      : SUCCESS recovered by reconciliation
- dim       : SKIPPED
- bold red  : ERROR
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from airlift.core.report import failure_lines
from airlift.models.outcomes import PublishOutcome, PublishStatus
from airlift.models.reports import RunReport
from airlift.models.snapshot import RegistrySnapshot, SnapshotDiff

_STATUS_LABELS: dict[PublishStatus, str] = {
    PublishStatus.SUCCESS: "[green]PUBLISHED[/green]",
    PublishStatus.SKIPPED: "[dim]SKIPPED[/dim]",
    PublishStatus.ERROR: "[bold red]FAILED[/bold red]",
}


def _status_label(outcome: PublishOutcome) -> str:
    if outcome.recovered:
        return "[cyan]RECOVERED[/cyan]"
    if outcome.dry_run:
        return "[yellow]DRY RUN[/yellow]"
    return _STATUS_LABELS[outcome.status]


class RunRenderer:
    """Renders reports, snapshots and diffs as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    error_limit:
        Maximum number of failures listed in a summary.
    """

    def __init__(self, console: Console | None = None, error_limit: int = 10) -> None:
        self.console = console or Console()
        self.error_limit = error_limit

    # ------------------------------------------------------------------
    # Run reports
    # ------------------------------------------------------------------

    def render_outcomes(self, report: RunReport) -> Table:
        table = Table(title=f"Publish to {report.registry_url}", expand=True)
        table.add_column("Package", style="cyan", min_width=20)
        table.add_column("Status", justify="center", min_width=10)
        table.add_column("Tag", min_width=8)
        table.add_column("Attempts", justify="right")
        table.add_column("Detail", overflow="fold")

        for outcome in report.outcomes:
            detail = outcome.error_detail if outcome.is_failure else outcome.note
            table.add_row(
                outcome.package,
                _status_label(outcome),
                outcome.tag_used or "-",
                str(outcome.attempt_count),
                detail or "",
            )
        return table

    def render_summary(self, report: RunReport) -> Panel:
        parts = [
            f"[green][bold]Published:[/bold] {report.published}[/green]",
            f"[dim][bold]Skipped:[/bold] {report.skipped}[/dim]",
            f"[red][bold]Failed:[/bold] {report.failed}[/red]",
        ]
        if report.uncertain:
            parts.append(f"[yellow][bold]Uncertain:[/bold] {report.uncertain}[/yellow]")
        if report.recovered:
            parts.append(f"[cyan][bold]Recovered:[/bold] {report.recovered}[/cyan]")

        lines: list[Text] = [Text.from_markup("  |  ".join(parts))]
        if report.failures:
            lines.append(Text(""))
            lines.append(Text.from_markup(f"[bold red]Errors ({report.failed}):[/bold red]"))
            lines.extend(
                Text(f"  - {line}", style="red")
                for line in failure_lines(report, self.error_limit)
            )
        if report.recheck_uncertain:
            lines.append(Text(""))
            lines.append(Text.from_markup(
                f"[bold yellow]Unconfirmed on re-check ({len(report.recheck_uncertain)}):"
                "[/bold yellow] registry could not say whether these were published"
            ))
            lines.extend(
                Text(f"  - {package}", style="yellow")
                for package in report.recheck_uncertain[: self.error_limit]
            )

        title = "[bold]Dry Run Summary[/bold]" if report.dry_run else "[bold]Publish Summary[/bold]"
        return Panel(
            Group(*lines),
            title=title,
            border_style="green" if report.succeeded else "red",
            padding=(1, 2),
        )

    def print_report(self, report: RunReport, *, show_outcomes: bool = True) -> None:
        if show_outcomes and report.outcomes:
            self.console.print(self.render_outcomes(report))
        self.console.print(self.render_summary(report))

    # ------------------------------------------------------------------
    # Snapshots and diffs
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RegistrySnapshot) -> Panel:
        stats = snapshot.stats
        body = "\n".join([
            f"[bold]Registry:[/bold] {snapshot.registry_url}",
            f"[bold]Captured:[/bold] {snapshot.captured_at.isoformat()}",
            f"[bold]Packages:[/bold] {stats['totalPackages']}",
            f"[bold]Versions:[/bold] {stats['totalVersions']}",
        ])
        return Panel(
            Text.from_markup(body),
            title="[bold]Registry State[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def render_diff(self, result: SnapshotDiff, *, limit: int = 50) -> Panel:
        lines = [
            f"[bold]Required:[/bold] {result.total}",
            f"[green][bold]Existing:[/bold] {len(result.existing)}[/green]",
            f"[yellow][bold]Missing:[/bold] {len(result.missing)}[/yellow]",
        ]
        if result.missing:
            lines.append("")
            lines.extend(f"  [yellow]- {identity.key}[/yellow]" for identity in result.missing[:limit])
            if len(result.missing) > limit:
                lines.append(f"  [dim]... and {len(result.missing) - limit} more[/dim]")
        return Panel(
            Text.from_markup("\n".join(lines)),
            title="[bold]Snapshot Diff[/bold]",
            border_style="yellow" if result.missing else "green",
            padding=(1, 2),
        )

    def render_cache_stats(self, stats: dict[str, dict[str, int]]) -> Table:
        table = Table(title="Caches")
        table.add_column("Cache", style="cyan")
        for column in ("size", "max_size", "hits", "misses", "evictions"):
            table.add_column(column.replace("_", " ").title(), justify="right")
        for name, values in stats.items():
            table.add_row(
                name,
                *(str(values.get(key, 0)) for key in ("size", "max_size", "hits", "misses", "evictions")),
            )
        return table
