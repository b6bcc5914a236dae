"""``airlift diff-state`` : which required packages a snapshot lacks.

Works entirely offline: the snapshot is a file carried across the gap,
the requirement list is one ``name@version`` per line.
"""

from __future__ import annotations

from pathlib import Path

import typer

from airlift.cli import common
from airlift.config import AirliftSettings
from airlift.core.errors import AirliftError
from airlift.core.state_differ import diff, load_snapshot
from airlift.monitor.renderer import RunRenderer
from airlift.staging import read_requirements


def diff_state_cmd(
    ctx: typer.Context,
    requirements: Path = typer.Argument(
        ..., help="File listing required packages, one name@version per line."
    ),
    snapshot: Path = typer.Option(
        None, "--snapshot", "-s", help="Registry snapshot to compare against."
    ),
    output: Path = typer.Option(
        None, "--output", "-o", help="Write the missing packages to this file."
    ),
) -> None:
    """Compare a requirement list with a registry snapshot."""
    settings: AirliftSettings = ctx.obj
    snapshot = snapshot or settings.snapshot_path

    try:
        state = load_snapshot(snapshot)
        required = read_requirements(requirements)
    except (AirliftError, FileNotFoundError, ValueError) as exc:
        common.console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    result = diff(required, state)
    renderer = RunRenderer(console=common.console)
    renderer.console.print(renderer.render_snapshot(state))
    renderer.console.print(renderer.render_diff(result))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            "".join(f"{identity.key}\n" for identity in result.missing), encoding="utf-8"
        )
        common.console.print(f"[dim]Missing packages written to {output}[/dim]")
