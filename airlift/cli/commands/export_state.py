"""``airlift export-state`` : capture a registry snapshot to JSON."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from airlift.cli import common
from airlift.config import AirliftSettings
from airlift.core.errors import AirliftError
from airlift.core.state_differ import save_snapshot
from airlift.monitor.renderer import RunRenderer


def export_state_cmd(
    ctx: typer.Context,
    registry: str = typer.Option(
        None, "--registry", "-r", help="Registry URL to export."
    ),
    output: Path = typer.Option(
        None, "--output", "-o", help="Snapshot file to write."
    ),
    scope: str = typer.Option(
        None, "--scope", help="Only export packages in this scope (e.g. @myorg)."
    ),
    token: str = typer.Option(
        None, "--token", help="Auth token, overriding .npmrc.", envvar="NPM_TOKEN"
    ),
) -> None:
    """Export the package/version inventory of a registry."""
    settings: AirliftSettings = ctx.obj
    registry = registry or settings.registry_url
    output = output or settings.snapshot_path

    common.console.print(f"[bold cyan]Exporting registry state from {registry}...[/bold cyan]")
    try:
        engine = common.build_engine(settings, token=token)
        snapshot = asyncio.run(_export(engine, registry, scope))
    except AirliftError as exc:
        common.console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    path = save_snapshot(snapshot, output)
    common.console.print(RunRenderer(console=common.console).render_snapshot(snapshot))
    common.console.print(f"[dim]Snapshot saved to {path}[/dim]")


async def _export(engine, registry, scope):
    async with engine:
        return await engine.differ.export_snapshot(registry, scope)
