"""``airlift publish`` : push a staging directory of tarballs to a registry.

Scans the staging directory, optionally seeds from a registry snapshot,
pre-checks existence, publishes the remainder, reconciles ambiguous
failures and writes a JSON report next to the tarballs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from airlift.cli import common
from airlift.config import AirliftSettings
from airlift.core.errors import AirliftError
from airlift.core.report import default_report_path, write_report
from airlift.core.state_differ import load_snapshot
from airlift.models.config import PublishOptions
from airlift.models.reports import RunReport
from airlift.monitor.renderer import RunRenderer
from airlift.staging import scan_staging_dir


def publish_cmd(
    ctx: typer.Context,
    directory: Path = typer.Option(
        None, "--dir", "-d", help="Staging directory of .tgz files."
    ),
    registry: str = typer.Option(
        None, "--registry", "-r", help="Destination registry URL."
    ),
    snapshot: Path = typer.Option(
        None, "--snapshot", "-s", help="Registry snapshot to skip known packages."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Report what would be published without publishing."
    ),
    skip_existing: bool = typer.Option(
        True,
        "--skip-existing/--no-skip-existing",
        help="Check the registry and skip packages that already exist.",
    ),
    skip_auth_check: bool = typer.Option(
        False, "--skip-auth-check", help="Do not run npm whoami before publishing."
    ),
    concurrency: int = typer.Option(
        None, "--concurrency", "-c", min=1, help="Parallel publish workers."
    ),
    retries: int = typer.Option(
        None, "--retries", min=1, help="Publish attempts per package."
    ),
    report: Path = typer.Option(
        None, "--report", help="Where to write the JSON report."
    ),
    npm_command: str = typer.Option(
        None, "--npm", help="Command used to invoke npm."
    ),
    token: str = typer.Option(
        None, "--token", help="Auth token, overriding .npmrc.", envvar="NPM_TOKEN"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Only print the summary."
    ),
) -> None:
    """Publish staged tarballs to an offline registry."""
    settings: AirliftSettings = ctx.obj
    directory = directory or settings.staging_dir
    registry = registry or settings.registry_url

    overrides = settings.model_copy(
        update={
            k: v
            for k, v in (("publish_concurrency", concurrency), ("max_retries", retries))
            if v is not None
        }
    )
    options = PublishOptions(
        dry_run=dry_run, skip_existing=skip_existing, verify_auth=not skip_auth_check
    )

    try:
        artifacts, unresolved = scan_staging_dir(directory)
        if not artifacts and not unresolved:
            common.console.print(f"[yellow]No tarballs found in {directory}[/yellow]")
            return
        known = load_snapshot(snapshot) if snapshot is not None else None
        engine = common.build_engine(overrides, npm_command=npm_command, token=token)
        result = asyncio.run(
            _run(engine, artifacts, registry, options, known, unresolved)
        )
    except (AirliftError, FileNotFoundError) as exc:
        common.console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    renderer = RunRenderer(
        console=common.console, error_limit=engine.config.report_error_limit
    )
    renderer.print_report(result, show_outcomes=not quiet)

    path = write_report(result, report or default_report_path(directory, dry_run))
    common.console.print(f"[dim]Report saved to {path}[/dim]")

    if not result.succeeded:
        raise typer.Exit(code=1)


async def _run(engine, artifacts, registry, options, snapshot, unresolved) -> RunReport:
    async with engine:
        return await engine.run(
            artifacts, registry, options, snapshot=snapshot, unresolved=unresolved
        )
