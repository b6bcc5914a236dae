"""``airlift cache-stats`` : check packages and show cache behaviour.

Each package is checked twice against the registry; the second pass is
served from the existence cache whenever the first was certain.
"""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from airlift.cli import common
from airlift.config import AirliftSettings
from airlift.core.errors import AirliftError
from airlift.core.http import normalize_registry_url
from airlift.core.scheduler import run_bounded
from airlift.models.artifacts import ArtifactIdentity
from airlift.models.existence import ExistenceResult, ExistenceStatus
from airlift.monitor.renderer import RunRenderer

_STATUS_STYLES = {
    ExistenceStatus.EXISTS: "[green]exists[/green]",
    ExistenceStatus.NOT_EXISTS: "[yellow]missing[/yellow]",
    ExistenceStatus.UNCERTAIN: "[red]uncertain[/red]",
}


def cache_stats_cmd(
    ctx: typer.Context,
    packages: list[str] = typer.Argument(
        ..., help="Packages to check, as name@version."
    ),
    registry: str = typer.Option(
        None, "--registry", "-r", help="Registry URL to check against."
    ),
    token: str = typer.Option(
        None, "--token", help="Auth token, overriding .npmrc.", envvar="NPM_TOKEN"
    ),
) -> None:
    """Check package existence and print cache statistics."""
    settings: AirliftSettings = ctx.obj
    registry = registry or settings.registry_url

    try:
        registry = normalize_registry_url(registry)
        identities = [ArtifactIdentity.parse(spec) for spec in packages]
        engine = common.build_engine(settings, token=token)
        results, stats = asyncio.run(_check_twice(engine, identities, registry))
    except (AirliftError, ValueError) as exc:
        common.console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title=f"Existence in {registry}")
    table.add_column("Package", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Detail")
    for identity, result in zip(identities, results):
        table.add_row(identity.key, _STATUS_STYLES[result.status], result.error_detail or "")
    common.console.print(table)
    common.console.print(RunRenderer(console=common.console).render_cache_stats(stats))


async def _check_twice(
    engine, identities: list[ArtifactIdentity], registry: str
) -> tuple[list[ExistenceResult], dict[str, dict[str, int]]]:
    async with engine:
        async def check(identity: ArtifactIdentity) -> ExistenceResult:
            return await engine.oracle.check(identity, registry)

        def as_uncertain(_identity: ArtifactIdentity, exc: Exception) -> ExistenceResult:
            return ExistenceResult.uncertain(str(exc))

        limit = engine.config.concurrency.pre_check
        await run_bounded(identities, check, limit, on_error=as_uncertain)
        results = await run_bounded(identities, check, limit, on_error=as_uncertain)
        return results, engine.cache_stats()
