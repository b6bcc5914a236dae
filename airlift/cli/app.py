"""Main Typer application: imports and registers all CLI commands.

Entry point: ``airlift`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from airlift import __version__
from airlift.cli.commands.cache_stats import cache_stats_cmd
from airlift.cli.commands.diff_state import diff_state_cmd
from airlift.cli.commands.export_state import export_state_cmd
from airlift.cli.commands.publish import publish_cmd
from airlift.cli.common import configure_logging
from airlift.config import settings

app = typer.Typer(
    name="airlift",
    help="Airlift: move npm packages into offline registries, safely and incrementally.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"airlift {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (defaults to AIRLIFT_LOG_LEVEL)."
    ),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Configure logging and settings for every subcommand."""
    if ctx.obj is None:
        ctx.obj = settings
    level = log_level or ("DEBUG" if ctx.obj.debug else ctx.obj.log_level)
    configure_logging(level)


# Register subcommands
app.command(name="publish", help="Publish a staging directory to a registry.")(publish_cmd)
app.command(name="export-state", help="Export a registry snapshot.")(export_state_cmd)
app.command(name="diff-state", help="List required packages missing from a snapshot.")(diff_state_cmd)
app.command(name="cache-stats", help="Check packages and show cache statistics.")(cache_stats_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
