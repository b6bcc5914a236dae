"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from airlift.config import AirliftSettings
from airlift.core.auth import TokenResolver
from airlift.core.cache import CacheService
from airlift.core.engine import PublishEngine
from airlift.core.publisher import NpmPublishPrimitive
from airlift.models.config import EngineConfig

console = Console()


def configure_logging(level: str = "INFO") -> None:
    """Route library logging through Rich at ``level``."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def build_engine(
    settings: AirliftSettings,
    config: EngineConfig | None = None,
    *,
    npm_command: str | None = None,
    token: str | None = None,
    npmrc_path: Path | None = None,
) -> PublishEngine:
    """Assemble a ``PublishEngine`` from settings plus command-line overrides."""
    config = config or settings.to_engine_config()
    caches = CacheService(config.cache)
    tokens = TokenResolver(
        caches.auth,
        npmrc_path=npmrc_path or settings.npmrc_path,
        explicit_token=token or settings.auth_token,
    )
    return PublishEngine(
        config,
        primitive=NpmPublishPrimitive(npm_command or settings.npm_command),
        caches=caches,
        tokens=tokens,
    )
