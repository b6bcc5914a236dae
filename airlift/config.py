"""Runtime settings: env-driven, overlaid on ``EngineConfig``.

Reads from a ``.env`` file and ``AIRLIFT_*`` environment variables.  The
engine itself never reads settings; the CLI converts them with
:meth:`AirliftSettings.to_engine_config` and passes the result in.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from airlift.models.config import ConcurrencyLimits, EngineConfig, RetryPolicy


class AirliftSettings(BaseSettings):
    """Settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export AIRLIFT_REGISTRY_URL=http://verdaccio.internal:4873
        export AIRLIFT_LOG_LEVEL=DEBUG
        export AIRLIFT_PUBLISH_CONCURRENCY=5

    Or via .env file::

        AIRLIFT_STAGING_DIR=/mnt/transfer/airgap-packages
        AIRLIFT_AUTH_TOKEN=npm_xxx
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AIRLIFT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Registry and paths
    registry_url: str = "http://localhost:4873"
    staging_dir: Path = Path("./airgap-packages")
    snapshot_path: Path = Path("./registry-state.json")
    npmrc_path: Path | None = None
    auth_token: str | None = None

    # Publishing
    npm_command: str = "npm"
    publish_concurrency: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=1)

    def to_engine_config(self, base: EngineConfig | None = None) -> EngineConfig:
        """Overlay the publishing overrides on ``base`` (defaults if omitted)."""
        base = base or EngineConfig()
        update: dict[str, object] = {}
        if self.publish_concurrency is not None:
            update["concurrency"] = ConcurrencyLimits(
                **{**base.concurrency.model_dump(), "publish": self.publish_concurrency}
            )
        if self.max_retries is not None:
            update["retry"] = RetryPolicy(
                **{**base.retry.model_dump(), "max_attempts": self.max_retries}
            )
        return base.model_copy(update=update) if update else base


# Module-level singleton: import as `from airlift.config import settings`
settings = AirliftSettings()
