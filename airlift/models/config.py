"""Engine configuration models: every tunable, with its default.

Validated once when constructed; the engine and its components only read
from these frozen objects.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryPolicy(BaseModel):
    """Attempt counts and exponential backoff parameters (seconds)."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)  # publish attempts
    check_attempts: int = Field(default=2, ge=1)  # existence check attempts
    initial_backoff: float = Field(default=1.0, ge=0)
    max_backoff: float = Field(default=10.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter_max: float = Field(default=0.5, ge=0)


class TimeoutPolicy(BaseModel):
    """Per-call timeouts (seconds)."""

    model_config = ConfigDict(frozen=True)

    publish_base: float = 120.0
    publish_per_mb: float = 30.0
    publish_max: float = 600.0
    slow_package_floor: float = 300.0
    slow_packages: tuple[str, ...] = (
        "typescript",
        "esbuild",
        "@esbuild/*",
        "@swc/*",
        "next",
        "electron",
        "puppeteer",
        "playwright-core",
        "sharp",
        "@img/*",
    )
    http_request: float = 10.0
    http_request_retry: float = 15.0
    listing: float = 600.0
    metadata: float = 20.0
    auth_check: float = 5.0


class ConcurrencyLimits(BaseModel):
    """Worker counts for each bounded stage of a run."""

    model_config = ConfigDict(frozen=True)

    publish: int = Field(default=3, ge=1)
    pre_check: int = Field(default=10, ge=1)
    verify: int = Field(default=10, ge=1)
    export: int = Field(default=10, ge=1)


class CacheLimits(BaseModel):
    """Capacity of the existence and auth-token caches."""

    model_config = ConfigDict(frozen=True)

    max_size: int = Field(default=10_000, ge=1)
    eviction_count: int = Field(default=1_000, ge=1)

    @model_validator(mode="after")
    def _eviction_within_capacity(self) -> CacheLimits:
        if self.eviction_count > self.max_size:
            raise ValueError(
                f"eviction_count ({self.eviction_count}) exceeds max_size ({self.max_size})"
            )
        return self


class PrereleasePattern(BaseModel):
    """A version substring mapped to the dist-tag it publishes under."""

    model_config = ConfigDict(frozen=True)

    marker: str
    tag: str


DEFAULT_PRERELEASE_PATTERNS: tuple[PrereleasePattern, ...] = tuple(
    PrereleasePattern(marker=f"-{tag}", tag=tag)
    for tag in (
        "beta",
        "alpha",
        "rc",
        "next",
        "canary",
        "dev",
        "pre",
        "nightly",
        "snapshot",
        "experimental",
    )
)


class TagPolicy(BaseModel):
    """Dist-tag selection rules."""

    model_config = ConfigDict(frozen=True)

    default_tag: str = "latest"
    prerelease_patterns: tuple[PrereleasePattern, ...] = DEFAULT_PRERELEASE_PATTERNS
    fallback_prefix: str = "legacy"


class EngineConfig(BaseModel):
    """Complete configuration for one ``PublishEngine`` instance."""

    model_config = ConfigDict(frozen=True)

    retry: RetryPolicy = RetryPolicy()
    timeouts: TimeoutPolicy = TimeoutPolicy()
    concurrency: ConcurrencyLimits = ConcurrencyLimits()
    cache: CacheLimits = CacheLimits()
    tags: TagPolicy = TagPolicy()
    max_redirects: int = Field(default=5, ge=0)
    report_error_limit: int = Field(default=10, ge=1)
    user_agent: str = "airlift"


class CheckOptions(BaseModel):
    """Per-call options for an existence check."""

    model_config = ConfigDict(frozen=True)

    use_cache: bool = True
    max_retries: int | None = Field(default=None, ge=1)


class PublishOptions(BaseModel):
    """Per-run options for publishing."""

    model_config = ConfigDict(frozen=True)

    max_retries: int | None = Field(default=None, ge=1)
    dry_run: bool = False
    skip_existing: bool = True
    verify_auth: bool = True  # npm whoami before publishing; ignored for dry runs
