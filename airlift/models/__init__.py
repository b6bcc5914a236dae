"""Airlift data models. Pydantic v2, frozen (immutable)."""

from airlift.models.artifacts import ArtifactHandle, ArtifactIdentity
from airlift.models.config import (
    CacheLimits,
    CheckOptions,
    ConcurrencyLimits,
    EngineConfig,
    PrereleasePattern,
    PublishOptions,
    RetryPolicy,
    TagPolicy,
    TimeoutPolicy,
)
from airlift.models.existence import ExistenceResult, ExistenceStatus
from airlift.models.outcomes import PublishOutcome, PublishStatus, ReconciliationResult
from airlift.models.reports import RunReport
from airlift.models.snapshot import SNAPSHOT_FORMAT_VERSION, RegistrySnapshot, SnapshotDiff

__all__ = [
    # artifacts
    "ArtifactIdentity",
    "ArtifactHandle",
    # existence
    "ExistenceStatus",
    "ExistenceResult",
    # outcomes
    "PublishStatus",
    "PublishOutcome",
    "ReconciliationResult",
    # snapshot
    "SNAPSHOT_FORMAT_VERSION",
    "RegistrySnapshot",
    "SnapshotDiff",
    # reports
    "RunReport",
    # config
    "RetryPolicy",
    "TimeoutPolicy",
    "ConcurrencyLimits",
    "CacheLimits",
    "PrereleasePattern",
    "TagPolicy",
    "EngineConfig",
    "CheckOptions",
    "PublishOptions",
]
