"""Publish outcome and reconciliation result models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from airlift.models.artifacts import ArtifactIdentity


class PublishStatus(str, Enum):
    """Terminal status of one artifact's transfer."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


class PublishOutcome(BaseModel):
    """Terminal record of one artifact's publish lifecycle.

    Created once per artifact and never mutated.  The reconciliation pass
    produces a new outcome via ``model_copy`` when it recovers a failure.
    """

    model_config = ConfigDict(frozen=True)

    status: PublishStatus
    identity: ArtifactIdentity | None = None
    label: str = ""  # identity key, or the tarball file name if unresolvable
    attempt_count: int = 0
    tag_used: str | None = None
    note: str | None = None
    error_detail: str | None = None
    dry_run: bool = False
    recovered: bool = False

    @property
    def package(self) -> str:
        if self.identity is not None:
            return self.identity.key
        return self.label

    @property
    def is_failure(self) -> bool:
        return self.status == PublishStatus.ERROR


class ReconciliationResult(BaseModel):
    """Split of publish failures into genuine and recovered ones.

    ``rechecked_uncertain`` holds the packages whose re-check could not
    decide either way; they are also counted in ``confirmed``.
    """

    model_config = ConfigDict(frozen=True)

    confirmed: list[PublishOutcome] = []
    recovered: list[PublishOutcome] = []
    rechecked_uncertain: list[str] = []
