"""Run report model: the persisted summary of one publish batch."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from airlift.models.outcomes import PublishOutcome, PublishStatus


class RunReport(BaseModel):
    """Per-artifact outcomes of a run plus aggregate counts.

    ``recovered`` counts failures the reconciliation pass found to be
    false negatives; those outcomes are included in ``published``.
    ``uncertain`` counts pre-checks that could not decide and were
    published anyway.
    ``recheck_uncertain`` names failed packages whose reconciliation
    re-check could not decide; they stay counted in ``failed``.
    """

    model_config = ConfigDict(frozen=True)

    registry_url: str
    dry_run: bool = False
    outcomes: list[PublishOutcome] = []
    published: int = 0
    skipped: int = 0
    failed: int = 0
    uncertain: int = 0
    recovered: int = 0
    recheck_uncertain: list[str] = []
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def failures(self) -> list[PublishOutcome]:
        return [o for o in self.outcomes if o.status == PublishStatus.ERROR]

    @property
    def succeeded(self) -> bool:
        return self.failed == 0
