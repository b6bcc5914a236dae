"""Post-batch reconciliation of ambiguous publish failures.

A registry's read path can lag its write path, so a publish that reports
"404" may have been accepted but not yet indexed.  Each such failure is
re-checked with the cache bypassed; a certain EXISTS turns it into a
recovered success.

An UNCERTAIN re-check is treated as a confirmed failure.  Those packages
are also listed in ``rechecked_uncertain`` so operators can tell them
apart from failures the registry positively denies.
"""

from __future__ import annotations

import logging

from airlift.core.classifier import is_not_found_ambiguity
from airlift.core.oracle import ExistenceOracle
from airlift.core.scheduler import run_bounded
from airlift.models.config import CheckOptions, EngineConfig
from airlift.models.existence import ExistenceResult, ExistenceStatus
from airlift.models.outcomes import PublishOutcome, PublishStatus, ReconciliationResult

logger = logging.getLogger(__name__)

_BYPASS_CACHE = CheckOptions(use_cache=False)


def needs_recheck(outcome: PublishOutcome) -> bool:
    """True for an ERROR with a resolvable identity and a 404-bearing message."""
    return (
        outcome.status == PublishStatus.ERROR
        and outcome.identity is not None
        and is_not_found_ambiguity(outcome.error_detail)
    )


class Reconciler:
    """Re-verifies 404-bearing publish failures against the registry."""

    def __init__(self, oracle: ExistenceOracle, config: EngineConfig | None = None) -> None:
        self._oracle = oracle
        self.config = config or EngineConfig()

    async def reconcile(
        self,
        failures: list[PublishOutcome],
        registry_url: str,
    ) -> ReconciliationResult:
        candidates = [f for f in failures if needs_recheck(f)]
        if not candidates:
            return ReconciliationResult(confirmed=list(failures))

        logger.info(
            "Re-checking %d ambiguous failure(s) against %s", len(candidates), registry_url
        )

        async def recheck(outcome: PublishOutcome) -> ExistenceResult:
            if outcome.identity is None:
                return ExistenceResult.uncertain("unresolvable identity")
            return await self._oracle.check(outcome.identity, registry_url, _BYPASS_CACHE)

        checks = await run_bounded(
            candidates,
            recheck,
            self.config.concurrency.verify,
            on_error=lambda _item, exc: ExistenceResult.uncertain(str(exc)),
        )
        verdicts = {id(outcome): check for outcome, check in zip(candidates, checks)}

        confirmed: list[PublishOutcome] = []
        recovered: list[PublishOutcome] = []
        uncertain: list[str] = []
        for outcome in failures:
            check = verdicts.get(id(outcome))
            if check is None:
                confirmed.append(outcome)
            elif check.certainly_exists:
                logger.info("%s is present after re-check; counting as published", outcome.package)
                recovered.append(
                    outcome.model_copy(
                        update={
                            "status": PublishStatus.SUCCESS,
                            "recovered": True,
                            "note": "present in registry on re-check (publish reported 404)",
                        }
                    )
                )
            else:
                if check.status == ExistenceStatus.UNCERTAIN:
                    uncertain.append(outcome.package)
                confirmed.append(outcome)

        return ReconciliationResult(
            confirmed=confirmed, recovered=recovered, rechecked_uncertain=uncertain
        )
