"""Publish engine: the batch coordinator.

Wires the cache service, token resolver, existence oracle, publish
executor, reconciler and state differ into one object with a bounded
lifetime.  Caches belong to the engine instance; nothing is global.

A run proceeds strictly in phases::

    validate URL -> verify auth -> snapshot seeding -> bulk pre-check -> publish -> reconcile -> report

Per-artifact failures become outcome records; only batch-level errors
(an invalid registry URL or failed authentication) raise.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

import httpx

from airlift.core.auth import TokenResolver
from airlift.core.cache import CacheService
from airlift.core.classifier import first_line
from airlift.core.http import build_client, normalize_registry_url
from airlift.core.oracle import ExistenceOracle, Sleep
from airlift.core.publisher import NpmPublishPrimitive, PublishExecutor, PublishPrimitive
from airlift.core.reconciler import Reconciler
from airlift.core.report import build_report
from airlift.core.scheduler import run_bounded
from airlift.core.state_differ import RegistryStateDiffer
from airlift.models.artifacts import ArtifactHandle
from airlift.models.config import EngineConfig, PublishOptions
from airlift.models.existence import ExistenceResult, ExistenceStatus
from airlift.models.outcomes import PublishOutcome, PublishStatus
from airlift.models.reports import RunReport
from airlift.models.snapshot import RegistrySnapshot

logger = logging.getLogger(__name__)


class PublishEngine:
    """Reconciles a batch of staged artifacts against a registry.

    Parameters
    ----------
    config:
        Engine configuration.  Uses defaults if not provided.
    client:
        HTTP client to use.  When omitted the engine builds one and closes
        it in :meth:`aclose`.
    primitive:
        Upload backend.  Defaults to :class:`NpmPublishPrimitive`.
    caches:
        Cache service.  A fresh one sized by ``config.cache`` by default.
    tokens:
        Token resolver.  Defaults to reading the user's ``.npmrc``.
    sleep:
        Awaitable used for every backoff delay.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        primitive: PublishPrimitive | None = None,
        caches: CacheService | None = None,
        tokens: TokenResolver | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or EngineConfig()
        self._owns_client = client is None
        self.client = client or build_client(self.config)
        self.caches = caches or CacheService(self.config.cache)
        self.tokens = tokens or TokenResolver(self.caches.auth)

        self.oracle = ExistenceOracle(
            self.client, self.caches, self.tokens, self.config, sleep=sleep
        )
        self.primitive = primitive or NpmPublishPrimitive()
        self.executor = PublishExecutor(
            self.primitive, self.oracle, self.config, sleep=sleep
        )
        self.reconciler = Reconciler(self.oracle, self.config)
        self.differ = RegistryStateDiffer(self.client, self.tokens, self.config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> PublishEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def clear_caches(self) -> None:
        self.caches.clear()

    def cache_stats(self) -> dict[str, dict[str, int]]:
        return self.caches.stats()

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    async def run(
        self,
        artifacts: Sequence[ArtifactHandle],
        registry_url: str,
        options: PublishOptions | None = None,
        *,
        snapshot: RegistrySnapshot | None = None,
        unresolved: Sequence[Path] = (),
    ) -> RunReport:
        """Publish every artifact not already at ``registry_url``.

        ``snapshot`` (of the same registry) marks known artifacts skipped
        without a live check.  ``unresolved`` tarballs, whose identity
        could not be read, are reported as failures.
        """
        options = options or PublishOptions()
        registry_url = normalize_registry_url(registry_url)

        if options.verify_auth and not options.dry_run and (artifacts or unresolved):
            await self._verify_auth(registry_url)

        slots: list[PublishOutcome | None] = [None] * len(artifacts)
        pending = list(range(len(artifacts)))

        if snapshot is not None:
            pending = self._seed_from_snapshot(artifacts, registry_url, snapshot, slots, pending)

        prechecks: dict[int, ExistenceResult] = {}
        if options.skip_existing and not options.dry_run and pending:
            prechecks = await self._precheck(artifacts, registry_url, pending)
            for index, result in prechecks.items():
                if result.certainly_exists:
                    slots[index] = PublishOutcome(
                        status=PublishStatus.SKIPPED,
                        identity=artifacts[index].identity,
                        label=artifacts[index].identity.key,
                        note="Already exists in registry",
                    )
            pending = [i for i in pending if slots[i] is None]
        uncertain = sum(1 for r in prechecks.values() if r.status == ExistenceStatus.UNCERTAIN)

        if pending:
            published = await self._publish(artifacts, registry_url, options, pending, prechecks)
            for index, outcome in zip(pending, published):
                slots[index] = outcome

        outcomes = [o for o in slots if o is not None]
        outcomes.extend(
            PublishOutcome(
                status=PublishStatus.ERROR,
                label=path.name,
                error_detail="could not determine package name and version",
            )
            for path in unresolved
        )

        outcomes, recheck_uncertain = await self._reconcile(outcomes, registry_url)
        report = build_report(
            registry_url,
            outcomes,
            dry_run=options.dry_run,
            uncertain=uncertain,
            recheck_uncertain=recheck_uncertain,
        )
        logger.info(
            "Run complete: %d published, %d skipped, %d failed (%d recovered, %d uncertain)",
            report.published,
            report.skipped,
            report.failed,
            report.recovered,
            report.uncertain,
        )
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _verify_auth(self, registry_url: str) -> None:
        user = await self.primitive.verify_auth(
            registry_url, timeout=self.config.timeouts.auth_check
        )
        logger.info("Authenticated to %s as %s", registry_url, user)

    @staticmethod
    def _seed_from_snapshot(
        artifacts: Sequence[ArtifactHandle],
        registry_url: str,
        snapshot: RegistrySnapshot,
        slots: list[PublishOutcome | None],
        pending: list[int],
    ) -> list[int]:
        if snapshot.registry_url.rstrip("/") != registry_url:
            logger.warning(
                "Ignoring snapshot of %s for run against %s", snapshot.registry_url, registry_url
            )
            return pending
        for index in pending:
            identity = artifacts[index].identity
            if snapshot.has(identity):
                slots[index] = PublishOutcome(
                    status=PublishStatus.SKIPPED,
                    identity=identity,
                    label=identity.key,
                    note="Present in registry snapshot",
                )
        remaining = [i for i in pending if slots[i] is None]
        logger.info("Snapshot covers %d of %d artifacts", len(pending) - len(remaining), len(pending))
        return remaining

    async def _precheck(
        self,
        artifacts: Sequence[ArtifactHandle],
        registry_url: str,
        pending: list[int],
    ) -> dict[int, ExistenceResult]:
        async def check(index: int) -> ExistenceResult:
            return await self.oracle.check(artifacts[index].identity, registry_url)

        results = await run_bounded(
            pending,
            check,
            self.config.concurrency.pre_check,
            on_error=lambda _index, exc: ExistenceResult.uncertain(str(exc)),
        )
        found = sum(1 for r in results if r.certainly_exists)
        logger.info("%d of %d packages already exist in %s", found, len(pending), registry_url)
        return dict(zip(pending, results))

    async def _publish(
        self,
        artifacts: Sequence[ArtifactHandle],
        registry_url: str,
        options: PublishOptions,
        pending: list[int],
        prechecks: dict[int, ExistenceResult],
    ) -> list[PublishOutcome]:
        async def publish(index: int) -> PublishOutcome:
            return await self.executor.publish(
                artifacts[index], registry_url, options, existence=prechecks.get(index)
            )

        def as_error(index: int, exc: Exception) -> PublishOutcome:
            identity = artifacts[index].identity
            return PublishOutcome(
                status=PublishStatus.ERROR,
                identity=identity,
                label=identity.key,
                error_detail=first_line(str(exc)) or type(exc).__name__,
            )

        return await run_bounded(
            pending, publish, self.config.concurrency.publish, on_error=as_error
        )

    async def _reconcile(
        self, outcomes: list[PublishOutcome], registry_url: str
    ) -> tuple[list[PublishOutcome], list[str]]:
        """Apply recoveries; also return the re-checks that stayed undecided."""
        failures = [o for o in outcomes if o.status == PublishStatus.ERROR]
        if not failures:
            return outcomes, []
        result = await self.reconciler.reconcile(failures, registry_url)
        if result.rechecked_uncertain:
            logger.warning(
                "Registry could not confirm %d failed package(s) on re-check: %s",
                len(result.rechecked_uncertain),
                ", ".join(result.rechecked_uncertain),
            )
        if not result.recovered:
            return outcomes, result.rechecked_uncertain
        logger.info("Reconciliation corrected %d false negative(s)", len(result.recovered))
        replacements = {o.package: o for o in result.recovered}
        return [
            replacements.get(o.package, o) if o.status == PublishStatus.ERROR else o
            for o in outcomes
        ], result.rechecked_uncertain
