"""Tests for PublishEngine: run phases, seeding, reconciliation, lifecycle."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from airlift.core.engine import PublishEngine
from airlift.core.http import InvalidRegistryUrlError
from airlift.core.publisher import AuthenticationError
from airlift.models.config import PublishOptions
from airlift.models.outcomes import PublishStatus
from airlift.models.snapshot import RegistrySnapshot


def _statuses(report) -> dict[str, PublishStatus]:
    return {o.package: o.status for o in report.outcomes}


class TestPublishEngineRun:
    def test_precheck_skips_existing(self, make_engine, make_artifact, registry, primitive, registry_url):
        registry.add("a", "1.0.0")
        artifacts = [make_artifact("a", "1.0.0"), make_artifact("b", "1.0.0")]
        report = asyncio.run(make_engine().run(artifacts, registry_url))
        assert _statuses(report) == {"a@1.0.0": PublishStatus.SKIPPED, "b@1.0.0": PublishStatus.SUCCESS}
        assert [c["key"] for c in primitive.calls] == ["b@1.0.0"]
        assert report.published == 1 and report.skipped == 1 and report.failed == 0

    def test_outcomes_follow_input_order(self, make_engine, make_artifact, registry, registry_url):
        registry.add("c", "1.0.0")
        artifacts = [make_artifact(n, "1.0.0") for n in "dcba"]
        report = asyncio.run(make_engine().run(artifacts, registry_url))
        assert [o.package for o in report.outcomes] == ["d@1.0.0", "c@1.0.0", "b@1.0.0", "a@1.0.0"]

    def test_snapshot_seeding_avoids_requests(self, make_engine, make_artifact, registry, registry_url):
        snapshot = RegistrySnapshot(registry_url=registry_url, packages={"a": frozenset({"1.0.0"})})
        artifacts = [make_artifact("a", "1.0.0"), make_artifact("b", "1.0.0")]
        report = asyncio.run(make_engine().run(artifacts, registry_url, snapshot=snapshot))
        skipped = report.outcomes[0]
        assert skipped.status == PublishStatus.SKIPPED
        assert skipped.note == "Present in registry snapshot"
        assert "/a" not in registry.paths()

    def test_snapshot_of_other_registry_ignored(self, make_engine, make_artifact, primitive, registry_url):
        snapshot = RegistrySnapshot(
            registry_url="http://elsewhere.test", packages={"a": frozenset({"1.0.0"})}
        )
        report = asyncio.run(
            make_engine().run([make_artifact("a", "1.0.0")], registry_url, snapshot=snapshot)
        )
        assert report.outcomes[0].status == PublishStatus.SUCCESS
        assert len(primitive.calls) == 1

    def test_dry_run(self, make_engine, make_artifact, registry, primitive, registry_url):
        artifacts = [make_artifact("a", "1.0.0"), make_artifact("b", "2.0.0-beta.1")]
        report = asyncio.run(
            make_engine().run(artifacts, registry_url, PublishOptions(dry_run=True))
        )
        assert report.dry_run is True
        assert all(o.dry_run and o.status == PublishStatus.SUCCESS for o in report.outcomes)
        assert [o.tag_used for o in report.outcomes] == ["latest", "beta"]
        assert primitive.calls == []
        assert registry.requests == []

    def test_invalid_registry_url_is_batch_fatal(self, make_engine, make_artifact):
        with pytest.raises(InvalidRegistryUrlError):
            asyncio.run(make_engine().run([make_artifact("a", "1.0.0")], "registry.test"))

    def test_uncertain_precheck_published_and_counted(
        self, make_engine, make_artifact, registry, primitive, registry_url
    ):
        registry.script("/a", httpx.Response(403))
        report = asyncio.run(make_engine().run([make_artifact("a", "1.0.0")], registry_url))
        assert report.uncertain == 1
        assert report.outcomes[0].status == PublishStatus.SUCCESS
        assert len(primitive.calls) == 1

    def test_reconciliation_recovers_false_negative(
        self, make_engine, make_artifact, registry, primitive, registry_url
    ):
        registry.add("c", "1.0.0")
        registry.script("/c", httpx.Response(404))
        primitive.fail("c@1.0.0", "npm ERR! 404 Not Found - PUT http://registry.test/c")
        artifacts = [make_artifact("a", "1.0.0"), make_artifact("c", "1.0.0")]

        report = asyncio.run(make_engine().run(artifacts, registry_url))

        recovered = report.outcomes[1]
        assert recovered.package == "c@1.0.0"
        assert recovered.status == PublishStatus.SUCCESS
        assert recovered.recovered is True
        assert report.recovered == 1
        assert report.failed == 0
        assert report.published == 2

    def test_undecided_recheck_listed_in_report(
        self, make_engine, make_artifact, registry, primitive, registry_url
    ):
        registry.script("/c", httpx.Response(404), httpx.Response(403))
        primitive.fail("c@1.0.0", "npm ERR! 404 Not Found - PUT http://registry.test/c")

        report = asyncio.run(make_engine().run([make_artifact("c", "1.0.0")], registry_url))

        assert report.outcomes[0].status == PublishStatus.ERROR
        assert report.failed == 1
        assert report.recovered == 0
        assert report.recheck_uncertain == ["c@1.0.0"]

    def test_confirmed_absent_recheck_not_listed(
        self, make_engine, make_artifact, registry, primitive, registry_url
    ):
        primitive.fail("c@1.0.0", "npm ERR! 404 Not Found - PUT http://registry.test/c")
        report = asyncio.run(make_engine().run([make_artifact("c", "1.0.0")], registry_url))
        assert report.failed == 1
        assert report.recheck_uncertain == []

    def test_unresolved_tarballs_reported(self, make_engine, make_artifact, registry_url):
        report = asyncio.run(
            make_engine().run(
                [make_artifact("a", "1.0.0")], registry_url, unresolved=[Path("broken.tgz")]
            )
        )
        failure = report.outcomes[-1]
        assert failure.package == "broken.tgz"
        assert failure.status == PublishStatus.ERROR
        assert report.failed == 1

    def test_unexpected_worker_error_becomes_outcome(
        self, client, caches, tokens, sleep, make_artifact, registry_url
    ):
        class ExplodingPrimitive:
            async def publish(self, content_path, registry_url, *, tag, timeout):
                raise RuntimeError("disk on fire\nstack trace")

            async def verify_auth(self, registry_url, *, timeout):
                return "ops"

        engine = PublishEngine(
            client=client, primitive=ExplodingPrimitive(), caches=caches, tokens=tokens, sleep=sleep
        )
        report = asyncio.run(engine.run([make_artifact("a", "1.0.0")], registry_url))
        assert report.outcomes[0].status == PublishStatus.ERROR
        assert report.outcomes[0].error_detail == "disk on fire"

    def test_empty_batch(self, make_engine, registry_url):
        report = asyncio.run(make_engine().run([], registry_url))
        assert report.total == 0
        assert report.succeeded is True


class TestPublishEngineAuthCheck:
    def test_verifies_before_publishing(self, make_engine, make_artifact, primitive, registry_url):
        report = asyncio.run(make_engine().run([make_artifact("a", "1.0.0")], registry_url))
        assert primitive.auth_checks == [registry_url]
        assert report.published == 1

    def test_failure_stops_the_batch(
        self, make_engine, make_artifact, registry, primitive, registry_url
    ):
        primitive.auth_failure = "npm ERR! code E401"
        with pytest.raises(AuthenticationError, match="npm login --registry"):
            asyncio.run(make_engine().run([make_artifact("a", "1.0.0")], registry_url))
        assert primitive.calls == []
        assert registry.requests == []

    def test_skipped_for_dry_run(self, make_engine, make_artifact, primitive, registry_url):
        primitive.auth_failure = "not logged in"
        report = asyncio.run(
            make_engine().run(
                [make_artifact("a", "1.0.0")], registry_url, PublishOptions(dry_run=True)
            )
        )
        assert primitive.auth_checks == []
        assert report.succeeded

    def test_can_be_disabled(self, make_engine, make_artifact, primitive, registry_url):
        primitive.auth_failure = "not logged in"
        report = asyncio.run(
            make_engine().run(
                [make_artifact("a", "1.0.0")], registry_url, PublishOptions(verify_auth=False)
            )
        )
        assert primitive.auth_checks == []
        assert report.published == 1

    def test_not_run_for_empty_batch(self, make_engine, primitive, registry_url):
        asyncio.run(make_engine().run([], registry_url))
        assert primitive.auth_checks == []


class TestPublishEngineLifecycle:
    def test_cache_stats_and_clear(self, make_engine, make_artifact, registry, registry_url):
        registry.add("a", "1.0.0")
        engine = make_engine()
        asyncio.run(engine.run([make_artifact("a", "1.0.0")], registry_url))
        assert engine.cache_stats()["existence"]["size"] == 1
        engine.clear_caches()
        assert engine.cache_stats()["existence"]["size"] == 0

    def test_closes_owned_client(self, primitive, tokens):
        engine = PublishEngine(primitive=primitive, tokens=tokens)

        async def use():
            async with engine:
                pass

        asyncio.run(use())
        assert engine.client.is_closed

    def test_leaves_borrowed_client_open(self, make_engine, client):
        asyncio.run(make_engine().aclose())
        assert not client.is_closed
