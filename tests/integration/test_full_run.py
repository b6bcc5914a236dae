"""End-to-end integration tests: staging scan -> publish run -> snapshot -> diff.

These tests exercise the staging scanner, PublishEngine (oracle, executor,
scheduler, reconciler), RegistryStateDiffer, snapshot persistence and the
report writer working together against the in-memory registry.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from airlift.core.report import default_report_path, write_report
from airlift.core.state_differ import diff, load_snapshot, save_snapshot
from airlift.models.artifacts import ArtifactIdentity
from airlift.models.outcomes import PublishStatus
from airlift.staging import scan_staging_dir

VERSION_ORDERING = (
    'npm ERR! Cannot implicitly apply the "latest" tag because published version '
    "5.0.0 is higher than the new version 4.0.0."
)


class TestFullRun:
    """A mixed batch: existing, new, out-of-order, flaky and lagging packages."""

    @pytest.fixture
    def staging(self, tmp_path: Path, make_tarball) -> Path:
        directory = tmp_path / "airgap-packages"
        for name, version in [
            ("lodash", "4.17.21"),
            ("react", "18.2.0"),
            ("old-lib", "4.0.0"),
            ("flaky", "1.0.0"),
            ("@scope/lagging", "2.0.0"),
            ("next", "14.0.0-canary.3"),
        ]:
            make_tarball(directory, name, version)
        return directory

    def test_mixed_batch(self, staging, make_engine, registry, primitive, registry_url, sleep):
        registry.add("lodash", "4.17.21")
        registry.add("old-lib", "5.0.0")
        registry.add("@scope/lagging", "2.0.0")
        registry.script("/@scope%2Flagging", httpx.Response(404))
        primitive.fail("old-lib@4.0.0", VERSION_ORDERING)
        primitive.fail("flaky@1.0.0", "npm ERR! code ECONNRESET", "npm ERR! code ECONNRESET")
        primitive.fail("@scope/lagging@2.0.0", "npm ERR! 404 Not Found - PUT http://registry.test/@scope%2flagging")

        artifacts, unresolved = scan_staging_dir(staging)
        report = asyncio.run(make_engine().run(artifacts, registry_url, unresolved=unresolved))
        outcomes = {o.package: o for o in report.outcomes}

        assert outcomes["lodash@4.17.21"].status == PublishStatus.SKIPPED
        assert outcomes["react@18.2.0"].status == PublishStatus.SUCCESS
        assert outcomes["react@18.2.0"].tag_used == "latest"
        assert outcomes["next@14.0.0-canary.3"].tag_used == "canary"

        old = outcomes["old-lib@4.0.0"]
        assert old.status == PublishStatus.SUCCESS
        assert old.tag_used == "legacy-4-0-0"
        assert old.attempt_count == 1

        flaky = outcomes["flaky@1.0.0"]
        assert flaky.status == PublishStatus.SUCCESS
        assert flaky.attempt_count == 3
        assert len(sleep.delays) == 2

        lagging = outcomes["@scope/lagging@2.0.0"]
        assert lagging.status == PublishStatus.SUCCESS
        assert lagging.recovered is True

        assert report.failed == 0
        assert report.skipped == 1
        assert report.published == 5
        assert report.recovered == 1

        path = write_report(report, default_report_path(staging))
        data = json.loads(path.read_text())
        assert data["summary"] == {
            "total": 6,
            "published": 5,
            "skipped": 1,
            "failed": 0,
            "uncertain": 0,
            "recovered": 1,
        }

    def test_second_run_is_idempotent(self, staging, make_engine, primitive, registry_url):
        artifacts, _ = scan_staging_dir(staging)
        engine = make_engine()

        first = asyncio.run(engine.run(artifacts, registry_url))
        calls_after_first = len(primitive.calls)
        engine.clear_caches()
        second = asyncio.run(engine.run(artifacts, registry_url))

        assert first.published == len(artifacts)
        assert second.skipped == len(artifacts)
        assert len(primitive.calls) == calls_after_first

    def test_exhausted_timeouts_fail_batch_entry(self, staging, make_engine, primitive, registry_url):
        primitive.fail("react@18.2.0", "ETIMEDOUT", "ETIMEDOUT", "ETIMEDOUT")
        artifacts, _ = scan_staging_dir(staging)
        report = asyncio.run(make_engine().run(artifacts, registry_url))
        failed = report.failures
        assert [o.package for o in failed] == ["react@18.2.0"]
        assert failed[0].attempt_count == 3
        assert report.published == len(artifacts) - 1


class TestSnapshotRoundTrip:
    """Publish, export the registry, then diff a requirement list offline."""

    def test_export_then_diff(self, tmp_path, make_engine, make_tarball, registry, registry_url):
        staging = tmp_path / "staging"
        make_tarball(staging, "lodash", "4.17.21")
        make_tarball(staging, "@types/node", "20.1.0")
        artifacts, _ = scan_staging_dir(staging)
        engine = make_engine()

        asyncio.run(engine.run(artifacts, registry_url))
        registry.script(
            "/-/all", httpx.Response(200, json={name: {} for name in registry.packages})
        )
        snapshot = asyncio.run(engine.differ.export_snapshot(registry_url))
        path = save_snapshot(snapshot, tmp_path / "registry-state.json")

        loaded = load_snapshot(path)
        required = [
            ArtifactIdentity.parse("lodash@4.17.21"),
            ArtifactIdentity.parse("@types/node@20.1.0"),
            ArtifactIdentity.parse("react@18.2.0"),
        ]
        result = diff(required, loaded)
        assert [i.key for i in result.missing] == ["react@18.2.0"]
        assert len(result.existing) == 2

    def test_snapshot_seeded_run_skips_without_checks(
        self, tmp_path, make_engine, make_tarball, registry, registry_url
    ):
        staging = tmp_path / "staging"
        make_tarball(staging, "lodash", "4.17.21")
        artifacts, _ = scan_staging_dir(staging)
        registry.add("lodash", "4.17.21")
        registry.script("/-/all", httpx.Response(200, json={"lodash": {}}))
        engine = make_engine()

        snapshot = asyncio.run(engine.differ.export_snapshot(registry_url))
        requests_before = len(registry.requests)
        report = asyncio.run(engine.run(artifacts, registry_url, snapshot=snapshot))

        assert report.skipped == 1
        assert len(registry.requests) == requests_before
