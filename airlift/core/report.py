"""Run report construction and persistence."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from airlift.models.outcomes import PublishOutcome, PublishStatus
from airlift.models.reports import RunReport

REPORT_FILENAME = "publish-report.json"
DRY_RUN_REPORT_FILENAME = "publish-dry-run-report.json"


def build_report(
    registry_url: str,
    outcomes: list[PublishOutcome],
    *,
    dry_run: bool = False,
    uncertain: int = 0,
    recheck_uncertain: list[str] | None = None,
) -> RunReport:
    """Aggregate per-artifact outcomes into a :class:`RunReport`."""
    counts = {status: 0 for status in PublishStatus}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return RunReport(
        registry_url=registry_url,
        dry_run=dry_run,
        outcomes=outcomes,
        published=counts[PublishStatus.SUCCESS],
        skipped=counts[PublishStatus.SKIPPED],
        failed=counts[PublishStatus.ERROR],
        uncertain=uncertain,
        recovered=sum(1 for o in outcomes if o.recovered),
        recheck_uncertain=list(recheck_uncertain or []),
    )


def failure_lines(report: RunReport, limit: int = 10) -> list[str]:
    """One line per failure, capped at ``limit`` with a trailing count."""
    failures = report.failures
    lines = [f"{f.package}: {f.error_detail or 'unknown error'}" for f in failures[:limit]]
    if len(failures) > limit:
        lines.append(f"... and {len(failures) - limit} more")
    return lines


def outcome_to_dict(outcome: PublishOutcome) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "package": outcome.package,
        "status": outcome.status.value,
        "tag": outcome.tag_used,
        "attempts": outcome.attempt_count,
    }
    if outcome.error_detail and outcome.status == PublishStatus.ERROR:
        entry["error"] = outcome.error_detail
    if outcome.note:
        entry["reason" if outcome.status == PublishStatus.SKIPPED else "note"] = outcome.note
    if outcome.recovered:
        entry["recovered"] = True
    if outcome.dry_run:
        entry["dryRun"] = True
    return entry


def report_to_dict(report: RunReport) -> dict[str, Any]:
    return {
        "generatedAt": report.generated_at.isoformat(),
        "registryUrl": report.registry_url,
        "dryRun": report.dry_run,
        "summary": {
            "total": report.total,
            "published": report.published,
            "skipped": report.skipped,
            "failed": report.failed,
            "uncertain": report.uncertain,
            "recovered": report.recovered,
            "recheckUncertain": list(report.recheck_uncertain),
        },
        "outcomes": [outcome_to_dict(o) for o in report.outcomes],
    }


def default_report_path(directory: Path, dry_run: bool = False) -> Path:
    return Path(directory) / (DRY_RUN_REPORT_FILENAME if dry_run else REPORT_FILENAME)


def write_report(report: RunReport, path: Path) -> Path:
    """Persist ``report`` as pretty JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report_to_dict(report), indent=2) + "\n", encoding="utf-8")
    return path
