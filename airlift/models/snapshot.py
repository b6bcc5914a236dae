"""Registry snapshot models. Snapshots are the only state that outlives a single run."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer

from airlift.models.artifacts import ArtifactIdentity

# Bumped only when the on-disk layout changes; loaders accept an exact match.
SNAPSHOT_FORMAT_VERSION = 1


class RegistrySnapshot(BaseModel):
    """Point-in-time record of every package version a registry reports.

    Serialized with camelCase keys::

        {"formatVersion": 1, "capturedAt": "...", "registryUrl": "...",
         "stats": {...}, "packages": {"name": ["1.0.0", ...]}}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    format_version: int = Field(default=SNAPSHOT_FORMAT_VERSION, alias="formatVersion")
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="capturedAt"
    )
    registry_url: str = Field(alias="registryUrl")
    packages: dict[str, frozenset[str]] = {}

    @field_serializer("packages")
    def _serialize_packages(self, packages: dict[str, frozenset[str]]) -> dict[str, list[str]]:
        return {name: sorted(packages[name]) for name in sorted(packages)}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def stats(self) -> dict[str, int]:
        return {
            "totalPackages": len(self.packages),
            "totalVersions": sum(len(v) for v in self.packages.values()),
        }

    def has(self, identity: ArtifactIdentity) -> bool:
        """Return True if the snapshot lists this exact name and version."""
        versions = self.packages.get(identity.name)
        return versions is not None and identity.version in versions


class SnapshotDiff(BaseModel):
    """Required artifacts split by presence in a snapshot."""

    model_config = ConfigDict(frozen=True)

    missing: list[ArtifactIdentity] = []
    existing: list[ArtifactIdentity] = []

    @property
    def total(self) -> int:
        return len(self.missing) + len(self.existing)
