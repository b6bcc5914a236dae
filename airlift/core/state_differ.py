"""Registry state export, persistence, and diffing.

A snapshot records every ``name -> {versions}`` a registry reports.  Saved
to disk, it lets a later run work out which required artifacts are missing
without a live existence check per artifact.

Snapshots are validated strictly on load: the declared ``formatVersion``
must equal ``SNAPSHOT_FORMAT_VERSION`` exactly, with no migration.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
from pydantic import ValidationError

from airlift.core.auth import TokenResolver
from airlift.core.errors import AirliftError
from airlift.core.http import auth_headers, normalize_registry_url, package_url
from airlift.core.oracle import versions_from_metadata
from airlift.core.scheduler import run_bounded
from airlift.models.artifacts import ArtifactIdentity
from airlift.models.config import EngineConfig
from airlift.models.snapshot import SNAPSHOT_FORMAT_VERSION, RegistrySnapshot, SnapshotDiff

logger = logging.getLogger(__name__)

# Public registries hold millions of packages; exporting one whole is refused.
PUBLIC_REGISTRIES: tuple[str, ...] = (
    "registry.npmjs.org",
    "registry.yarnpkg.com",
    "registry.npmmirror.com",
    "npm.pkg.github.com",
)


class RegistryListingError(AirliftError):
    """Raised when no listing endpoint of a registry answered usefully."""


class PublicRegistryError(AirliftError):
    """Raised when an unscoped export targets a public registry."""


class SnapshotFormatError(AirliftError):
    """Raised when a snapshot file is malformed or of another format version."""


def is_public_registry(registry_url: str) -> bool:
    host = urlsplit(registry_url).hostname or ""
    return any(host == blocked or host.endswith("." + blocked) for blocked in PUBLIC_REGISTRIES)


def normalize_scope(scope: str | None) -> str | None:
    if not scope:
        return None
    scope = scope.strip().rstrip("/")
    return scope if scope.startswith("@") else f"@{scope}"


def listing_endpoints(scope: str | None = None) -> tuple[str, ...]:
    """Listing paths, tried in order until one succeeds.

    The search query is narrowed to ``scope`` when one is given.
    """
    return (
        "/-/all",
        f"/-/v1/search?text={quote(scope or '*', safe='*@')}&size=5000",
        "/_all_docs",
    )


def _in_scope(name: str, scope: str | None) -> bool:
    return scope is None or name.startswith(f"{scope}/")


def _versions_from_listing(meta: Any) -> set[str]:
    if not isinstance(meta, dict):
        return set()
    versions = meta.get("versions")
    if isinstance(versions, dict) and versions:
        return set(versions)
    dist_tags = meta.get("dist-tags")
    if isinstance(dist_tags, dict):
        return {v for v in dist_tags.values() if isinstance(v, str)}
    return set()


def parse_listing(data: Any, scope: str | None = None) -> dict[str, set[str]] | None:
    """Normalize a listing response to ``name -> partial versions``.

    Understands the ``/-/all`` name map, the search API's ``objects`` array,
    and CouchDB ``rows``.  Returns ``None`` for any other shape.
    """
    if not isinstance(data, dict):
        return None

    packages: dict[str, set[str]] = {}
    if isinstance(data.get("objects"), list):
        for obj in data["objects"]:
            package = (obj.get("package") or {}) if isinstance(obj, dict) else {}
            name = package.get("name")
            if name and _in_scope(name, scope):
                version = package.get("version")
                packages[name] = {version} if isinstance(version, str) else set()
        return packages

    if isinstance(data.get("rows"), list):
        for row in data["rows"]:
            name = row.get("id") if isinstance(row, dict) else None
            if name and not name.startswith("_design/") and _in_scope(name, scope):
                packages[name] = set()
        return packages

    for name, meta in data.items():
        if name.startswith("_") or not _in_scope(name, scope):
            continue
        packages[name] = _versions_from_listing(meta)
    return packages


class RegistryStateDiffer:
    """Builds registry snapshots over HTTP.

    Parameters
    ----------
    client:
        Shared async HTTP client.
    tokens:
        Resolver for bearer tokens.
    config:
        Engine configuration (timeouts and export concurrency).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenResolver,
        config: EngineConfig | None = None,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self.config = config or EngineConfig()

    async def list_packages(
        self, registry_url: str, scope: str | None = None
    ) -> dict[str, set[str]]:
        """List every package name visible at the registry.

        Raises
        ------
        RegistryListingError
            If every listing endpoint failed.
        """
        registry_url = normalize_registry_url(registry_url)
        scope = normalize_scope(scope)
        headers = auth_headers(self._tokens.token_for(registry_url))

        for endpoint in listing_endpoints(scope):
            url = f"{registry_url}{endpoint}"
            logger.debug("Trying listing endpoint %s", url)
            try:
                response = await self._client.get(
                    url, headers=headers, timeout=self.config.timeouts.listing
                )
            except httpx.RequestError as exc:
                logger.debug("Endpoint %s failed: %s", endpoint, exc)
                continue
            if response.status_code != 200:
                logger.debug("Endpoint %s returned HTTP %d", endpoint, response.status_code)
                continue
            try:
                packages = parse_listing(response.json(), scope)
            except ValueError as exc:
                logger.debug("Endpoint %s returned unparseable data: %s", endpoint, exc)
                continue
            if packages is None:
                continue
            logger.info("Found %d packages via %s", len(packages), endpoint)
            return packages

        raise RegistryListingError(
            f"Could not list packages from registry {registry_url}. "
            "The registry may not support listing, or authentication may be required."
        )

    async def fetch_versions(self, name: str, registry_url: str) -> frozenset[str] | None:
        """Full version set for one package, or ``None`` if it can't be fetched."""
        headers = auth_headers(self._tokens.token_for(registry_url))
        try:
            response = await self._client.get(
                package_url(registry_url, name),
                headers=headers,
                timeout=self.config.timeouts.metadata,
            )
        except httpx.RequestError as exc:
            logger.debug("Metadata fetch for %s failed: %s", name, exc)
            return None
        if response.status_code != 200:
            logger.debug("Metadata fetch for %s returned HTTP %d", name, response.status_code)
            return None
        try:
            return frozenset(versions_from_metadata(response.json()))
        except ValueError as exc:
            logger.debug("Metadata for %s is malformed: %s", name, exc)
            return None

    async def export_snapshot(
        self, registry_url: str, scope: str | None = None
    ) -> RegistrySnapshot:
        """Capture every package and version at ``registry_url``.

        Raises
        ------
        PublicRegistryError
            If ``registry_url`` is a public registry and no scope was given.
        """
        registry_url = normalize_registry_url(registry_url)
        scope = normalize_scope(scope)
        if scope is None and is_public_registry(registry_url):
            raise PublicRegistryError(
                f"Refusing to export all of public registry {registry_url}; pass a scope"
            )

        listing = await self.list_packages(registry_url, scope)
        names = sorted(listing)

        async def versions_for(name: str) -> frozenset[str] | None:
            return await self.fetch_versions(name, registry_url)

        fetched = await run_bounded(
            names,
            versions_for,
            self.config.concurrency.export,
            on_error=lambda _name, _exc: None,
        )

        packages: dict[str, frozenset[str]] = {}
        fallbacks = 0
        for name, versions in zip(names, fetched):
            if versions is None:
                fallbacks += 1
                versions = frozenset(listing[name])
            packages[name] = versions

        if fallbacks:
            logger.warning(
                "Used partial listing data for %d of %d packages", fallbacks, len(names)
            )
        snapshot = RegistrySnapshot(registry_url=registry_url, packages=packages)
        logger.info(
            "Exported %d packages, %d versions from %s",
            snapshot.stats["totalPackages"],
            snapshot.stats["totalVersions"],
            registry_url,
        )
        return snapshot


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def save_snapshot(snapshot: RegistrySnapshot, path: Path) -> Path:
    """Write ``snapshot`` as pretty JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(snapshot.model_dump_json(by_alias=True, indent=2) + "\n", encoding="utf-8")
    return path


def validate_snapshot_data(data: Any) -> None:
    """Check the raw shape of a parsed snapshot file.

    Raises
    ------
    SnapshotFormatError
        On a non-object document, a format version other than
        ``SNAPSHOT_FORMAT_VERSION``, or a ``packages`` value that is not a
        list of versions.
    """
    if not isinstance(data, dict):
        raise SnapshotFormatError("Invalid registry snapshot: expected an object")

    version = data.get("formatVersion")
    if type(version) is not int or version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotFormatError(
            f"Unsupported registry snapshot version: {version!r} "
            f"(expected {SNAPSHOT_FORMAT_VERSION})"
        )

    packages = data.get("packages")
    if not isinstance(packages, dict):
        raise SnapshotFormatError("Invalid registry snapshot: missing packages object")
    for name, versions in packages.items():
        if not isinstance(versions, list):
            raise SnapshotFormatError(
                f'Invalid registry snapshot: package "{name}" versions should be an array'
            )


def load_snapshot(path: Path) -> RegistrySnapshot:
    """Read and validate a snapshot file.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    SnapshotFormatError
        If the file is not a valid snapshot of the current format.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Registry snapshot not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise SnapshotFormatError(f"Failed to parse registry snapshot {path}: {exc}") from exc

    validate_snapshot_data(data)
    try:
        return RegistrySnapshot.model_validate(data)
    except ValidationError as exc:
        raise SnapshotFormatError(f"Invalid registry snapshot {path}: {exc}") from exc


def diff(required: Iterable[ArtifactIdentity], snapshot: RegistrySnapshot) -> SnapshotDiff:
    """Split ``required`` into artifacts missing from and present in ``snapshot``."""
    missing: list[ArtifactIdentity] = []
    existing: list[ArtifactIdentity] = []
    for identity in required:
        (existing if snapshot.has(identity) else missing).append(identity)
    return SnapshotDiff(missing=missing, existing=existing)
