"""Staging directory scanning and archive identity extraction.

Staged artifacts are npm tarballs (``*.tgz``).  Identity comes from the
archive's ``package/package.json``, read with a fixed byte ceiling; when
that fails the file name (``name-1.2.3.tgz``) is parsed instead.
"""

from __future__ import annotations

import json
import logging
import re
import tarfile
from pathlib import Path

from airlift.core.errors import AirliftError
from airlift.models.artifacts import ArtifactHandle, ArtifactIdentity

logger = logging.getLogger(__name__)

MAX_MANIFEST_BYTES = 1024 * 1024
TARBALL_SUFFIX = ".tgz"

_SEMVER_START = re.compile(r"^\d+\.\d+\.\d+")
_NAME_VERSION = re.compile(r"^(.+?)-(\d+\.\d+\.\d+.*)$")


class StagingDirectoryError(AirliftError):
    """Raised when the staging directory is missing or not a directory."""


class ArchiveMetadataError(AirliftError):
    """Raised when a tarball's identity cannot be determined."""


def _manifest_member(archive: tarfile.TarFile) -> tarfile.TarInfo | None:
    candidates = [
        m for m in archive.getmembers()
        if m.isfile() and m.name.count("/") == 1 and m.name.endswith("/package.json")
    ]
    for member in candidates:
        if member.name == "package/package.json":
            return member
    return candidates[0] if candidates else None


def read_archive_identity(path: Path, max_bytes: int = MAX_MANIFEST_BYTES) -> ArtifactIdentity:
    """Read ``name`` and ``version`` from a tarball's ``package.json``.

    Raises
    ------
    ArchiveMetadataError
        If the archive is unreadable, has no manifest, the manifest exceeds
        ``max_bytes``, or it lacks a string name and version.
    """
    try:
        with tarfile.open(path, "r:*") as archive:
            member = _manifest_member(archive)
            if member is None:
                raise ArchiveMetadataError(f"{path.name}: no package.json in archive")
            if member.size > max_bytes:
                raise ArchiveMetadataError(
                    f"{path.name}: package.json is {member.size} bytes (limit {max_bytes})"
                )
            handle = archive.extractfile(member)
            if handle is None:
                raise ArchiveMetadataError(f"{path.name}: package.json is not a regular file")
            with handle:
                raw = handle.read(max_bytes)
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise ArchiveMetadataError(f"{path.name}: unreadable archive: {exc}") from exc

    try:
        manifest = json.loads(raw)
    except ValueError as exc:
        raise ArchiveMetadataError(f"{path.name}: malformed package.json: {exc}") from exc

    name = manifest.get("name") if isinstance(manifest, dict) else None
    version = manifest.get("version") if isinstance(manifest, dict) else None
    if not isinstance(name, str) or not isinstance(version, str) or not name or not version:
        raise ArchiveMetadataError(f"{path.name}: package.json lacks name or version")
    return ArtifactIdentity(name=name, version=version)


def identity_from_filename(path: Path) -> ArtifactIdentity:
    """Best-effort identity from a tarball name.

    ``lodash-4.17.21.tgz`` -> ``lodash@4.17.21``;
    ``@scope-pkg-name-1.0.0.tgz`` -> ``@scope/pkg-name@1.0.0``.
    """
    stem = path.name[: -len(TARBALL_SUFFIX)] if path.name.endswith(TARBALL_SUFFIX) else path.stem

    if stem.startswith("@"):
        parts = stem[1:].split("-")
        for index in range(1, len(parts)):
            if _SEMVER_START.match(parts[index]):
                if index >= 2:
                    return ArtifactIdentity(
                        name=f"@{parts[0]}/{'-'.join(parts[1:index])}",
                        version="-".join(parts[index:]),
                    )
                break

    match = _NAME_VERSION.match(stem)
    if match is None:
        raise ArchiveMetadataError(f"Could not parse package info from {path.name}")
    return ArtifactIdentity(name=match.group(1), version=match.group(2))


def resolve_identity(path: Path) -> ArtifactIdentity:
    try:
        return read_archive_identity(path)
    except ArchiveMetadataError as exc:
        logger.debug("%s; falling back to file name", exc)
        return identity_from_filename(path)


def scan_staging_dir(directory: Path) -> tuple[list[ArtifactHandle], list[Path]]:
    """Collect handles for every tarball in ``directory``.

    Returns
    -------
    tuple
        ``(handles, unresolved)``: tarballs whose identity could not be
        determined are returned separately rather than dropped.

    Raises
    ------
    StagingDirectoryError
        If ``directory`` does not exist or is not a directory.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise StagingDirectoryError(f"Packages directory not found: {directory}")

    handles: list[ArtifactHandle] = []
    unresolved: list[Path] = []
    for path in sorted(directory.glob(f"*{TARBALL_SUFFIX}")):
        try:
            identity = resolve_identity(path)
        except ArchiveMetadataError as exc:
            logger.warning("Could not read %s: %s", path.name, exc)
            unresolved.append(path)
            continue
        handles.append(
            ArtifactHandle(identity=identity, path=path, size_bytes=path.stat().st_size)
        )

    logger.info("Found %d tarballs in %s", len(handles) + len(unresolved), directory)
    return handles, unresolved


def read_requirements(path: Path) -> list[ArtifactIdentity]:
    """Parse a ``name@version`` per line list; ``#`` comments are ignored.

    Raises
    ------
    ValueError
        On a line that is not ``name@version``.
    """
    required: list[ArtifactIdentity] = []
    for number, line in enumerate(Path(path).read_text(encoding="utf-8").splitlines(), 1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        try:
            required.append(ArtifactIdentity.parse(line))
        except ValueError as exc:
            raise ValueError(f"{path}:{number}: {exc}") from exc
    return required
