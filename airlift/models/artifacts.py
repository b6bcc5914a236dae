"""Artifact identity and staged-handle models (immutable)."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class ArtifactIdentity(BaseModel):
    """A named, versioned artifact.

    Equality is exact and case-sensitive.  ``name`` may carry a scope
    prefix (``@scope/name``).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    @property
    def key(self) -> str:
        """Cache and map key: ``name@version``."""
        return f"{self.name}@{self.version}"

    @property
    def scope(self) -> str | None:
        """The ``@scope`` prefix of a scoped name, or ``None``."""
        if self.name.startswith("@") and "/" in self.name:
            return self.name.split("/", 1)[0]
        return None

    @classmethod
    def parse(cls, spec: str) -> ArtifactIdentity:
        """Parse ``name@version``, splitting at the last ``@``.

        Raises
        ------
        ValueError
            If either side of the separator is empty.
        """
        spec = spec.strip()
        name, sep, version = spec.rpartition("@")
        if not sep or not name or not version or name == "@":
            raise ValueError(f"Expected 'name@version', got {spec!r}")
        return cls(name=name, version=version)

    def __str__(self) -> str:
        return self.key


class ArtifactHandle(BaseModel):
    """An identity plus the staged tarball it was read from.

    Owned by the caller; the engine only reads it.
    """

    model_config = ConfigDict(frozen=True)

    identity: ArtifactIdentity
    path: Path
    size_bytes: int = 0

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)
