"""Dist-tag selection and upload timeout computation.

The tag is always passed explicitly to the publish primitive.  An archive's
own ``publishConfig.tag`` would otherwise override the caller's choice.
"""

from __future__ import annotations

import math
import re
from fnmatch import fnmatchcase

from airlift.models.artifacts import ArtifactHandle
from airlift.models.config import TagPolicy, TimeoutPolicy

# major.minor.patch followed by a prerelease identifier
_GENERIC_PRERELEASE = re.compile(r"^v?\d+\.\d+\.\d+-([0-9A-Za-z][0-9A-Za-z.-]*)")
_LEADING_WORD = re.compile(r"^[A-Za-z]+")
_TAG_UNSAFE = re.compile(r"[^A-Za-z0-9-]")

GENERIC_PRERELEASE_TAG = "prerelease"


def detect_prerelease_tag(version: str, policy: TagPolicy | None = None) -> str | None:
    """Return the channel tag for a prerelease version, or ``None``.

    The ordered marker table is consulted first.  Failing that, a
    ``x.y.z-identifier`` version yields the identifier's leading word
    (``1.0.0-insiders.3`` -> ``insiders``), or ``prerelease`` when the
    identifier starts with a digit.
    """
    policy = policy or TagPolicy()
    for pattern in policy.prerelease_patterns:
        if pattern.marker in version:
            return pattern.tag

    match = _GENERIC_PRERELEASE.match(version)
    if match is None:
        return None
    word = _LEADING_WORD.match(match.group(1))
    return word.group(0).lower() if word else GENERIC_PRERELEASE_TAG


def select_tag(version: str, policy: TagPolicy | None = None) -> str:
    """Tag to publish ``version`` under."""
    policy = policy or TagPolicy()
    return detect_prerelease_tag(version, policy) or policy.default_tag


def fallback_tag(version: str, policy: TagPolicy | None = None) -> str:
    """Deterministic tag for an out-of-order publish (``legacy-1-2-3``)."""
    policy = policy or TagPolicy()
    return f"{policy.fallback_prefix}-{_TAG_UNSAFE.sub('-', version)}"


def is_slow_package(name: str, policy: TimeoutPolicy | None = None) -> bool:
    policy = policy or TimeoutPolicy()
    return any(fnmatchcase(name, pattern) for pattern in policy.slow_packages)


def publish_timeout(artifact: ArtifactHandle, policy: TimeoutPolicy | None = None) -> float:
    """Seconds allowed for one publish of ``artifact``.

    Base allowance plus a per-megabyte share, raised to the slow-package
    floor for known heavy names, and never above ``publish_max``.
    """
    policy = policy or TimeoutPolicy()
    timeout = policy.publish_base + math.floor(artifact.size_mb * policy.publish_per_mb)
    if is_slow_package(artifact.identity.name, policy):
        timeout = max(timeout, policy.slow_package_floor)
    return min(timeout, policy.publish_max)
