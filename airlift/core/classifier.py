"""Publish error classification.

The publish primitive only reports a human-readable message, so its text
is the sole signal.  Every pattern lives in ``CLASSIFICATION_TABLE``; rows
are checked in order and the first kind with a matching pattern wins.
Matching is case-insensitive, and bare status numbers only match as whole
words next to their reason phrase or ``E`` code, so a package name or a
duration that happens to contain ``409`` does not count.
"""

from __future__ import annotations

import re
from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of publish failure causes."""

    TRANSIENT = "transient"
    AUTH = "auth"
    ALREADY_EXISTS = "already_exists"
    VERSION_ORDERING = "version_ordering"
    PRERELEASE_TAG_REQUIRED = "prerelease_tag_required"
    UNKNOWN = "unknown"


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


# Order matters: "you must specify a tag" appears in both tag messages.
# Network error codes come before the registry answers because they are
# reported by npm itself and never appear inside a package name.
CLASSIFICATION_TABLE: tuple[tuple[ErrorKind, tuple[re.Pattern[str], ...]], ...] = (
    (
        ErrorKind.PRERELEASE_TAG_REQUIRED,
        _patterns(r"when publishing a prerelease version"),
    ),
    (
        ErrorKind.VERSION_ORDERING,
        _patterns(
            r'cannot implicitly apply the "latest" tag',
            r"is higher than the new version",
            r"you must specify a tag",
        ),
    ),
    (
        ErrorKind.TRANSIENT,
        _patterns(
            r"\bE(?:SOCKET)?TIMEDOUT\b",
            r"\bECONNRESET\b",
            r"\bECONNREFUSED\b",
            r"\bENOTFOUND\b",
            r"\bEAI_AGAIN\b",
            r"\bEHOSTUNREACH\b",
            r"\bENETUNREACH\b",
            r"\bEPIPE\b",
            r"\bsocket hang up\b",
        ),
    ),
    (
        ErrorKind.ALREADY_EXISTS,
        _patterns(
            r"\bEPUBLISHCONFLICT\b",
            r"\bE409\b",
            r"\b409 Conflict\b",
            r"\bcannot publish over\b",
            r"\bpreviously published\b",
            r"\balready exists\b",
            r"\balready present\b",
        ),
    ),
    (
        ErrorKind.AUTH,
        _patterns(
            r"\bE40[13]\b",
            r"\b401 Unauthorized\b",
            r"\b403 Forbidden\b",
            r"\bunable to authenticate\b",
            r"\bauthentication required\b",
            r"\bneed auth\b",
        ),
    ),
    (
        ErrorKind.TRANSIENT,
        _patterns(
            r"\btimed out\b",
            r"\btimeout\b",
            r"\bE50[234]\b",
            r"\b502 Bad Gateway\b",
            r"\b503 Service Unavailable\b",
            r"\b504 Gateway\b",
        ),
    ),
)

# Read-after-write lag: the registry accepted a publish but its read
# path has not indexed it yet.
NOT_FOUND_PATTERN = re.compile(r"\bE?404\b")


def classify_publish_error(message: str) -> ErrorKind:
    """Map a publish primitive error message to an :class:`ErrorKind`."""
    for kind, patterns in CLASSIFICATION_TABLE:
        if any(pattern.search(message) for pattern in patterns):
            return kind
    return ErrorKind.UNKNOWN


def is_not_found_ambiguity(message: str | None) -> bool:
    """True if a failure message might be indexing lag rather than a real failure."""
    return message is not None and NOT_FOUND_PATTERN.search(message) is not None


def first_line(message: str) -> str:
    """First non-empty line of a possibly multi-line tool output."""
    for line in message.splitlines():
        if line.strip():
            return line.strip()
    return message.strip()
