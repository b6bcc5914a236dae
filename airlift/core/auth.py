"""Per-registry bearer token resolution.

Tokens come from, in order:

1. an explicit token passed to the resolver (``AIRLIFT_AUTH_TOKEN``);
2. the user's ``.npmrc`` (``//host/path/:_authToken=<token>`` lines, with
   ``${VAR}`` references expanded from the environment).

Results, including "no token", are memoized in the auth cache so the file
is read at most once per registry per engine.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from urllib.parse import urlsplit

from airlift.core.cache import BoundedCache

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def default_npmrc_path() -> Path:
    """The user-level npm config file npm itself would read."""
    override = os.environ.get("NPM_CONFIG_USERCONFIG")
    if override:
        return Path(override)
    return Path.home() / ".npmrc"


def npmrc_token_key(registry_url: str) -> str:
    """Build the ``.npmrc`` key npm uses for a registry's auth token."""
    parts = urlsplit(registry_url)
    host_path = f"//{parts.netloc}{parts.path}".rstrip("/")
    return f"{host_path}/:_authToken"


def _expand_env(value: str) -> str:
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)


def read_npmrc_token(npmrc_path: Path, registry_url: str) -> str | None:
    """Return the token configured for ``registry_url`` in an ``.npmrc``."""
    if not npmrc_path.is_file():
        return None
    key = npmrc_token_key(registry_url)
    for line in npmrc_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line.startswith(key):
            continue
        _, _, raw = line.partition("=")
        token = _expand_env(raw.strip())
        if token:
            return token
    return None


class TokenResolver:
    """Resolves and caches bearer tokens per registry URL.

    Parameters
    ----------
    cache:
        The engine's auth-token cache.
    npmrc_path:
        ``.npmrc`` to read.  Defaults to :func:`default_npmrc_path`.
    explicit_token:
        A token applied to every registry, bypassing ``.npmrc``.
    """

    def __init__(
        self,
        cache: BoundedCache[str | None],
        *,
        npmrc_path: Path | None = None,
        explicit_token: str | None = None,
    ) -> None:
        self._cache = cache
        self._npmrc_path = npmrc_path
        self._explicit_token = explicit_token or None

    def token_for(self, registry_url: str) -> str | None:
        if self._explicit_token:
            return self._explicit_token
        if registry_url in self._cache:
            return self._cache.get(registry_url)

        path = self._npmrc_path or default_npmrc_path()
        try:
            token = read_npmrc_token(path, registry_url)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s for auth token: %s", path, exc)
            token = None

        if token:
            logger.debug("Found auth token for %s in %s", registry_url, path)
        self._cache.set(registry_url, token)
        return token
