"""Shared HTTP client construction and registry URL helpers."""

from __future__ import annotations

from urllib.parse import quote, urlsplit

import httpx

from airlift.core.errors import AirliftError
from airlift.models.config import EngineConfig


class InvalidRegistryUrlError(AirliftError):
    """Raised when a registry URL is not an absolute http(s) URL."""


def normalize_registry_url(registry_url: str) -> str:
    """Validate ``registry_url`` and strip any trailing slash.

    Raises
    ------
    InvalidRegistryUrlError
        If the URL has no host or a scheme other than http/https.
    """
    parts = urlsplit(registry_url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidRegistryUrlError(f"Invalid registry URL: {registry_url!r}")
    return registry_url.strip().rstrip("/")


def encode_package_name(name: str) -> str:
    """URL-encode a package name, keeping the leading ``@`` of a scope."""
    if name.startswith("@"):
        return "@" + quote(name[1:], safe="")
    return quote(name, safe="")


def package_url(registry_url: str, name: str) -> str:
    return f"{registry_url.rstrip('/')}/{encode_package_name(name)}"


def auth_headers(token: str | None) -> dict[str, str]:
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def build_client(config: EngineConfig | None = None) -> httpx.AsyncClient:
    """Create the async client shared by the oracle and the state differ."""
    config = config or EngineConfig()
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=config.max_redirects,
        timeout=config.timeouts.http_request,
        headers={"User-Agent": config.user_agent, "Accept": "application/json"},
    )
