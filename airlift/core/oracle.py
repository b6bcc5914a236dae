"""Existence oracle: is ``name@version`` already at a registry?

Answers are tri-state.  A certain answer (EXISTS or NOT_EXISTS) comes only
from a definitive registry response and is cached; anything else is
UNCERTAIN and never cached, so a flaky check cannot poison later ones.

Response classification
-----------------------
- 200, metadata lists the version    -> EXISTS (certain)
- 200, version absent                -> NOT_EXISTS (certain)
- 404                                -> NOT_EXISTS (certain)
- 401 / 403                          -> UNCERTAIN, not retried
- 200 with an unparseable body       -> UNCERTAIN, not retried
- other status, transport error,
  timeout                            -> retried with backoff, then UNCERTAIN
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from airlift.core.auth import TokenResolver
from airlift.core.backoff import wait_backoff
from airlift.core.cache import CacheService
from airlift.core.http import auth_headers, package_url
from airlift.models.artifacts import ArtifactIdentity
from airlift.models.config import CheckOptions, EngineConfig
from airlift.models.existence import ExistenceResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class TransientCheckError(Exception):
    """A check failure worth retrying (5xx, 429, network, timeout)."""


def versions_from_metadata(body: Any) -> dict[str, Any]:
    """Extract the ``versions`` map from a packument.

    Raises
    ------
    ValueError
        If the body is not a JSON object.
    """
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    versions = body.get("versions") or {}
    if not isinstance(versions, dict):
        raise ValueError("'versions' is not an object")
    return versions


class ExistenceOracle:
    """Checks artifact presence at a registry with retry and caching.

    Parameters
    ----------
    client:
        Shared async HTTP client.
    caches:
        The engine's cache service; results go into ``caches.existence``.
    tokens:
        Resolver for bearer tokens.
    config:
        Engine configuration (retry policy and request timeouts).
    sleep:
        Awaitable used between attempts; tests inject a recorder.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        caches: CacheService,
        tokens: TokenResolver,
        config: EngineConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._caches = caches
        self._tokens = tokens
        self.config = config or EngineConfig()
        self._sleep = sleep

    async def check(
        self,
        identity: ArtifactIdentity,
        registry_url: str,
        options: CheckOptions | None = None,
    ) -> ExistenceResult:
        """Determine whether ``identity`` exists at ``registry_url``."""
        options = options or CheckOptions()
        cache_key = CacheService.existence_key(registry_url, identity.key)

        if options.use_cache:
            cached = self._caches.existence.get(cache_key)
            if cached is not None:
                return cached

        attempts = options.max_retries or self.config.retry.check_attempts
        token = self._tokens.token_for(registry_url)
        url = package_url(registry_url, identity.name)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_backoff(self.config.retry),
            retry=retry_if_exception_type(TransientCheckError),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._fetch(
                        url, identity, token, attempt.retry_state.attempt_number
                    )
        except TransientCheckError as exc:
            logger.warning(
                "Existence check for %s gave up after %d attempts: %s",
                identity.key,
                attempts,
                exc,
            )
            return ExistenceResult.uncertain(str(exc))

        if result.certain:
            self._caches.existence.set(cache_key, result)
        return result

    async def _fetch(
        self,
        url: str,
        identity: ArtifactIdentity,
        token: str | None,
        attempt_number: int,
    ) -> ExistenceResult:
        timeouts = self.config.timeouts
        timeout = timeouts.http_request if attempt_number == 1 else timeouts.http_request_retry
        logger.debug("Checking %s (attempt %d, timeout %.0fs)", identity.key, attempt_number, timeout)

        try:
            response = await self._client.get(url, headers=auth_headers(token), timeout=timeout)
        except httpx.TooManyRedirects as exc:
            return ExistenceResult.uncertain(f"too many redirects: {exc}")
        except httpx.TimeoutException as exc:
            raise TransientCheckError(f"timeout: {str(exc) or type(exc).__name__}") from exc
        except httpx.RequestError as exc:
            raise TransientCheckError(f"{type(exc).__name__}: {exc}") from exc

        status = response.status_code
        if status == 404:
            return ExistenceResult.not_exists()
        if status in (401, 403):
            return ExistenceResult.uncertain(f"HTTP {status}: authentication required")
        if status != 200:
            raise TransientCheckError(f"HTTP {status}")

        try:
            versions = versions_from_metadata(response.json())
        except ValueError as exc:
            return ExistenceResult.uncertain(f"malformed metadata for {identity.name}: {exc}")

        if identity.version in versions:
            return ExistenceResult.exists()
        return ExistenceResult.not_exists()
