"""Shared test fixtures for Airlift."""

from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from airlift.core.auth import TokenResolver
from airlift.core.cache import CacheService
from airlift.core.engine import PublishEngine
from airlift.core.oracle import ExistenceOracle
from airlift.core.publisher import AuthenticationError, PublishPrimitiveError
from airlift.models.artifacts import ArtifactHandle, ArtifactIdentity
from airlift.models.config import EngineConfig

REGISTRY_URL = "http://registry.test"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRegistry:
    """In-memory registry served through ``httpx.MockTransport``.

    ``packages`` maps name -> versions.  ``scripted`` maps a request path
    to a list of responses (``httpx.Response`` or an exception) consumed
    one per request before falling back to the package data.
    """

    def __init__(self) -> None:
        self.packages: dict[str, set[str]] = {}
        self.scripted: dict[str, list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, name: str, *versions: str) -> None:
        self.packages.setdefault(name, set()).update(versions)

    def script(self, path: str, *responses: Any) -> None:
        self.scripted.setdefault(path, []).extend(responses)

    def paths(self) -> list[str]:
        return [r.url.raw_path.decode() for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode()
        queue = self.scripted.get(path)
        if queue:
            response = queue.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        name = httpx.URL(path).path.lstrip("/")
        if name in self.packages:
            return httpx.Response(
                200,
                json={
                    "name": name,
                    "versions": {v: {"version": v} for v in sorted(self.packages[name])},
                },
            )
        return httpx.Response(404, json={"error": "not_found"})


class FakePrimitive:
    """Scripted publish primitive.

    ``script[key]`` is a list of results consumed per call: ``None`` for
    success, a string for a failure message.  Unscripted calls succeed.
    Successful publishes are recorded into ``registry`` when one is given.
    ``verify_auth`` answers ``user`` unless ``auth_failure`` is set.
    """

    def __init__(self, registry: FakeRegistry | None = None) -> None:
        self.registry = registry
        self.script: dict[str, list[str | None]] = {}
        self.calls: list[dict[str, Any]] = []
        self.user = "airlift-test"
        self.auth_failure: str | None = None
        self.auth_checks: list[str] = []

    def fail(self, key: str, *messages: str | None) -> None:
        self.script.setdefault(key, []).extend(messages)

    async def publish(self, content_path: Path, registry_url: str, *, tag: str, timeout: float) -> None:
        key = content_path.name.removesuffix(".tgz").replace("__", "/")
        self.calls.append(
            {"key": key, "registry_url": registry_url, "tag": tag, "timeout": timeout}
        )
        queue = self.script.get(key)
        message = queue.pop(0) if queue else None
        if message is not None:
            raise PublishPrimitiveError(message)
        if self.registry is not None:
            name, _, version = key.rpartition("@")
            self.registry.add(name, version)

    async def verify_auth(self, registry_url: str, *, timeout: float) -> str:
        self.auth_checks.append(registry_url)
        if self.auth_failure is not None:
            raise AuthenticationError(registry_url, self.auth_failure)
        return self.user

    def tags_for(self, key: str) -> list[str]:
        return [c["tag"] for c in self.calls if c["key"] == key]


class RecordingSleep:
    """Async stand-in for ``asyncio.sleep`` that only records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry_url() -> str:
    return REGISTRY_URL


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def client(registry: FakeRegistry) -> httpx.AsyncClient:
    """Async client whose transport is the fake registry."""
    return httpx.AsyncClient(transport=httpx.MockTransport(registry.handler))


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def primitive(registry: FakeRegistry) -> FakePrimitive:
    return FakePrimitive(registry)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def caches(config: EngineConfig) -> CacheService:
    return CacheService(config.cache)


@pytest.fixture
def tokens(caches: CacheService, tmp_path: Path) -> TokenResolver:
    """Token resolver reading an empty, test-local .npmrc."""
    return TokenResolver(caches.auth, npmrc_path=tmp_path / ".npmrc")


@pytest.fixture
def oracle(
    client: httpx.AsyncClient,
    caches: CacheService,
    tokens: TokenResolver,
    config: EngineConfig,
    sleep: RecordingSleep,
) -> ExistenceOracle:
    return ExistenceOracle(client, caches, tokens, config, sleep=sleep)


@pytest.fixture
def make_engine(
    client: httpx.AsyncClient,
    primitive: FakePrimitive,
    caches: CacheService,
    tokens: TokenResolver,
    sleep: RecordingSleep,
) -> Callable[..., PublishEngine]:
    """Factory fixture: build a PublishEngine wired to the fakes."""

    def _factory(config: EngineConfig | None = None) -> PublishEngine:
        return PublishEngine(
            config,
            client=client,
            primitive=primitive,
            caches=caches,
            tokens=tokens,
            sleep=sleep,
        )

    return _factory


@pytest.fixture
def make_artifact(tmp_path: Path) -> Callable[..., ArtifactHandle]:
    """Factory fixture: an ArtifactHandle whose path name is ``name@version``.

    The file itself is not created; the fake primitive only reads the name.
    """

    def _factory(name: str, version: str, size_bytes: int = 0) -> ArtifactHandle:
        identity = ArtifactIdentity(name=name, version=version)
        safe = identity.key.replace("/", "__")
        return ArtifactHandle(identity=identity, path=tmp_path / safe, size_bytes=size_bytes)

    return _factory


@pytest.fixture
def make_tarball() -> Callable[..., Path]:
    """Factory fixture: write a minimal npm tarball named ``name@version.tgz``."""

    def _factory(directory: Path, name: str, version: str) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name.replace('/', '__')}@{version}.tgz"
        data = json.dumps({"name": name, "version": version}).encode()
        with tarfile.open(path, "w:gz") as archive:
            info = tarfile.TarInfo("package/package.json")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
        return path

    return _factory
