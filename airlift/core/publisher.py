"""Publish executor: one artifact, one terminal outcome.

Defines the ``PublishPrimitive`` Protocol the executor uploads through,
the default npm-backed primitive, and ``PublishExecutor`` which wraps a
primitive with skip decisions, timeout and tag selection, failure
classification, retries and the fallback-tag sub-step.
Primitives also answer the pre-batch ``verify_auth`` check.

Failure handling
----------------
- VERSION_ORDERING / PRERELEASE_TAG_REQUIRED: one immediate retry under a
  fallback tag; not counted as an extra attempt.
- ALREADY_EXISTS: SKIPPED, the expected result of a pre-check/publish race.
- TRANSIENT: backoff and retry while attempts remain.
- anything else: ERROR with the first line of the message.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from airlift.core.backoff import wait_backoff
from airlift.core.classifier import ErrorKind, classify_publish_error, first_line
from airlift.core.errors import AirliftError
from airlift.core.oracle import ExistenceOracle, Sleep
from airlift.core.tags import fallback_tag, publish_timeout, select_tag
from airlift.models.artifacts import ArtifactHandle
from airlift.models.config import EngineConfig, PublishOptions
from airlift.models.existence import ExistenceResult
from airlift.models.outcomes import PublishOutcome, PublishStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Publish primitive
# ---------------------------------------------------------------------------


class PublishPrimitiveError(AirliftError):
    """An upload attempt failed; ``message`` is the tool's own text."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(AirliftError):
    """The registry did not accept our credentials; the whole batch stops."""

    def __init__(self, registry_url: str, reason: str | None = None) -> None:
        message = (
            f"Not authenticated to registry {registry_url}.\n"
            f"Please run: npm login --registry {registry_url}"
        )
        if reason:
            message = f"{message}\n({reason})"
        super().__init__(message)
        self.registry_url = registry_url


@runtime_checkable
class PublishPrimitive(Protocol):
    """Protocol for upload backends.

    Implementations upload one tarball and return ``None`` on success, or
    raise :class:`PublishPrimitiveError` carrying the failure text.
    ``verify_auth`` returns the authenticated user name or raises
    :class:`AuthenticationError`.
    """

    async def publish(
        self,
        content_path: Path,
        registry_url: str,
        *,
        tag: str,
        timeout: float,
    ) -> None:
        ...

    async def verify_auth(self, registry_url: str, *, timeout: float) -> str:
        ...


# Offline registries cannot verify provenance attestations.
DEFAULT_PUBLISH_ARGS: tuple[str, ...] = ("--provenance=false",)


async def _run_process(args: Sequence[str], timeout: float) -> tuple[int, bytes, bytes]:
    """Run ``args`` to completion, killing the process if ``timeout`` elapses.

    Raises ``OSError`` if the command cannot be started and
    ``asyncio.TimeoutError`` on timeout.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return process.returncode, stdout, stderr


class NpmPublishPrimitive:
    """Uploads with ``npm publish``, killing the process on timeout.

    Parameters
    ----------
    npm_command:
        Command used to invoke npm; may include leading arguments.
    extra_args:
        Appended to every ``npm publish`` invocation.  Defaults to
        ``DEFAULT_PUBLISH_ARGS``.
    """

    def __init__(
        self, npm_command: str = "npm", extra_args: Sequence[str] = DEFAULT_PUBLISH_ARGS
    ) -> None:
        self.npm_command = npm_command
        self.extra_args = tuple(extra_args)

    def command(self, content_path: Path, registry_url: str, tag: str) -> list[str]:
        return [
            *shlex.split(self.npm_command),
            "publish",
            str(content_path),
            "--registry",
            registry_url,
            "--tag",
            tag,
            *self.extra_args,
        ]

    async def publish(
        self,
        content_path: Path,
        registry_url: str,
        *,
        tag: str,
        timeout: float,
    ) -> None:
        args = self.command(content_path, registry_url, tag)
        try:
            returncode, stdout, stderr = await _run_process(args, timeout)
        except OSError as exc:
            raise PublishPrimitiveError(f"could not start {args[0]}: {exc}") from exc
        except asyncio.TimeoutError:
            # The message is classified, so it must not carry the package
            # name or the timeout value.
            logger.debug("npm publish of %s exceeded %.0fs", content_path.name, timeout)
            raise PublishPrimitiveError("ETIMEDOUT: npm publish timed out") from None

        if returncode != 0:
            output = "\n".join(
                part.decode("utf-8", errors="replace").strip()
                for part in (stderr, stdout)
                if part and part.strip()
            )
            raise PublishPrimitiveError(output or f"npm publish exited with code {returncode}")

    async def verify_auth(self, registry_url: str, *, timeout: float) -> str:
        """Return the user ``npm whoami`` reports for ``registry_url``.

        Raises
        ------
        AuthenticationError
            If npm cannot be started, times out, or reports no user.
        """
        args = [*shlex.split(self.npm_command), "whoami", "--registry", registry_url]
        try:
            returncode, stdout, stderr = await _run_process(args, timeout)
        except OSError as exc:
            raise AuthenticationError(registry_url, f"could not start {args[0]}: {exc}") from exc
        except asyncio.TimeoutError:
            raise AuthenticationError(registry_url, "npm whoami timed out") from None

        username = stdout.decode("utf-8", errors="replace").strip()
        if returncode != 0 or not username:
            raise AuthenticationError(
                registry_url, first_line(stderr.decode("utf-8", errors="replace")) or None
            )
        return username


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


def _is_transient(exc: BaseException) -> bool:
    return (
        isinstance(exc, PublishPrimitiveError)
        and classify_publish_error(exc.message) == ErrorKind.TRANSIENT
    )


class PublishExecutor:
    """Publishes single artifacts through a :class:`PublishPrimitive`.

    Parameters
    ----------
    primitive:
        Upload backend.
    oracle:
        Used for the skip decision when the caller has not already
        pre-checked the artifact.  May be ``None`` to disable self-checks.
    config:
        Engine configuration.
    sleep:
        Awaitable used for backoff between attempts.
    """

    def __init__(
        self,
        primitive: PublishPrimitive,
        oracle: ExistenceOracle | None = None,
        config: EngineConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._primitive = primitive
        self._oracle = oracle
        self.config = config or EngineConfig()
        self._sleep = sleep

    async def publish(
        self,
        artifact: ArtifactHandle,
        registry_url: str,
        options: PublishOptions | None = None,
        existence: ExistenceResult | None = None,
    ) -> PublishOutcome:
        """Publish ``artifact`` and return its terminal outcome."""
        options = options or PublishOptions()
        identity = artifact.identity
        tag = select_tag(identity.version, self.config.tags)

        if existence is not None and existence.certainly_exists:
            return self._outcome(artifact, PublishStatus.SKIPPED, note="Already exists in registry")

        if options.dry_run:
            return self._outcome(
                artifact,
                PublishStatus.SUCCESS,
                tag_used=tag,
                dry_run=True,
                note=f"dry run: would publish with tag '{tag}'",
            )

        if existence is None and options.skip_existing and self._oracle is not None:
            existence = await self._oracle.check(identity, registry_url)
            if existence.certainly_exists:
                return self._outcome(
                    artifact, PublishStatus.SKIPPED, note="Already exists in registry"
                )

        timeout = publish_timeout(artifact, self.config.timeouts)
        max_attempts = options.max_retries or self.config.retry.max_attempts
        attempt_number = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_backoff(self.config.retry),
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            reraise=True,
            before_sleep=lambda state: logger.info(
                "Retrying %s after transient failure (attempt %d/%d)",
                identity.key,
                state.attempt_number,
                max_attempts,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    logger.debug(
                        "Publishing %s with tag %s (attempt %d, timeout %.0fs)",
                        identity.key,
                        tag,
                        attempt_number,
                        timeout,
                    )
                    await self._primitive.publish(
                        artifact.path, registry_url, tag=tag, timeout=timeout
                    )
        except PublishPrimitiveError as exc:
            return await self._handle_failure(
                artifact, registry_url, exc, tag, timeout, attempt_number
            )

        logger.info("Published %s (tag %s)", identity.key, tag)
        return self._outcome(
            artifact, PublishStatus.SUCCESS, attempt_count=attempt_number, tag_used=tag
        )

    async def _handle_failure(
        self,
        artifact: ArtifactHandle,
        registry_url: str,
        exc: PublishPrimitiveError,
        tag: str,
        timeout: float,
        attempt_number: int,
    ) -> PublishOutcome:
        kind = classify_publish_error(exc.message)
        summary = first_line(exc.message)

        if kind in (ErrorKind.VERSION_ORDERING, ErrorKind.PRERELEASE_TAG_REQUIRED):
            return await self._publish_with_fallback(
                artifact, registry_url, tag, timeout, attempt_number
            )

        if kind == ErrorKind.ALREADY_EXISTS:
            logger.info("Skipping %s: %s", artifact.identity.key, summary)
            return self._outcome(
                artifact,
                PublishStatus.SKIPPED,
                attempt_count=attempt_number,
                tag_used=tag,
                note=f"Already exists ({summary})",
            )

        logger.warning(
            "Publishing %s failed (%s) after %d attempt(s): %s",
            artifact.identity.key,
            kind.value,
            attempt_number,
            summary,
        )
        return self._outcome(
            artifact,
            PublishStatus.ERROR,
            attempt_count=attempt_number,
            tag_used=tag,
            error_detail=summary,
        )

    async def _publish_with_fallback(
        self,
        artifact: ArtifactHandle,
        registry_url: str,
        tag: str,
        timeout: float,
        attempt_number: int,
    ) -> PublishOutcome:
        alt_tag = fallback_tag(artifact.identity.version, self.config.tags)
        logger.info(
            "%s conflicts with a newer '%s'; retrying with tag %s",
            artifact.identity.key,
            tag,
            alt_tag,
        )
        try:
            await self._primitive.publish(artifact.path, registry_url, tag=alt_tag, timeout=timeout)
        except PublishPrimitiveError as exc:
            return self._outcome(
                artifact,
                PublishStatus.ERROR,
                attempt_count=attempt_number,
                tag_used=alt_tag,
                error_detail=first_line(exc.message),
                note=f"fallback tag '{alt_tag}' also failed",
            )
        return self._outcome(
            artifact,
            PublishStatus.SUCCESS,
            attempt_count=attempt_number,
            tag_used=alt_tag,
            note=f"published with fallback tag '{alt_tag}' (a higher version holds '{tag}')",
        )

    @staticmethod
    def _outcome(artifact: ArtifactHandle, status: PublishStatus, **fields) -> PublishOutcome:
        return PublishOutcome(
            status=status,
            identity=artifact.identity,
            label=artifact.identity.key,
            **fields,
        )
