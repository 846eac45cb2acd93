"""Provider client capability and its boto3 adapter.

The rest of the pipeline talks to the cloud through exactly one call,
``await client.request(service, method, params, stage=..., region=...)``,
and switches on :class:`ErrorKind` when something goes wrong.  Turning
SDK exceptions into an ``ErrorKind`` happens only in
:func:`classify_client_error`; no other module inspects error text.

Throttling is handled here too: a ``THROTTLED`` error sleeps a fixed
backoff and re-issues the identical call, so the orchestrator never
sees it as a new logical operation.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class ErrorKind(str, Enum):
    """Structured classification of provider failures."""

    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    THROTTLED = "throttled"
    OTHER = "other"


class ProviderError(RuntimeError):
    """A provider call failed; ``kind`` says how."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        service: str = "",
        method: str = "",
        code: str = "",
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.service = service
        self.method = method
        self.code = code
        self.status_code = status_code
        super().__init__(message)


_NOT_FOUND_CODES = frozenset({
    "404",
    "NoSuchKey",
    "NoSuchBucket",
    "NotFound",
    "ResourceNotFoundException",
    "StackNotFoundException",
})
_ACCESS_DENIED_CODES = frozenset({
    "403",
    "AccessDenied",
    "AccessDeniedException",
    "Forbidden",
    "UnauthorizedOperation",
    "InvalidClientTokenId",
})
_THROTTLED_CODES = frozenset({
    "429",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "SlowDown",
})


def classify_client_error(exc: ClientError, service: str = "", method: str = "") -> ProviderError:
    """Translate a botocore ``ClientError`` into a :class:`ProviderError`.

    CloudFormation reports a missing stack as a generic ``ValidationError``
    whose message ends in "does not exist"; that is the only place a
    message is inspected.
    """
    error = exc.response.get("Error", {})
    code = str(error.get("Code", ""))
    message = str(error.get("Message", "")) or str(exc)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if status == 429 or code in _THROTTLED_CODES:
        kind = ErrorKind.THROTTLED
    elif code in _NOT_FOUND_CODES or (
        code == "ValidationError" and message.rstrip(".").endswith("does not exist")
    ):
        kind = ErrorKind.NOT_FOUND
    elif code in _ACCESS_DENIED_CODES or status == 403:
        kind = ErrorKind.ACCESS_DENIED
    elif status == 404:
        kind = ErrorKind.NOT_FOUND
    else:
        kind = ErrorKind.OTHER
    return ProviderError(
        kind, message, service=service, method=method, code=code, status_code=status
    )


def _snake_case(method: str) -> str:
    """``describeStacks`` -> ``describe_stacks``; snake_case passes through."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", method).lower()


class ProviderClient(abc.ABC):
    """Capability every pipeline component uses to reach the provider.

    Parameters
    ----------
    backoff_seconds:
        Fixed sleep before re-issuing a throttled call.
    max_throttle_retries:
        ``None`` retries indefinitely; an integer caps the retries and
        then raises the last throttling error.
    sleep:
        Awaitable sleep, injectable so tests do not wait.
    """

    def __init__(
        self,
        *,
        backoff_seconds: float = 5.0,
        max_throttle_retries: int | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self.backoff_seconds = backoff_seconds
        self.max_throttle_retries = max_throttle_retries
        self._sleep = sleep or asyncio.sleep

    async def request(
        self,
        service: str,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        stage: str | None = None,
        region: str | None = None,
    ) -> dict[str, Any]:
        retries = 0
        body = (params or {}).get("Body")
        start = body.tell() if hasattr(body, "seek") and hasattr(body, "tell") else None
        while True:
            if start is not None and retries:
                # a throttled attempt may already have consumed the stream
                body.seek(start)
            try:
                return await self.send(
                    service, method, dict(params or {}), stage=stage, region=region
                )
            except ProviderError as exc:
                if exc.kind is not ErrorKind.THROTTLED:
                    raise
                if self.max_throttle_retries is not None and retries >= self.max_throttle_retries:
                    raise
                retries += 1
                logger.warning(
                    "'Too many requests' received for %s.%s, sleeping %.1f seconds",
                    service,
                    method,
                    self.backoff_seconds,
                )
                await self._sleep(self.backoff_seconds)

    @abc.abstractmethod
    async def send(
        self,
        service: str,
        method: str,
        params: dict[str, Any],
        *,
        stage: str | None,
        region: str | None,
    ) -> dict[str, Any]:
        """Issue one call; raise :class:`ProviderError` on failure."""
        ...


class Boto3ProviderClient(ProviderClient):
    """boto3-backed provider client.

    SDK calls are blocking, so each one runs in a worker thread through
    ``asyncio.to_thread`` and the event loop stays cooperative.  Clients
    are cached per (service, region).
    """

    def __init__(
        self,
        *,
        profile: str | None = None,
        default_region: str | None = None,
        session: boto3.session.Session | None = None,
        backoff_seconds: float = 5.0,
        max_throttle_retries: int | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        super().__init__(
            backoff_seconds=backoff_seconds,
            max_throttle_retries=max_throttle_retries,
            sleep=sleep,
        )
        self._session = session or boto3.session.Session(profile_name=profile)
        self._default_region = default_region
        self._clients: dict[tuple[str, str | None], Any] = {}

    def client_for(self, service: str, region: str | None) -> Any:
        key = (service.lower(), region or self._default_region)
        if key not in self._clients:
            self._clients[key] = self._session.client(key[0], region_name=key[1])
        return self._clients[key]

    async def send(
        self,
        service: str,
        method: str,
        params: dict[str, Any],
        *,
        stage: str | None,
        region: str | None,
    ) -> dict[str, Any]:
        client = self.client_for(service, region)
        call = getattr(client, _snake_case(method))
        logger.debug("%s.%s (stage=%s region=%s)", service, method, stage, region)
        try:
            return await asyncio.to_thread(call, **params)
        except ClientError as exc:
            raise classify_client_error(exc, service, method) from exc
        except NoCredentialsError as exc:
            raise ProviderError(
                ErrorKind.OTHER,
                "AWS provider credentials not found. Configure a profile or "
                "export AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY.",
                service=service,
                method=method,
            ) from exc
