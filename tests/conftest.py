"""Shared test fixtures for Stackforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from stackforge.config import DeployConfig
from stackforge.core.naming import NamingResolver
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError
from stackforge.models.service import ServiceSpec

Response = dict[str, Any] | Exception | Callable[[dict[str, Any]], Any]


class FakeProviderClient(ProviderClient):
    """Scripted provider client that records every call.

    Scripted responses are consumed in order per (service, method); the
    last one repeats once the script runs out.  S3 object calls without
    a script are served by a small in-memory object store.
    """

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("sleep", _no_sleep)
        super().__init__(**kwargs)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.objects: dict[str, dict[str, Any]] = {}
        self._scripts: dict[tuple[str, str], list[Response]] = {}

    def script(self, service: str, method: str, *responses: Response) -> None:
        self._scripts[(service, method)] = list(responses)

    def calls_to(self, service: str, method: str) -> list[dict[str, Any]]:
        return [params for s, m, params in self.calls if (s, m) == (service, method)]

    @property
    def methods(self) -> list[str]:
        return [f"{service}.{method}" for service, method, _ in self.calls]

    async def send(self, service, method, params, *, stage, region):
        self.calls.append((service, method, params))
        script = self._scripts.get((service, method))
        if script:
            response = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(response, Exception):
                raise response
            if callable(response):
                return response(params)
            return response
        if service == "S3":
            return self._object_store(method, params)
        return {}

    def _object_store(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == "putObject":
            body = params["Body"]
            data = body.read() if hasattr(body, "read") else body
            self.objects[params["Key"]] = {
                "Body": data,
                "Metadata": dict(params.get("Metadata") or {}),
                "ContentType": params.get("ContentType"),
            }
            return {"ETag": '"etag"'}
        if method == "headObject":
            stored = self.objects.get(params["Key"])
            if stored is None:
                raise ProviderError(ErrorKind.NOT_FOUND, "Not Found", code="404")
            return {"Metadata": stored["Metadata"]}
        if method == "listObjectsV2":
            prefix = params.get("Prefix", "")
            keys = sorted(key for key in self.objects if key.startswith(prefix))
            return {"Contents": [{"Key": key} for key in keys], "IsTruncated": False}
        if method == "deleteObjects":
            for item in params["Delete"]["Objects"]:
                self.objects.pop(item["Key"], None)
            return {}
        return {}


async def _no_sleep(seconds: float) -> None:
    return None


def not_found(message: str = "Stack with id first-service-dev does not exist") -> ProviderError:
    return ProviderError(ErrorKind.NOT_FOUND, message, code="ValidationError")


def stack_response(status: str | None, reason: str | None = None, **extra: Any) -> dict[str, Any]:
    stack: dict[str, Any] = {"StackId": "arn:stack/first-service-dev", "StackName": "first-service-dev"}
    if status is not None:
        stack["StackStatus"] = status
    if reason is not None:
        stack["StackStatusReason"] = reason
    stack.update(extra)
    return {"Stacks": [stack]}


@pytest.fixture
def fake_client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def service_dir(tmp_path: Path) -> Path:
    """A small service tree with handlers and files that must be excluded."""
    root = tmp_path / "service"
    (root / "lib").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "handler.py").write_text("def first(event, context):\n    return 1\n")
    (root / "second.py").write_text("def handle(event, context):\n    return 2\n")
    (root / "lib" / "util.py").write_text("VALUE = 42\n")
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "serverless.yml").write_text("service: first-service\n")
    return root


@pytest.fixture
def make_service(service_dir: Path) -> Callable[..., ServiceSpec]:
    """Factory fixture: build a ServiceSpec rooted at ``service_dir``."""

    def _factory(**overrides: Any) -> ServiceSpec:
        data: dict[str, Any] = {
            "service": "first-service",
            "provider": {"name": "aws", "stage": "dev", "region": "us-east-1"},
            "functions": {"first": {"handler": "handler.first"}},
            "servicePath": str(service_dir),
        }
        data.update(overrides)
        return ServiceSpec.model_validate(data)

    return _factory


@pytest.fixture
def service(make_service: Callable[..., ServiceSpec]) -> ServiceSpec:
    return make_service()


@pytest.fixture
def naming() -> NamingResolver:
    return NamingResolver("first-service", "dev", "us-east-1")


@pytest.fixture
def settings() -> DeployConfig:
    return DeployConfig(poll_interval_ms=0, upload_concurrency=3, artifact_keep_count=4)


@pytest.fixture
def timestamp_ms() -> int:
    return 1_700_000_000_000


@pytest.fixture
def make_client() -> Callable[..., FakeProviderClient]:
    """Factory fixture: a FakeProviderClient with custom retry settings."""
    return FakeProviderClient


@pytest.fixture
def stack_reply() -> Callable[..., dict[str, Any]]:
    """Factory fixture: a DescribeStacks response with the given status."""
    return stack_response


@pytest.fixture
def missing_stack() -> Callable[..., ProviderError]:
    """Factory fixture: the NOT_FOUND error a describe of a missing stack raises."""
    return not_found
