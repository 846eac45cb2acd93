"""Service description models -- the user's declarative input.

Field names are snake_case in Python and camelCase in the service file
(``memorySize``, ``iamRoleStatements`` ...).  Event definitions stay raw
(``{"s3": "photos"}``, ``{"http": "get users"}``) because each event
compiler owns the validation of its own shape.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from stackforge.core.errors import FunctionNotFoundError


class _ServiceModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class VpcConfig(_ServiceModel):
    """Security groups and subnets a function is attached to."""

    security_group_ids: list[str] = []
    subnet_ids: list[str] = []

    @property
    def is_complete(self) -> bool:
        return bool(self.security_group_ids) and bool(self.subnet_ids)


class PackageSpec(_ServiceModel):
    """Packaging rules; function-level values override service-level ones."""

    individually: bool | None = None
    include: list[str] = []
    exclude: list[str] = []
    artifact: str | None = None


class DeploymentBucketSpec(_ServiceModel):
    """A user-supplied deployment bucket plus server-side encryption settings.

    The encryption values are handed to every upload call verbatim.
    ``sseCustomerAlgorithim`` (sic) is accepted for compatibility with
    existing service files.
    """

    name: str
    server_side_encryption: str | None = None
    sse_customer_algorithm: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "sseCustomerAlgorithm", "sseCustomerAlgorithim", "sse_customer_algorithm"
        ),
    )
    sse_customer_key: str | None = None
    sse_customer_key_md5: str | None = Field(default=None, alias="sseCustomerKeyMD5")
    sse_kms_key_id: str | None = Field(default=None, alias="sseKMSKeyId")


class FunctionSpec(_ServiceModel):
    """One function declared under ``functions:``."""

    handler: str | None = None
    name: str | None = None
    description: str | None = None
    runtime: str | None = None
    memory_size: int | None = None
    timeout: int | None = None
    environment: dict[str, str] = {}
    vpc: VpcConfig | None = None
    package: PackageSpec = PackageSpec()
    events: list[dict[str, Any]] = []


class ProviderSpec(_ServiceModel):
    """The ``provider:`` block."""

    name: str = "aws"
    stage: str = "dev"
    region: str = "us-east-1"
    runtime: str = "python3.12"
    memory_size: int = 1024
    timeout: int = 6
    environment: dict[str, str] = {}
    vpc: VpcConfig | None = None
    iam_role_statements: list[dict[str, Any]] = []
    deployment_bucket: DeploymentBucketSpec | None = None
    stack_tags: dict[str, str] = {}

    @field_validator("deployment_bucket", mode="before")
    @classmethod
    def _bucket_shorthand(cls, value: Any) -> Any:
        """``deploymentBucket: my-bucket`` is shorthand for ``{name: my-bucket}``."""
        if isinstance(value, str):
            return {"name": value}
        return value


class ServiceSpec(_ServiceModel):
    """The whole service description, immutable for one deployment."""

    service: str
    provider: ProviderSpec = ProviderSpec()
    functions: dict[str, FunctionSpec] = {}
    package: PackageSpec = PackageSpec()
    resources: dict[str, Any] = {}
    service_path: Path = Path(".")

    def get_function(self, function_key: str) -> FunctionSpec:
        try:
            return self.functions[function_key]
        except KeyError:
            raise FunctionNotFoundError(function_key) from None

    def function_keys(self) -> list[str]:
        return list(self.functions)

    def is_individually_packaged(self, function_key: str) -> bool:
        """Function-level ``individually`` wins over the service-level flag."""
        override = self.get_function(function_key).package.individually
        if override is not None:
            return override
        return bool(self.package.individually)

    @property
    def custom_bucket(self) -> DeploymentBucketSpec | None:
        return self.provider.deployment_bucket
