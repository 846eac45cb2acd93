"""Deterministic logical ids and physical names.

Every compiler and the orchestrator go through :class:`NamingResolver`
so a resource compiled in one phase can be referenced from another
without either side knowing how the other spells its ids.

Logical ids are derived from user-given names by escaping characters
CloudFormation does not accept (``-`` -> ``Dash``, ``_`` -> ``Underscore``
...).  Because two distinct names could still escape to the same id, the
resolver remembers which natural identity claimed each id and rejects a
second, different claimant with :class:`InvalidNameError`.
"""

from __future__ import annotations

import ipaddress
import re
from datetime import datetime, timezone

from stackforge.core.errors import InvalidNameError

STACK_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")
MAX_STACK_NAME_LENGTH = 128
FUNCTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_FUNCTION_NAME_LENGTH = 64

DEPLOYMENT_BUCKET_LOGICAL_ID = "ServerlessDeploymentBucket"
DEPLOYMENT_BUCKET_OUTPUT_ID = "ServerlessDeploymentBucketName"
IAM_ROLE_LOGICAL_ID = "IamRoleLambda"
IAM_POLICY_LOGICAL_ID = "IamPolicyLambda"
REST_API_LOGICAL_ID = "ApiGatewayRestApi"
SERVICE_ENDPOINT_OUTPUT_ID = "ServiceEndpoint"

CORE_TEMPLATE_FILENAME = "cloudformation-template-create-stack.json"
COMPILED_TEMPLATE_FILENAME = "compiled-cloudformation-template.json"
UPDATE_TEMPLATE_FILENAME = "cloudformation-template-update-stack.json"

_ESCAPES = {
    "-": "Dash",
    "_": "Underscore",
    ".": "Period",
    " ": "",
}


def normalize_name(name: str) -> str:
    """Upper-case the first character, leaving the rest untouched."""
    return name[:1].upper() + name[1:]


def normalize_alphanumeric(name: str) -> str:
    """Escape a user-given name into a logical-id-safe fragment."""
    parts = []
    for char in name:
        if char.isascii() and char.isalnum():
            parts.append(char)
        elif char in _ESCAPES:
            parts.append(_ESCAPES[char])
        else:
            parts.append(f"X{ord(char):02X}")
    return normalize_name("".join(parts))


def normalize_path(path: str) -> str:
    """``users/{id}/list`` -> ``UsersIdVarList``."""
    segments = []
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        if segment.startswith("{") and segment.endswith("}"):
            segments.append(normalize_alphanumeric(segment[1:-1]) + "Var")
        else:
            segments.append(normalize_alphanumeric(segment))
    return "".join(segments)


def validate_bucket_name(name: str) -> str | None:
    """Check *name* against the object-store bucket naming rules.

    Returns the first violated rule's message, or ``None`` when valid.
    """
    if not name:
        return "Bucket name must not be empty."
    if len(name) < 3:
        return "Bucket name must be at least 3 characters long."
    if len(name) > 63:
        return "Bucket name cannot be longer than 63 characters."
    if re.search(r"[A-Z]", name):
        return "Bucket name cannot contain uppercase letters."
    if not re.match(r"^[a-z0-9]", name):
        return "Bucket name must start with a letter or number."
    if not re.search(r"[a-z0-9]$", name):
        return "Bucket name must end with a letter or number."
    if re.search(r"[^a-z0-9.-]", name):
        return "Bucket name contains invalid characters."
    if ".." in name:
        return "Bucket name cannot contain two periods in a row."
    try:
        ipaddress.IPv4Address(name)
    except ValueError:
        return None
    return "Bucket name cannot be formatted as an IP address."


def check_stack_name(name: str) -> str:
    """Raise :class:`InvalidNameError` unless *name* is a legal stack name."""
    if not STACK_NAME_PATTERN.match(name) or len(name) > MAX_STACK_NAME_LENGTH:
        raise InvalidNameError(
            f'The stack service name "{name}" is not valid. A service name '
            "should only contain alphanumeric (case sensitive) and hyphens. "
            "It should start with an alphabetic character and shouldn't "
            f"exceed {MAX_STACK_NAME_LENGTH} characters."
        )
    return name


def check_bucket_name(name: str) -> str:
    """Raise :class:`InvalidNameError` unless *name* is a legal bucket name."""
    problem = validate_bucket_name(name)
    if problem:
        raise InvalidNameError(f'Invalid deployment bucket "{name}": {problem}')
    return name


def format_deployment_datetime(timestamp_ms: int) -> str:
    """ISO-8601 UTC rendering of a millisecond timestamp."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{timestamp_ms % 1000:03d}Z"


class NamingResolver:
    """Maps (service, stage, region, kind, user name) to provider identifiers.

    Parameters
    ----------
    service:
        The service name from the service file.
    stage:
        Deployment stage (``dev``, ``prod`` ...).
    region:
        Target region.
    deployment_prefix:
        First segment of the artifact remote layout.
    """

    def __init__(
        self,
        service: str,
        stage: str,
        region: str,
        *,
        deployment_prefix: str = "serverless",
    ) -> None:
        self.service = service
        self.stage = stage
        self.region = region
        self.deployment_prefix = deployment_prefix
        self._claims: dict[str, str] = {}
        self._archives: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Collision tracking
    # ------------------------------------------------------------------

    def claim(self, logical_id: str, identity: str) -> str:
        """Record that *identity* owns *logical_id*.

        Claiming the same id twice for the same identity is a no-op so
        compilers stay idempotent.
        """
        owner = self._claims.setdefault(logical_id, identity)
        if owner != identity:
            raise InvalidNameError(
                f'Logical id "{logical_id}" is produced by both "{owner}" '
                f'and "{identity}"; rename one of them.'
            )
        return logical_id

    def claim_archive(self, filename: str, identity: str) -> str:
        """Record that *identity* is packaged into the archive *filename*."""
        owner = self._archives.setdefault(filename, identity)
        if owner != identity:
            raise InvalidNameError(
                f'Archive "{filename}" would hold both the {owner} and the '
                f"{identity}; rename one of them or set an explicit package artifact."
            )
        return filename

    # ------------------------------------------------------------------
    # Physical names
    # ------------------------------------------------------------------

    def stack_name(self) -> str:
        return check_stack_name(f"{self.service}-{self.stage}")

    def function_name(self, function_key: str, declared: str | None = None) -> str:
        name = declared or f"{self.service}-{self.stage}-{function_key}"
        if not FUNCTION_NAME_PATTERN.match(name) or len(name) > MAX_FUNCTION_NAME_LENGTH:
            raise InvalidNameError(
                f'The function name "{name}" is not valid. It may only contain '
                "alphanumerics, hyphens and underscores and must not exceed "
                f"{MAX_FUNCTION_NAME_LENGTH} characters."
            )
        return name

    def iam_policy_name(self) -> str:
        return f"{self.stage}-{self.service}-lambda"

    def rest_api_name(self) -> str:
        return f"{self.stage}-{self.service}"

    def service_artifact_name(self) -> str:
        return self.claim_archive(f"{self.service}.zip", "service package")

    def function_artifact_name(self, function_key: str) -> str:
        return self.claim_archive(f"{function_key}.zip", f'package of function "{function_key}"')

    # ------------------------------------------------------------------
    # Remote layout
    # ------------------------------------------------------------------

    def deployment_root(self) -> str:
        """Prefix shared by every deployment of this service and stage."""
        return f"{self.deployment_prefix}/{self.service}/{self.stage}"

    def artifact_directory(self, timestamp_ms: int) -> str:
        return (
            f"{self.deployment_root()}/"
            f"{timestamp_ms}-{format_deployment_datetime(timestamp_ms)}"
        )

    @staticmethod
    def object_key(artifact_directory: str, filename: str) -> str:
        return f"{artifact_directory}/{filename}"

    # ------------------------------------------------------------------
    # Logical ids
    # ------------------------------------------------------------------

    def normalized_function_name(self, function_key: str) -> str:
        return normalize_alphanumeric(function_key)

    def lambda_logical_id(self, function_key: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaFunction",
            f"function:{function_key}",
        )

    def lambda_version_logical_id(self, function_key: str, timestamp_ms: int) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaVersion{timestamp_ms}",
            f"version:{function_key}",
        )

    def lambda_output_logical_id(self, function_key: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaFunctionQualifiedArn",
            f"output:{function_key}",
        )

    def s3_bucket_logical_id(self, bucket: str) -> str:
        return self.claim(f"S3Bucket{normalize_alphanumeric(bucket)}", f"bucket:{bucket}")

    def s3_permission_logical_id(self, function_key: str, bucket: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaPermission"
            f"{normalize_alphanumeric(bucket)}S3",
            f"s3-permission:{function_key}:{bucket}",
        )

    def sns_topic_logical_id(self, topic: str) -> str:
        return self.claim(f"SNSTopic{normalize_alphanumeric(topic)}", f"topic:{topic}")

    def sns_permission_logical_id(self, function_key: str, topic: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaPermission"
            f"{normalize_alphanumeric(topic)}SNS",
            f"sns-permission:{function_key}:{topic}",
        )

    def sns_subscription_logical_id(self, function_key: str, topic: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}SnsSubscription"
            f"{normalize_alphanumeric(topic)}",
            f"sns-subscription:{function_key}:{topic}",
        )

    def schedule_logical_id(self, function_key: str, index: int) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}EventsRuleSchedule{index}",
            f"schedule:{function_key}:{index}",
        )

    def schedule_permission_logical_id(self, function_key: str, index: int) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaPermission"
            f"EventsRuleSchedule{index}",
            f"schedule-permission:{function_key}:{index}",
        )

    def schedule_target_id(self, function_key: str, index: int) -> str:
        return f"{function_key}Schedule{index}"

    def api_resource_logical_id(self, path: str) -> str:
        return self.claim(f"ApiGatewayResource{normalize_path(path)}", f"api-resource:{path}")

    def api_method_logical_id(self, path: str, method: str) -> str:
        return self.claim(
            f"ApiGatewayMethod{normalize_path(path)}{normalize_name(method.lower())}",
            f"api-method:{path}:{method.upper()}",
        )

    def api_deployment_logical_id(self, timestamp_ms: int) -> str:
        return f"ApiGatewayDeployment{timestamp_ms}"

    def api_permission_logical_id(self, function_key: str) -> str:
        return self.claim(
            f"{self.normalized_function_name(function_key)}LambdaPermissionApiGateway",
            f"api-permission:{function_key}",
        )
