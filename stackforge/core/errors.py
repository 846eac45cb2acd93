"""Error taxonomy for the deployment pipeline.

Every error raised by the framework derives from :class:`DeployError`.
Subclasses are grouped by how the pipeline must react to them:

- ``ConfigurationError`` -- bad user input or plugin ordering; fatal, never
  retried, reported with the offending function/resource.
- ``PreflightError`` -- detected before any mutating remote call.
- ``AmbiguousStackLookupError`` -- the create-vs-update decision cannot be
  made safely.
- ``StackMonitorError`` -- the remote stack reached an unexpected status.
- ``ArtifactUploadError`` -- transfer failures, including stream errors
  that surface after the transport reported success.

Throttling is never represented here: it is retried inside the provider
client and is invisible to the pipeline.
"""

from __future__ import annotations

from typing import Any


class DeployError(RuntimeError):
    """Base class for every framework error."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class ConfigurationError(DeployError):
    """The service description (or a plugin's ordering) is invalid."""


class InvalidNameError(ConfigurationError):
    """A stack, bucket or function name violates provider naming rules."""


class MissingResourcesSectionError(ConfigurationError):
    """A compiler ran against a template that has no ``Resources`` root."""

    def __init__(self, compiler: str = "") -> None:
        self.compiler = compiler
        super().__init__(
            "This plugin needs access to Resources section of the AWS "
            "CloudFormation template"
            + (f" ({compiler})" if compiler else "")
        )


class InvalidEventConfigError(ConfigurationError):
    """An event definition has neither the object nor the shorthand shape."""

    def __init__(self, function_name: str, message: str) -> None:
        self.function_name = function_name
        super().__init__(message)


class InvalidFunctionConfigError(ConfigurationError):
    """A function definition is missing a required property."""

    def __init__(self, function_name: str, message: str) -> None:
        self.function_name = function_name
        super().__init__(message)


class HandlerNotFoundError(ConfigurationError):
    """A declared handler does not resolve to a file in the service tree."""

    def __init__(self, function_name: str, handler: str) -> None:
        self.function_name = function_name
        self.handler = handler
        super().__init__(
            f'Handler "{handler}" of function "{function_name}" does not '
            "resolve to a file in the service directory."
        )


class DanglingReferenceError(ConfigurationError):
    """A ``Ref``/``Fn::GetAtt`` points at a logical id that does not exist."""

    def __init__(self, references: list[str]) -> None:
        self.references = sorted(references)
        super().__init__(
            "The compiled template references unknown logical ids: "
            + ", ".join(self.references)
        )


class FunctionNotFoundError(ConfigurationError):
    """A function name given on the command line is not declared."""

    def __init__(self, function_name: str) -> None:
        self.function_name = function_name
        super().__init__(
            f'Function "{function_name}" doesn\'t exist in this Service'
        )


# ---------------------------------------------------------------------------
# Pre-flight errors
# ---------------------------------------------------------------------------


class PreflightError(DeployError):
    """A check that runs before any mutating remote call failed."""


class BucketRegionMismatchError(PreflightError):
    """The custom deployment bucket lives in another region."""

    def __init__(self, bucket: str, bucket_region: str, region: str) -> None:
        self.bucket = bucket
        self.bucket_region = bucket_region
        self.region = region
        super().__init__(
            f"Deployment bucket is not in the same region as the lambda "
            f"function (bucket {bucket} is in {bucket_region}, deploying "
            f"to {region})"
        )


class DeploymentBucketNotFoundError(PreflightError):
    """The custom deployment bucket could not be located."""

    def __init__(self, bucket: str, cause: str) -> None:
        self.bucket = bucket
        super().__init__(f"Could not locate deployment bucket. Error: {cause}")


# ---------------------------------------------------------------------------
# Remote-state errors
# ---------------------------------------------------------------------------


class AmbiguousStackLookupError(DeployError):
    """Describing the stack failed for a reason other than "not found"."""

    def __init__(self, stack_name: str, cause: str) -> None:
        self.stack_name = stack_name
        super().__init__(
            f"Could not determine whether stack {stack_name} exists: {cause}"
        )


class StackNotFoundError(DeployError):
    """An operation needs a stack or function that was never deployed."""


class StackMonitorError(DeployError):
    """The monitored stack reached a status outside the allow-list."""

    def __init__(self, status: str | None, reason: str | None) -> None:
        self.status = status
        self.reason = reason
        super().__init__(
            "An error occurred while provisioning your stack: "
            f"{reason or 'no reason given'} (status: {status or 'missing'})"
        )


class ArtifactUploadError(DeployError):
    """An artifact or template could not be transferred."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(f"Upload of {key} failed: {message}")


class InvalidTransitionError(DeployError):
    """A deployment attempt was moved to a status it cannot reach."""


class DeploymentFailedError(DeployError):
    """Raised by the orchestrator once a phase failed.

    The failing phase's error is chained as ``__cause__`` and the final
    report is available as :attr:`report`.
    """

    def __init__(self, message: str, report: Any) -> None:
        self.report = report
        super().__init__(message)
