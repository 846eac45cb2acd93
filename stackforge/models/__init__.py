"""Pydantic models for service descriptions, templates and deployments."""

from stackforge.models.artifacts import ArtifactRef
from stackforge.models.deployment import (
    VALID_TRANSITIONS,
    DeploymentAttempt,
    DeploymentListing,
    DeploymentReport,
    DeploymentStatus,
    PhaseRecord,
    StackOperation,
    StackState,
)
from stackforge.models.service import (
    DeploymentBucketSpec,
    FunctionSpec,
    PackageSpec,
    ProviderSpec,
    ServiceSpec,
    VpcConfig,
)
from stackforge.models.template import TemplateDocument

__all__ = [
    "VALID_TRANSITIONS",
    "ArtifactRef",
    "DeploymentAttempt",
    "DeploymentBucketSpec",
    "DeploymentListing",
    "DeploymentReport",
    "DeploymentStatus",
    "FunctionSpec",
    "PackageSpec",
    "PhaseRecord",
    "ProviderSpec",
    "ServiceSpec",
    "StackOperation",
    "StackState",
    "TemplateDocument",
]
