"""Core template and user-declared resources."""

from __future__ import annotations

from typing import ClassVar

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import ConfigurationError
from stackforge.core.hooks import Phase
from stackforge.core.naming import DEPLOYMENT_BUCKET_LOGICAL_ID, DEPLOYMENT_BUCKET_OUTPUT_ID
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument


def build_core_template() -> TemplateDocument:
    """The minimal stack every service starts from: the deployment bucket."""
    return TemplateDocument(
        resources={
            DEPLOYMENT_BUCKET_LOGICAL_ID: {
                "Type": "AWS::S3::Bucket",
                "Properties": {
                    "BucketEncryption": {
                        "ServerSideEncryptionConfiguration": [
                            {"ServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
                        ]
                    }
                },
            }
        },
        outputs={
            DEPLOYMENT_BUCKET_OUTPUT_ID: {
                "Value": {"Ref": DEPLOYMENT_BUCKET_LOGICAL_ID},
            }
        },
    )


class CustomResourcesCompiler(BaseCompiler):
    """Deep-merges ``resources:`` from the service file into the template.

    Runs during Initialize so event compilers can find user-declared
    buckets and topics by their natural identity.
    """

    phase: ClassVar[Phase] = Phase.INITIALIZE

    @property
    def name(self) -> str:
        return "custom-resources"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        fragment = service.resources or {}
        for section in ("Resources", "Outputs", "Parameters"):
            value = fragment.get(section)
            if value is not None and not isinstance(value, dict):
                raise ConfigurationError(
                    f'"resources.{section}" must be a mapping of logical ids to fragments'
                )
        template.merge_fragment(fragment)
