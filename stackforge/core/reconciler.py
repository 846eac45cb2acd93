"""Create-vs-update decision and submission for the service stack.

::

    NotFound -> Creating -> Created      (first deploy)
    Exists   -> Updating -> Updated      (every later deploy)

The decision is driven only by the provider error kind of the describe
call: ``NOT_FOUND`` means create, success means update, anything else is
ambiguous and fatal.  All pre-flight checks (stack name, custom bucket
name and region) run before the first mutating call.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from stackforge.core.errors import (
    AmbiguousStackLookupError,
    BucketRegionMismatchError,
    DeploymentBucketNotFoundError,
    StackNotFoundError,
)
from stackforge.core.naming import (
    DEPLOYMENT_BUCKET_LOGICAL_ID,
    DEPLOYMENT_BUCKET_OUTPUT_ID,
    NamingResolver,
    check_bucket_name,
)
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError
from stackforge.models.artifacts import ArtifactRef
from stackforge.models.deployment import StackOperation, StackState
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

logger = logging.getLogger(__name__)

# The location API reports these two regions with legacy constraint values.
LEGACY_LOCATION_ALIASES: dict[str, str] = {
    "": "us-east-1",
    "EU": "eu-west-1",
}
MAX_TEMPLATE_BODY_BYTES = 51_200
STACK_CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]


def normalize_bucket_region(location: str | None) -> str:
    location = location or ""
    return LEGACY_LOCATION_ALIASES.get(location, location)


class Submission(BaseModel):
    """Result of a create or update call."""

    model_config = ConfigDict(frozen=True)

    operation: StackOperation
    stack_id: str


class StackReconciler:
    """Owns every mutating call against the service stack.

    Parameters
    ----------
    client:
        Provider client.
    service:
        Service description (for the custom bucket and stack tags).
    naming:
        Resolver for the stack name.
    """

    def __init__(self, client: ProviderClient, service: ServiceSpec, naming: NamingResolver) -> None:
        self.client = client
        self.service = service
        self.naming = naming

    @property
    def stage(self) -> str:
        return self.naming.stage

    @property
    def region(self) -> str:
        return self.naming.region

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    async def configure_deployment_bucket(
        self, template: TemplateDocument, *, check_region: bool = True
    ) -> str | None:
        """Validate a custom deployment bucket and point the template at it.

        Returns the custom bucket name, or ``None`` when the stack manages
        its own bucket.  Read-only against the provider; with
        ``check_region=False`` no call is made at all.
        """
        bucket = self.service.custom_bucket
        if bucket is None:
            return None
        check_bucket_name(bucket.name)
        if check_region:
            await self.check_bucket_region(bucket.name)

        resources = template.require_resources("deployment-bucket")
        resources.pop(DEPLOYMENT_BUCKET_LOGICAL_ID, None)
        template.outputs[DEPLOYMENT_BUCKET_OUTPUT_ID] = {"Value": bucket.name}
        return bucket.name

    async def check_bucket_region(self, bucket: str) -> str:
        """Fail unless *bucket* lives in the target region; return its region."""
        try:
            response = await self._request(
                "S3", "getBucketLocation", {"Bucket": bucket}
            )
        except ProviderError as exc:
            raise DeploymentBucketNotFoundError(bucket, str(exc)) from exc
        bucket_region = normalize_bucket_region(response.get("LocationConstraint"))
        if bucket_region != self.region:
            raise BucketRegionMismatchError(bucket, bucket_region, self.region)
        logger.info("Using deployment bucket %s (%s)", bucket, bucket_region)
        return bucket_region

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def describe(self) -> StackState | None:
        """Current stack state, ``None`` when the stack does not exist."""
        stack_name = self.naming.stack_name()
        try:
            response = await self._request(
                "CloudFormation", "describeStacks", {"StackName": stack_name}
            )
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return None
            raise AmbiguousStackLookupError(stack_name, str(exc)) from exc
        return StackState.from_describe(stack_name, response)

    async def resolve_bucket_name(self) -> str:
        """Name of the bucket artifacts go to."""
        bucket = self.service.custom_bucket
        if bucket is not None:
            return bucket.name
        stack_name = self.naming.stack_name()
        try:
            response = await self._request(
                "CloudFormation",
                "describeStackResource",
                {"StackName": stack_name, "LogicalResourceId": DEPLOYMENT_BUCKET_LOGICAL_ID},
            )
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                raise StackNotFoundError(
                    f"Stack {stack_name} does not exist; deploy the service first"
                ) from exc
            raise
        return response["StackResourceDetail"]["PhysicalResourceId"]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def ensure_stack(self, core_template: TemplateDocument) -> Submission | None:
        """Create the stack from the core template if it does not exist yet."""
        if await self.describe() is not None:
            return None
        logger.info("Creating stack %s", self.naming.stack_name())
        return await self.create(core_template)

    async def reconcile(
        self,
        template: TemplateDocument,
        artifacts: list[ArtifactRef],
        *,
        template_url: str | None = None,
    ) -> Submission:
        """Create or update the stack with the compiled *template*."""
        self.naming.stack_name()
        state = await self.describe()
        substitute_artifact_keys(template, artifacts)
        if state is None:
            return await self.create(template, template_url=template_url)
        return await self.update(template, template_url=template_url)

    async def create(
        self, template: TemplateDocument, *, template_url: str | None = None
    ) -> Submission:
        params = self._stack_params(template, template_url)
        params["OnFailure"] = "DELETE"
        response = await self._request("CloudFormation", "createStack", params)
        return Submission(operation=StackOperation.CREATE, stack_id=response.get("StackId") or params["StackName"])

    async def update(
        self, template: TemplateDocument, *, template_url: str | None = None
    ) -> Submission:
        params = self._stack_params(template, template_url)
        logger.info("Updating stack %s", params["StackName"])
        response = await self._request("CloudFormation", "updateStack", params)
        return Submission(operation=StackOperation.UPDATE, stack_id=response.get("StackId") or params["StackName"])

    async def delete(self) -> Submission:
        stack_name = self.naming.stack_name()
        state = await self.describe()
        if state is None:
            raise StackNotFoundError(f"Stack {stack_name} does not exist")
        await self._request("CloudFormation", "deleteStack", {"StackName": stack_name})
        return Submission(operation=StackOperation.DELETE, stack_id=state.stack_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stack_params(self, template: TemplateDocument, template_url: str | None) -> dict[str, Any]:
        body = template.to_json()
        params: dict[str, Any] = {
            "StackName": self.naming.stack_name(),
            "Capabilities": list(STACK_CAPABILITIES),
            "Parameters": [],
            "Tags": [
                {"Key": key, "Value": value}
                for key, value in {"STAGE": self.stage, **self.service.provider.stack_tags}.items()
            ],
        }
        if template_url and len(body.encode("utf-8")) > MAX_TEMPLATE_BODY_BYTES:
            params["TemplateURL"] = template_url
        else:
            params["TemplateBody"] = body
        return params

    async def _request(self, service: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self.client.request(
            service, method, params, stage=self.stage, region=self.region
        )


def substitute_artifact_keys(template: TemplateDocument, artifacts: list[ArtifactRef]) -> int:
    """Point every function's ``Code.S3Key`` at its uploaded object.

    Matches on the archive file name, so it is safe to apply more than
    once.  Returns the number of functions updated.
    """
    keys = {artifact.name: artifact.remote_key for artifact in artifacts if artifact.remote_key}
    updated = 0
    for fragment in template.resources_of_type("AWS::Lambda::Function").values():
        code = (fragment.get("Properties") or {}).get("Code")
        if not isinstance(code, dict) or not isinstance(code.get("S3Key"), str):
            continue
        filename = code["S3Key"].rsplit("/", 1)[-1]
        if filename in keys and code["S3Key"] != keys[filename]:
            code["S3Key"] = keys[filename]
            updated += 1
    return updated
