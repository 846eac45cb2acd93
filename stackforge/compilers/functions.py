"""Lambda function, version and output resources."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, ClassVar

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import InvalidFunctionConfigError
from stackforge.core.hooks import Phase
from stackforge.core.naming import DEPLOYMENT_BUCKET_LOGICAL_ID, IAM_ROLE_LOGICAL_ID
from stackforge.models.service import FunctionSpec, ServiceSpec
from stackforge.models.template import TemplateDocument


def artifact_name_for(service: ServiceSpec, function_key: str, naming: Any) -> str:
    """File name of the archive that carries *function_key*'s code."""
    function = service.get_function(function_key)
    explicit = function.package.artifact or (
        None if service.is_individually_packaged(function_key) else service.package.artifact
    )
    if explicit:
        return PurePosixPath(explicit).name
    if service.is_individually_packaged(function_key):
        return naming.function_artifact_name(function_key)
    return naming.service_artifact_name()


class FunctionCompiler(BaseCompiler):
    """One ``AWS::Lambda::Function`` per declared function.

    ``Code.S3Key`` holds the bare artifact file name at compile time; the
    stack reconciler replaces it with the uploaded object key right
    before the template is submitted.
    """

    phase: ClassVar[Phase] = Phase.COMPILE_FUNCTIONS

    @property
    def name(self) -> str:
        return "functions"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        for function_key, function in service.functions.items():
            self._compile_function(service, template, function_key, function)

    def _compile_function(
        self,
        service: ServiceSpec,
        template: TemplateDocument,
        function_key: str,
        function: FunctionSpec,
    ) -> None:
        if not function.handler:
            raise InvalidFunctionConfigError(
                function_key,
                f'Missing "handler" property in function "{function_key}". Please '
                "make sure you point to the correct lambda handler. For example: "
                "handler.hello. Please check the docs for more info.",
            )
        provider = service.provider
        bucket = service.custom_bucket
        properties: dict[str, Any] = {
            "Code": {
                "S3Bucket": bucket.name if bucket else {"Ref": DEPLOYMENT_BUCKET_LOGICAL_ID},
                "S3Key": artifact_name_for(service, function_key, self.naming),
            },
            "FunctionName": self.naming.function_name(function_key, function.name),
            "Handler": function.handler,
            "MemorySize": function.memory_size or provider.memory_size,
            "Role": {"Fn::GetAtt": [IAM_ROLE_LOGICAL_ID, "Arn"]},
            "Runtime": function.runtime or provider.runtime,
            "Timeout": function.timeout or provider.timeout,
        }
        if function.description:
            properties["Description"] = function.description

        environment = {**provider.environment, **function.environment}
        if environment:
            properties["Environment"] = {"Variables": environment}

        vpc = function.vpc or provider.vpc
        if vpc and vpc.is_complete:
            properties["VpcConfig"] = {
                "SecurityGroupIds": list(vpc.security_group_ids),
                "SubnetIds": list(vpc.subnet_ids),
            }

        function_id = self.naming.lambda_logical_id(function_key)
        template.merge_resource(
            function_id, {"Type": "AWS::Lambda::Function", "Properties": properties}
        )

        version_id = self.naming.lambda_version_logical_id(function_key, self.timestamp_ms)
        template.merge_resource(
            version_id,
            {
                "Type": "AWS::Lambda::Version",
                "DeletionPolicy": "Retain",
                "Properties": {"FunctionName": {"Ref": function_id}},
            },
        )

        template.outputs[self.naming.lambda_output_logical_id(function_key)] = {
            "Description": "Current Lambda function version",
            "Value": {"Ref": version_id},
        }
