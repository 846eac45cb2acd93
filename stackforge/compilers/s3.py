"""S3 bucket notification events.

``s3: photos`` or ``s3: {bucket: photos, event: s3:ObjectRemoved:*}``.
Buckets are found by ``BucketName``: a bucket already present in the
template (declared by the user or by another function) gets the new
notification appended instead of a duplicate bucket.
"""

from __future__ import annotations

from typing import Any

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import InvalidEventConfigError
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

DEFAULT_S3_EVENT = "s3:ObjectCreated:*"
_SYNTAX = 's3: bucketName or s3: {bucket: bucketName, event: "s3:ObjectCreated:*"}'


class S3EventCompiler(BaseCompiler):

    @property
    def name(self) -> str:
        return "events.s3"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        for function_key, _index, value in self.events_of_type(service, "s3"):
            bucket, event_name, rules = self._parse(function_key, value)
            self._add_notification(template, function_key, bucket, event_name, rules)

    def _parse(self, function_key: str, value: Any) -> tuple[str, str, list[dict[str, Any]]]:
        if isinstance(value, str):
            bucket, event_name, rules = value, DEFAULT_S3_EVENT, []
        elif isinstance(value, dict):
            bucket = value.get("bucket")
            if not bucket or not isinstance(bucket, str):
                raise InvalidEventConfigError(
                    function_key,
                    f'Missing "bucket" property for s3 event in function '
                    f"{function_key}. The correct syntax is: {_SYNTAX}. Please "
                    "check the docs for more info.",
                )
            event_name = value.get("event") or DEFAULT_S3_EVENT
            rules = list(value.get("rules") or [])
        else:
            raise self.shape_error(function_key, "S3", _SYNTAX)
        if not bucket:
            raise self.shape_error(function_key, "S3", _SYNTAX)
        return bucket, event_name, rules

    def _add_notification(
        self,
        template: TemplateDocument,
        function_key: str,
        bucket: str,
        event_name: str,
        rules: list[dict[str, Any]],
    ) -> None:
        permission_id = self.naming.s3_permission_logical_id(function_key, bucket)
        configuration: dict[str, Any] = {
            "Event": event_name,
            "Function": self.function_arn(function_key),
        }
        if rules:
            configuration["Filter"] = {"S3Key": {"Rules": rules}}

        bucket_id = template.find_resource("AWS::S3::Bucket", BucketName=bucket)
        if bucket_id is None:
            bucket_id = self.naming.s3_bucket_logical_id(bucket)
            template.merge_resource(
                bucket_id,
                {"Type": "AWS::S3::Bucket", "Properties": {"BucketName": bucket}},
            )
        fragment = template.require_resources(self.name)[bucket_id]
        properties = fragment.setdefault("Properties", {})
        notification = properties.setdefault("NotificationConfiguration", {})
        self.append_unique(notification.setdefault("LambdaConfigurations", []), configuration)
        depends_on = fragment.setdefault("DependsOn", [])
        if isinstance(depends_on, str):
            depends_on = fragment["DependsOn"] = [depends_on]
        self.append_unique(depends_on, permission_id)

        template.merge_resource(
            permission_id,
            {
                "Type": "AWS::Lambda::Permission",
                "Properties": {
                    "FunctionName": self.function_arn(function_key),
                    "Action": "lambda:InvokeFunction",
                    "Principal": "s3.amazonaws.com",
                    "SourceArn": f"arn:aws:s3:::{bucket}",
                },
            },
        )
