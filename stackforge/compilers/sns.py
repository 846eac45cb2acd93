"""SNS topic subscriptions.

Accepted shapes::

    sns: topic-name
    sns: arn:aws:sns:us-east-1:123456789012:topic-name
    sns: {topicName: topic-name, displayName: Topic}
    sns: {topicArn: arn:aws:sns:...}

Topics are found by ``TopicName``; functions subscribing to the same
topic share one ``AWS::SNS::Topic`` with one subscription entry each.
"""

from __future__ import annotations

from typing import Any

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import InvalidEventConfigError
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

_SYNTAX = (
    "sns: topic-name, sns: topic-arn, sns: {topicName: name, displayName: "
    "display} or sns: {topicArn: arn}"
)


class SnsEventCompiler(BaseCompiler):

    @property
    def name(self) -> str:
        return "events.sns"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        for function_key, _index, value in self.events_of_type(service, "sns"):
            topic_name, display_name, topic_arn = self._parse(function_key, value)
            if topic_arn:
                self._subscribe_arn(template, function_key, topic_name, topic_arn)
            else:
                self._subscribe_topic(template, function_key, topic_name, display_name)

    def _parse(self, function_key: str, value: Any) -> tuple[str, str, str | None]:
        if isinstance(value, str) and value:
            if ":" in value:
                return value.rsplit(":", 1)[-1], "", value
            return value, "", None
        if isinstance(value, dict):
            topic_arn = value.get("topicArn")
            if isinstance(topic_arn, str) and topic_arn:
                return topic_arn.rsplit(":", 1)[-1], "", topic_arn
            topic_name = value.get("topicName")
            display_name = value.get("displayName")
            if isinstance(topic_name, str) and topic_name and isinstance(display_name, str):
                return topic_name, display_name, None
            raise InvalidEventConfigError(
                function_key,
                f'Missing "topicArn" or "topicName" and "displayName" property '
                f"for sns event in function {function_key}. The correct syntax "
                f"is: {_SYNTAX}. Please check the docs for more info.",
            )
        raise self.shape_error(function_key, "SNS", _SYNTAX)

    def _subscribe_topic(
        self,
        template: TemplateDocument,
        function_key: str,
        topic_name: str,
        display_name: str,
    ) -> None:
        topic_id = template.find_resource("AWS::SNS::Topic", TopicName=topic_name)
        if topic_id is None:
            topic_id = self.naming.sns_topic_logical_id(topic_name)
            template.merge_resource(
                topic_id,
                {
                    "Type": "AWS::SNS::Topic",
                    "Properties": {"TopicName": topic_name, "DisplayName": display_name},
                },
            )
        properties = template.require_resources(self.name)[topic_id].setdefault("Properties", {})
        self.append_unique(
            properties.setdefault("Subscription", []),
            {"Endpoint": self.function_arn(function_key), "Protocol": "lambda"},
        )
        self._add_permission(template, function_key, topic_name, {"Ref": topic_id})

    def _subscribe_arn(
        self,
        template: TemplateDocument,
        function_key: str,
        topic_name: str,
        topic_arn: str,
    ) -> None:
        template.merge_resource(
            self.naming.sns_subscription_logical_id(function_key, topic_name),
            {
                "Type": "AWS::SNS::Subscription",
                "Properties": {
                    "TopicArn": topic_arn,
                    "Protocol": "lambda",
                    "Endpoint": self.function_arn(function_key),
                },
            },
        )
        self._add_permission(template, function_key, topic_name, topic_arn)

    def _add_permission(
        self,
        template: TemplateDocument,
        function_key: str,
        topic_name: str,
        source_arn: Any,
    ) -> None:
        template.merge_resource(
            self.naming.sns_permission_logical_id(function_key, topic_name),
            {
                "Type": "AWS::Lambda::Permission",
                "Properties": {
                    "FunctionName": self.function_arn(function_key),
                    "Action": "lambda:InvokeFunction",
                    "Principal": "sns.amazonaws.com",
                    "SourceArn": source_arn,
                },
            },
        )
