"""CloudWatch Events schedule rules.

``schedule: rate(10 minutes)`` or
``schedule: {rate: cron(0 12 * * ? *), enabled: false, input: {...}}``.
"""

from __future__ import annotations

import json
import re
from typing import Any

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import InvalidEventConfigError
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

_EXPRESSION = re.compile(r"^(rate|cron)\(.+\)$")
_SYNTAX = "schedule: rate(10 minutes) or schedule: {rate: rate(10 minutes), enabled: true}"


class ScheduleEventCompiler(BaseCompiler):

    @property
    def name(self) -> str:
        return "events.schedule"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        for function_key, index, value in self.events_of_type(service, "schedule"):
            expression, enabled, payload = self._parse(function_key, value)
            rule_id = self.naming.schedule_logical_id(function_key, index)
            target: dict[str, Any] = {
                "Arn": self.function_arn(function_key),
                "Id": self.naming.schedule_target_id(function_key, index),
            }
            if payload is not None:
                target["Input"] = payload if isinstance(payload, str) else json.dumps(
                    payload, sort_keys=True
                )
            template.merge_resource(
                rule_id,
                {
                    "Type": "AWS::Events::Rule",
                    "Properties": {
                        "ScheduleExpression": expression,
                        "State": "ENABLED" if enabled else "DISABLED",
                        "Targets": [target],
                    },
                },
            )
            template.merge_resource(
                self.naming.schedule_permission_logical_id(function_key, index),
                {
                    "Type": "AWS::Lambda::Permission",
                    "Properties": {
                        "FunctionName": self.function_arn(function_key),
                        "Action": "lambda:InvokeFunction",
                        "Principal": "events.amazonaws.com",
                        "SourceArn": {"Fn::GetAtt": [rule_id, "Arn"]},
                    },
                },
            )

    def _parse(self, function_key: str, value: Any) -> tuple[str, bool, Any]:
        if isinstance(value, str):
            expression, enabled, payload = value, True, None
        elif isinstance(value, dict):
            expression = value.get("rate")
            if not isinstance(expression, str) or not expression:
                raise InvalidEventConfigError(
                    function_key,
                    f'Missing "rate" property for schedule event in function '
                    f"{function_key}. The correct syntax is: {_SYNTAX}. Please "
                    "check the docs for more info.",
                )
            enabled = bool(value.get("enabled", True))
            payload = value.get("input")
        else:
            raise self.shape_error(function_key, "Schedule", _SYNTAX)
        if not _EXPRESSION.match(expression.strip()):
            raise InvalidEventConfigError(
                function_key,
                f'Invalid schedule expression "{expression}" in function '
                f"{function_key}; expected rate(...) or cron(...).",
            )
        return expression.strip(), enabled, payload
