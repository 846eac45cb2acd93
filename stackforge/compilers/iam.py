"""Execution role shared by every function of the service."""

from __future__ import annotations

import copy
from typing import ClassVar

from stackforge.compilers.base import BaseCompiler
from stackforge.core.hooks import Phase
from stackforge.core.naming import IAM_POLICY_LOGICAL_ID, IAM_ROLE_LOGICAL_ID
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument


class IamCompiler(BaseCompiler):
    """Adds ``IamRoleLambda`` and ``IamPolicyLambda``.

    The policy always allows writing CloudWatch logs in the target region;
    ``provider.iamRoleStatements`` are appended after that statement.
    """

    phase: ClassVar[Phase] = Phase.COMPILE_FUNCTIONS

    @property
    def name(self) -> str:
        return "iam"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        if not service.functions:
            return
        template.merge_resource(
            IAM_ROLE_LOGICAL_ID,
            {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "AssumeRolePolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Principal": {"Service": ["lambda.amazonaws.com"]},
                                "Action": ["sts:AssumeRole"],
                            }
                        ],
                    },
                    "Path": "/",
                },
            },
        )

        statements = [
            {
                "Effect": "Allow",
                "Action": [
                    "logs:CreateLogGroup",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                ],
                "Resource": f"arn:aws:logs:{self.naming.region}:*:*",
            }
        ]
        statements.extend(copy.deepcopy(service.provider.iam_role_statements))
        if any(self._uses_vpc(service, key) for key in service.functions):
            statements.append(
                {
                    "Effect": "Allow",
                    "Action": [
                        "ec2:CreateNetworkInterface",
                        "ec2:DescribeNetworkInterfaces",
                        "ec2:DeleteNetworkInterface",
                    ],
                    "Resource": "*",
                }
            )

        # Replace rather than merge so a recompile does not duplicate statements.
        resources = template.require_resources(self.name)
        resources[IAM_POLICY_LOGICAL_ID] = {
            "Type": "AWS::IAM::Policy",
            "Properties": {
                "PolicyName": self.naming.iam_policy_name(),
                "PolicyDocument": {
                    "Version": "2012-10-17",
                    "Statement": statements,
                },
                "Roles": [{"Ref": IAM_ROLE_LOGICAL_ID}],
            },
        }

    @staticmethod
    def _uses_vpc(service: ServiceSpec, function_key: str) -> bool:
        vpc = service.functions[function_key].vpc or service.provider.vpc
        return bool(vpc and vpc.is_complete)
