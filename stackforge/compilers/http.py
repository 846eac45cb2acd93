"""API Gateway REST endpoints backed by Lambda proxy integrations.

``http: get users/list`` or
``http: {path: users/{id}, method: get, cors: true, private: false}``.
"""

from __future__ import annotations

from typing import Any

from stackforge.compilers.base import BaseCompiler
from stackforge.core.errors import InvalidEventConfigError
from stackforge.core.naming import REST_API_LOGICAL_ID, SERVICE_ENDPOINT_OUTPUT_ID
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "ANY"})
DEFAULT_CORS_HEADERS = [
    "Content-Type",
    "X-Amz-Date",
    "Authorization",
    "X-Api-Key",
    "X-Amz-Security-Token",
]
_SYNTAX = "http: get users/list or http: {path: users/list, method: get}"


class HttpEndpoint:
    """A parsed ``http`` event."""

    def __init__(self, function_key: str, path: str, method: str, cors: dict[str, Any] | None, private: bool) -> None:
        self.function_key = function_key
        self.path = path.strip("/")
        self.method = method.upper()
        self.cors = cors
        self.private = private


class HttpEventCompiler(BaseCompiler):

    @property
    def name(self) -> str:
        return "events.http"

    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        endpoints = [
            self._parse(function_key, value)
            for function_key, _index, value in self.events_of_type(service, "http")
        ]
        if not endpoints:
            return

        template.merge_resource(
            REST_API_LOGICAL_ID,
            {"Type": "AWS::ApiGateway::RestApi", "Properties": {"Name": self.naming.rest_api_name()}},
        )
        method_ids: list[str] = []
        cors_paths: dict[str, tuple[dict[str, Any], list[str]]] = {}
        for endpoint in endpoints:
            self._add_path(template, endpoint.path)
            method_ids.append(self._add_method(template, endpoint))
            self._add_permission(template, endpoint.function_key)
            if endpoint.cors is not None:
                cors, methods = cors_paths.setdefault(endpoint.path, (endpoint.cors, []))
                self.append_unique(methods, endpoint.method)
        for path, (cors, methods) in cors_paths.items():
            method_ids.append(self._add_cors_method(template, path, cors, methods))

        template.merge_resource(
            self.naming.api_deployment_logical_id(self.timestamp_ms),
            {
                "Type": "AWS::ApiGateway::Deployment",
                "Properties": {
                    "RestApiId": {"Ref": REST_API_LOGICAL_ID},
                    "StageName": self.naming.stage,
                },
                "DependsOn": sorted(set(method_ids)),
            },
        )
        template.merge_output(
            SERVICE_ENDPOINT_OUTPUT_ID,
            {
                "Description": "URL of the service endpoint",
                "Value": {
                    "Fn::Join": [
                        "",
                        [
                            "https://",
                            {"Ref": REST_API_LOGICAL_ID},
                            f".execute-api.{self.naming.region}.amazonaws.com/{self.naming.stage}",
                        ],
                    ]
                },
            },
        )

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parse(self, function_key: str, value: Any) -> HttpEndpoint:
        if isinstance(value, str):
            parts = value.split()
            if len(parts) != 2:
                raise self.shape_error(function_key, "HTTP", _SYNTAX)
            method, path = parts
            cors, private = None, False
        elif isinstance(value, dict):
            method, path = value.get("method"), value.get("path")
            if not isinstance(method, str) or not isinstance(path, str):
                raise InvalidEventConfigError(
                    function_key,
                    f'Missing "method" or "path" property for http event in '
                    f"function {function_key}. The correct syntax is: {_SYNTAX}. "
                    "Please check the docs for more info.",
                )
            cors = self._parse_cors(value.get("cors"))
            private = bool(value.get("private", False))
        else:
            raise self.shape_error(function_key, "HTTP", _SYNTAX)
        if method.upper() not in HTTP_METHODS:
            raise InvalidEventConfigError(
                function_key,
                f'Invalid HTTP method "{method}" in function {function_key}. '
                f"Supported methods: {', '.join(sorted(HTTP_METHODS))}.",
            )
        return HttpEndpoint(function_key, path, method, cors, private)

    @staticmethod
    def _parse_cors(value: Any) -> dict[str, Any] | None:
        if not value:
            return None
        cors: dict[str, Any] = {"origins": ["*"], "headers": list(DEFAULT_CORS_HEADERS)}
        if isinstance(value, dict):
            cors["origins"] = list(value.get("origins") or cors["origins"])
            cors["headers"] = list(value.get("headers") or cors["headers"])
        return cors

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def _resource_ref(self, path: str) -> dict[str, Any]:
        if not path:
            return {"Fn::GetAtt": [REST_API_LOGICAL_ID, "RootResourceId"]}
        return {"Ref": self.naming.api_resource_logical_id(path)}

    def _add_path(self, template: TemplateDocument, path: str) -> None:
        """Create one ``AWS::ApiGateway::Resource`` per path segment."""
        segments = [segment for segment in path.split("/") if segment]
        for depth in range(1, len(segments) + 1):
            current = "/".join(segments[:depth])
            parent = "/".join(segments[: depth - 1])
            template.merge_resource(
                self.naming.api_resource_logical_id(current),
                {
                    "Type": "AWS::ApiGateway::Resource",
                    "Properties": {
                        "ParentId": self._resource_ref(parent),
                        "PathPart": segments[depth - 1],
                        "RestApiId": {"Ref": REST_API_LOGICAL_ID},
                    },
                },
            )

    def _add_method(self, template: TemplateDocument, endpoint: HttpEndpoint) -> str:
        method_id = self.naming.api_method_logical_id(endpoint.path, endpoint.method)
        template.merge_resource(
            method_id,
            {
                "Type": "AWS::ApiGateway::Method",
                "Properties": {
                    "HttpMethod": endpoint.method,
                    "RequestParameters": {},
                    "ResourceId": self._resource_ref(endpoint.path),
                    "RestApiId": {"Ref": REST_API_LOGICAL_ID},
                    "ApiKeyRequired": endpoint.private,
                    "AuthorizationType": "NONE",
                    "Integration": {
                        "IntegrationHttpMethod": "POST",
                        "Type": "AWS_PROXY",
                        "Uri": {
                            "Fn::Join": [
                                "",
                                [
                                    f"arn:aws:apigateway:{self.naming.region}:lambda:path/"
                                    "2015-03-31/functions/",
                                    self.function_arn(endpoint.function_key),
                                    "/invocations",
                                ],
                            ]
                        },
                    },
                    "MethodResponses": [],
                },
            },
        )
        return method_id

    def _add_cors_method(
        self,
        template: TemplateDocument,
        path: str,
        cors: dict[str, Any],
        methods: list[str],
    ) -> str:
        method_id = self.naming.api_method_logical_id(path, "OPTIONS")
        allowed_methods = ",".join(sorted({"OPTIONS", *methods}))
        headers = {
            "method.response.header.Access-Control-Allow-Origin": f"'{','.join(cors['origins'])}'",
            "method.response.header.Access-Control-Allow-Headers": f"'{','.join(cors['headers'])}'",
            "method.response.header.Access-Control-Allow-Methods": f"'{allowed_methods}'",
        }
        template.require_resources(self.name)[method_id] = {
            "Type": "AWS::ApiGateway::Method",
            "Properties": {
                "AuthorizationType": "NONE",
                "HttpMethod": "OPTIONS",
                "MethodResponses": [
                    {
                        "StatusCode": "200",
                        "ResponseParameters": {name: True for name in headers},
                        "ResponseModels": {},
                    }
                ],
                "RequestParameters": {},
                "Integration": {
                    "Type": "MOCK",
                    "RequestTemplates": {"application/json": "{statusCode:200}"},
                    "IntegrationResponses": [
                        {
                            "StatusCode": "200",
                            "ResponseParameters": headers,
                            "ResponseTemplates": {"application/json": ""},
                        }
                    ],
                },
                "ResourceId": self._resource_ref(path),
                "RestApiId": {"Ref": REST_API_LOGICAL_ID},
            },
        }
        return method_id

    def _add_permission(self, template: TemplateDocument, function_key: str) -> None:
        template.merge_resource(
            self.naming.api_permission_logical_id(function_key),
            {
                "Type": "AWS::Lambda::Permission",
                "Properties": {
                    "FunctionName": self.function_arn(function_key),
                    "Action": "lambda:InvokeFunction",
                    "Principal": "apigateway.amazonaws.com",
                    "SourceArn": {
                        "Fn::Join": [
                            "",
                            [
                                "arn:aws:execute-api:",
                                {"Ref": "AWS::Region"},
                                ":",
                                {"Ref": "AWS::AccountId"},
                                ":",
                                {"Ref": REST_API_LOGICAL_ID},
                                "/*/*",
                            ],
                        ]
                    },
                },
            },
        )
