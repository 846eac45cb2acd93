"""Unit tests for the deployment orchestrator."""

from __future__ import annotations

import json

import pytest

from stackforge.core.errors import (
    BucketRegionMismatchError,
    DanglingReferenceError,
    DeploymentFailedError,
    HandlerNotFoundError,
    InvalidNameError,
    StackNotFoundError,
)
from stackforge.core.hooks import HookTiming, Phase
from stackforge.core.orchestrator import Orchestrator
from stackforge.core.provider import ErrorKind, ProviderError
from stackforge.models.deployment import DeploymentStatus, StackOperation

CLOCK_SECONDS = 1_700_000_000.0
ARTIFACT_DIRECTORY = "serverless/first-service/dev/1700000000000-2023-11-14T22:13:20.000Z"


@pytest.fixture
def make_orchestrator(fake_client, settings):
    """Factory: an Orchestrator with a fixed clock and the fake client."""

    def _factory(service, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("clock", lambda: CLOCK_SECONDS)
        return Orchestrator(service, fake_client, **kwargs)

    return _factory


@pytest.fixture
def existing_stack(fake_client, stack_reply):
    """Script the provider for a redeploy of an existing stack."""
    fake_client.script(
        "CloudFormation",
        "describeStacks",
        stack_reply("UPDATE_COMPLETE"),
        stack_reply("UPDATE_COMPLETE"),
        stack_reply("UPDATE_IN_PROGRESS"),
        stack_reply(
            "UPDATE_COMPLETE",
            Outputs=[{"OutputKey": "ServerlessDeploymentBucketName", "OutputValue": "deploy-bucket"}],
        ),
    )
    fake_client.script(
        "CloudFormation",
        "describeStackResource",
        {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
    )
    fake_client.script("CloudFormation", "updateStack", {"StackId": "arn:stack/first-service-dev"})
    return fake_client


class TestPackageOnly:
    @pytest.mark.asyncio
    async def test_no_deploy_stops_after_package(self, service, make_orchestrator, fake_client, service_dir):
        report = await make_orchestrator(service).deploy(no_deploy=True)

        assert report.outcome == "packaged"
        assert report.status is DeploymentStatus.SUCCEEDED
        assert fake_client.calls == []
        build = service_dir / ".serverless"
        assert (build / "cloudformation-template-create-stack.json").is_file()
        assert (build / "cloudformation-template-update-stack.json").is_file()
        assert (build / "first-service.zip").is_file()
        states = {record.phase: record.state for record in report.phases}
        assert states["upload"] == "skipped"
        assert states["cleanup"] == "skipped"
        assert states["package"] == "passed"

    @pytest.mark.asyncio
    async def test_update_template_contains_compiled_resources(self, make_service, make_orchestrator, service_dir):
        service = make_service(
            functions={"first": {"handler": "handler.first", "events": [{"sns": "Topic 1"}]}}
        )
        await make_orchestrator(service).deploy(no_deploy=True)

        body = json.loads((service_dir / ".serverless" / "cloudformation-template-update-stack.json").read_text())
        resources = body["Resources"]
        assert "SNSTopicTopic1" in resources
        assert "FirstLambdaFunction" in resources
        assert f"FirstLambdaVersion{int(CLOCK_SECONDS * 1000)}" in resources
        core = json.loads((service_dir / ".serverless" / "cloudformation-template-create-stack.json").read_text())
        assert list(core["Resources"]) == ["ServerlessDeploymentBucket"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_bucket_region_mismatch(self, make_service, make_orchestrator, fake_client):
        service = make_service(provider={"deploymentBucket": "com.serverless.deploys", "region": "us-east-1"})
        fake_client.script("S3", "getBucketLocation", {"LocationConstraint": "us-west-1"})

        with pytest.raises(DeploymentFailedError, match="not in the same region") as excinfo:
            await make_orchestrator(service).deploy()

        assert isinstance(excinfo.value.__cause__, BucketRegionMismatchError)
        report = excinfo.value.report
        assert report.status is DeploymentStatus.FAILED
        assert report.phases[-1].phase == "initialize"
        assert report.phases[-1].state == "failed"
        assert fake_client.calls_to("CloudFormation", "createStack") == []
        assert fake_client.calls_to("CloudFormation", "updateStack") == []

    @pytest.mark.asyncio
    async def test_invalid_service_name_fails_validation(self, make_service, make_orchestrator, fake_client):
        with pytest.raises(DeploymentFailedError) as excinfo:
            await make_orchestrator(make_service(service="first_service")).deploy()
        assert isinstance(excinfo.value.__cause__, InvalidNameError)
        assert excinfo.value.report.phases[0].phase == "validate"
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_handler_fails_packaging(self, make_service, make_orchestrator, fake_client):
        service = make_service(functions={"first": {"handler": "nowhere.run"}})
        with pytest.raises(DeploymentFailedError) as excinfo:
            await make_orchestrator(service).deploy()
        assert isinstance(excinfo.value.__cause__, HandlerNotFoundError)
        assert excinfo.value.report.phases[-1].phase == "package"
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_dangling_reference_from_plugin(self, service, make_orchestrator):
        orchestrator = make_orchestrator(service)

        def add_broken_resource(context):
            context.template.merge_resource(
                "Broken", {"Type": "AWS::SNS::Topic", "Properties": {"KmsMasterKeyId": {"Ref": "NoSuchKey"}}}
            )

        orchestrator.register_hook(Phase.COMPILE_EVENTS, add_broken_resource)
        with pytest.raises(DeploymentFailedError) as excinfo:
            await orchestrator.deploy(no_deploy=True)
        assert isinstance(excinfo.value.__cause__, DanglingReferenceError)
        assert excinfo.value.report.phases[-1].phase == "compileFunctions"

    @pytest.mark.asyncio
    async def test_monitor_failure_reports_reason(self, service, make_orchestrator, existing_stack, stack_reply):
        existing_stack.script(
            "CloudFormation",
            "describeStacks",
            stack_reply("UPDATE_COMPLETE"),
            stack_reply("UPDATE_COMPLETE"),
            stack_reply("UPDATE_ROLLBACK_IN_PROGRESS", "Function code too large"),
        )
        with pytest.raises(DeploymentFailedError, match="Function code too large") as excinfo:
            await make_orchestrator(service).deploy()
        assert excinfo.value.report.phases[-1].phase == "monitor"
        assert existing_stack.calls_to("S3", "deleteObjects") == []


class TestRedeploy:
    @pytest.mark.asyncio
    async def test_existing_stack_is_updated(self, service, make_orchestrator, existing_stack):
        orchestrator = make_orchestrator(service)
        report = await orchestrator.deploy()

        assert report.outcome == "completed"
        assert report.operation is StackOperation.UPDATE
        assert report.artifact_directory == ARTIFACT_DIRECTORY
        assert report.outputs == {"ServerlessDeploymentBucketName": "deploy-bucket"}
        assert existing_stack.calls_to("CloudFormation", "createStack") == []
        assert f"{ARTIFACT_DIRECTORY}/first-service.zip" in existing_stack.objects
        assert f"{ARTIFACT_DIRECTORY}/compiled-cloudformation-template.json" in existing_stack.objects

        body = json.loads(existing_stack.calls_to("CloudFormation", "updateStack")[0]["TemplateBody"])
        code = body["Resources"]["FirstLambdaFunction"]["Properties"]["Code"]
        assert code == {
            "S3Bucket": {"Ref": "ServerlessDeploymentBucket"},
            "S3Key": f"{ARTIFACT_DIRECTORY}/first-service.zip",
        }

    @pytest.mark.asyncio
    async def test_status_history(self, service, make_orchestrator, existing_stack):
        orchestrator = make_orchestrator(service)
        await orchestrator.deploy()
        assert [t.to_status for t in orchestrator.status.history] == [
            DeploymentStatus.COMPILING,
            DeploymentStatus.UPLOADING,
            DeploymentStatus.RECONCILING,
            DeploymentStatus.MONITORING,
            DeploymentStatus.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_dont_monitor_schedules(self, service, make_orchestrator, existing_stack):
        report = await make_orchestrator(service).deploy(dont_monitor=True)
        assert report.outcome == "scheduled"
        states = {record.phase: record.state for record in report.phases}
        assert states["monitor"] == "skipped"
        assert states["cleanup"] == "passed"

    @pytest.mark.asyncio
    async def test_old_deployments_are_cleaned(self, service, make_orchestrator, existing_stack, settings):
        for index in range(6):
            existing_stack.objects[f"serverless/first-service/dev/{index}-old/first-service.zip"] = {
                "Body": b"",
                "Metadata": {},
            }
        await make_orchestrator(service).deploy()
        remaining = sorted({key.rsplit("/", 1)[0] for key in existing_stack.objects})
        assert len(remaining) == settings.artifact_keep_count
        assert ARTIFACT_DIRECTORY in remaining
        assert "serverless/first-service/dev/0-old" not in remaining


class TestHooks:
    @pytest.mark.asyncio
    async def test_plugin_hooks_run_around_phases(self, service, make_orchestrator):
        orchestrator = make_orchestrator(service)
        seen: list[str] = []
        orchestrator.register_hook(Phase.PACKAGE, lambda ctx: seen.append("before-package"), timing=HookTiming.BEFORE)
        orchestrator.register_hook(
            Phase.PACKAGE, lambda ctx: seen.append(f"after-package:{len(ctx.artifacts)}"), timing=HookTiming.AFTER
        )
        orchestrator.register_hook(
            Phase.COMPILE_EVENTS, lambda ctx: seen.append("events"), timing=HookTiming.AFTER
        )

        await orchestrator.deploy(no_deploy=True)

        assert seen == ["events", "before-package", "after-package:1"]

    def test_timestamp_read_once(self, service, fake_client, settings):
        ticks = iter([1.0, 2.0, 3.0])
        orchestrator = Orchestrator(service, fake_client, settings=settings, clock=lambda: next(ticks))
        assert orchestrator.attempt.timestamp_ms == 1000
        assert orchestrator.context.attempt is orchestrator.attempt


class TestOtherCommands:
    @pytest.mark.asyncio
    async def test_deploy_function(self, service, make_orchestrator, fake_client):
        fake_client.script("Lambda", "getFunction", {"Configuration": {"FunctionName": "first-service-dev-first"}})

        name = await make_orchestrator(service).deploy_function("first")

        assert name == "first-service-dev-first"
        update = fake_client.calls_to("Lambda", "updateFunctionCode")[0]
        assert update["FunctionName"] == "first-service-dev-first"
        assert update["ZipFile"][:2] == b"PK"

    @pytest.mark.asyncio
    async def test_deploy_function_not_deployed(self, service, make_orchestrator, fake_client):
        fake_client.script("Lambda", "getFunction", ProviderError(ErrorKind.NOT_FOUND, "Function not found"))
        with pytest.raises(StackNotFoundError, match="not yet deployed"):
            await make_orchestrator(service).deploy_function("first")
        assert fake_client.calls_to("Lambda", "updateFunctionCode") == []

    @pytest.mark.asyncio
    async def test_list_deployments(self, service, make_orchestrator, fake_client):
        fake_client.script(
            "CloudFormation",
            "describeStackResource",
            {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
        )
        fake_client.objects[f"{ARTIFACT_DIRECTORY}/first-service.zip"] = {"Body": b"", "Metadata": {}}
        listings = await make_orchestrator(service).list_deployments()
        assert [l.directory for l in listings] == [ARTIFACT_DIRECTORY]
        assert listings[0].files == ["first-service.zip"]

    @pytest.mark.asyncio
    async def test_remove(self, service, make_orchestrator, fake_client, stack_reply, missing_stack):
        fake_client.script(
            "CloudFormation",
            "describeStackResource",
            {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
        )
        fake_client.script(
            "CloudFormation",
            "describeStacks",
            stack_reply("UPDATE_COMPLETE"),
            stack_reply("DELETE_IN_PROGRESS"),
            missing_stack(),
        )
        fake_client.objects[f"{ARTIFACT_DIRECTORY}/first-service.zip"] = {"Body": b"", "Metadata": {}}

        state = await make_orchestrator(service).remove()

        assert state.status == "DELETE_COMPLETE"
        assert fake_client.objects == {}
        assert fake_client.calls_to("CloudFormation", "deleteStack") == [{"StackName": "first-service-dev"}]
