"""Tests for the Typer CLI commands."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

import stackforge.cli.common as common
from stackforge.cli.app import app
from stackforge.config import config

SERVICE_YAML = """\
service: first-service
provider:
  name: aws
  stage: dev
  region: us-east-1
functions:
  first:
    handler: handler.first
"""

runner = CliRunner()


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register the deploy and remove commands."""

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "deploy" in result.output
        assert "remove" in result.output

    def test_deploy_help_lists_subcommands(self):
        result = runner.invoke(app, ["deploy", "--help"])
        assert result.exit_code == 0
        assert "function" in result.output
        assert "list" in result.output


@pytest.fixture
def cli_service(service_dir, fake_client, monkeypatch):
    """A service directory whose commands talk to the fake provider."""
    (service_dir / "serverless.yml").write_text(SERVICE_YAML)
    monkeypatch.setattr(common, "make_client", lambda region=None: fake_client)
    monkeypatch.setattr(config, "poll_interval_ms", 0)
    return service_dir


class TestDeployCommand:
    def test_no_deploy(self, cli_service, fake_client):
        result = runner.invoke(app, ["deploy", "--no-deploy", "-c", str(cli_service)])
        assert result.exit_code == 0, result.output
        assert "PACKAGED" in result.output
        assert fake_client.calls == []
        assert (cli_service / ".serverless" / "first-service.zip").is_file()

    def test_region_mismatch_exits_1(self, cli_service, fake_client):
        (cli_service / "serverless.yml").write_text(
            SERVICE_YAML.replace("region: us-east-1", "region: us-east-1\n  deploymentBucket: com.serverless.deploys")
        )
        fake_client.script("S3", "getBucketLocation", {"LocationConstraint": "us-west-1"})
        result = runner.invoke(app, ["deploy", "-c", str(cli_service)])
        assert result.exit_code == 1
        assert "not in the same region" in result.output
        assert fake_client.calls_to("CloudFormation", "createStack") == []

    def test_redeploy_without_monitoring(self, cli_service, fake_client, stack_reply):
        fake_client.script("CloudFormation", "describeStacks", stack_reply("UPDATE_COMPLETE"))
        fake_client.script(
            "CloudFormation",
            "describeStackResource",
            {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
        )
        result = runner.invoke(app, ["deploy", "--no-monitor", "-c", str(cli_service), "-s", "dev"])
        assert result.exit_code == 0, result.output
        assert "SCHEDULED" in result.output
        assert len(fake_client.calls_to("CloudFormation", "updateStack")) == 1

    def test_missing_service_file(self, tmp_path, fake_client, monkeypatch):
        monkeypatch.setattr(common, "make_client", lambda region=None: fake_client)
        result = runner.invoke(app, ["deploy", "-c", str(tmp_path)])
        assert result.exit_code == 1
        assert "No service file found" in result.output


class TestDeployFunctionCommand:
    def test_success(self, cli_service, fake_client):
        fake_client.script("Lambda", "getFunction", {"Configuration": {}})
        result = runner.invoke(app, ["deploy", "function", "-f", "first", "-c", str(cli_service)])
        assert result.exit_code == 0, result.output
        assert "first-service-dev-first" in result.output

    def test_unknown_function(self, cli_service):
        result = runner.invoke(app, ["deploy", "function", "-f", "nope", "-c", str(cli_service)])
        assert result.exit_code == 1
        assert "doesn't exist" in result.output


class TestListAndRemove:
    def test_empty_listing(self, cli_service, fake_client):
        fake_client.script(
            "CloudFormation",
            "describeStackResource",
            {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
        )
        result = runner.invoke(app, ["deploy", "list", "-c", str(cli_service)])
        assert result.exit_code == 0, result.output
        assert "No deployments found" in result.output

    def test_remove(self, cli_service, fake_client, stack_reply, missing_stack):
        fake_client.script(
            "CloudFormation",
            "describeStackResource",
            {"StackResourceDetail": {"PhysicalResourceId": "deploy-bucket"}},
        )
        fake_client.script(
            "CloudFormation", "describeStacks", stack_reply("UPDATE_COMPLETE"), missing_stack()
        )
        result = runner.invoke(app, ["remove", "-c", str(cli_service)])
        assert result.exit_code == 0, result.output
        assert "Stack removed" in result.output

    def test_remove_missing_stack(self, cli_service, fake_client, missing_stack):
        fake_client.script("CloudFormation", "describeStackResource", missing_stack())
        result = runner.invoke(app, ["remove", "-c", str(cli_service)])
        assert result.exit_code == 1
        assert "does not exist" in result.output
