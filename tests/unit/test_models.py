"""Unit tests for service, artifact and deployment models."""

from __future__ import annotations

from pathlib import Path

import pytest

from stackforge.core.errors import FunctionNotFoundError
from stackforge.models.artifacts import ArtifactRef
from stackforge.models.deployment import (
    DeploymentAttempt,
    DeploymentListing,
    DeploymentStatus,
    StackOperation,
    StackState,
)
from stackforge.models.service import ServiceSpec


class TestServiceSpec:
    def test_camel_case_fields(self):
        spec = ServiceSpec.model_validate(
            {
                "service": "svc",
                "provider": {"memorySize": 512, "iamRoleStatements": [{"Effect": "Allow"}]},
                "functions": {"a": {"handler": "a.b", "memorySize": 128}},
            }
        )
        assert spec.provider.memory_size == 512
        assert spec.provider.iam_role_statements == [{"Effect": "Allow"}]
        assert spec.functions["a"].memory_size == 128

    def test_provider_defaults(self):
        spec = ServiceSpec(service="svc")
        assert spec.provider.stage == "dev"
        assert spec.provider.region == "us-east-1"
        assert spec.provider.timeout == 6
        assert spec.custom_bucket is None

    def test_bucket_shorthand(self):
        spec = ServiceSpec.model_validate(
            {"service": "svc", "provider": {"deploymentBucket": "my-bucket"}}
        )
        assert spec.custom_bucket.name == "my-bucket"

    def test_bucket_encryption_aliases(self):
        spec = ServiceSpec.model_validate(
            {
                "service": "svc",
                "provider": {
                    "deploymentBucket": {
                        "name": "b",
                        "serverSideEncryption": "AES256",
                        "sseCustomerAlgorithim": "AES256",
                        "sseKMSKeyId": "key",
                    }
                },
            }
        )
        bucket = spec.custom_bucket
        assert bucket.server_side_encryption == "AES256"
        assert bucket.sse_customer_algorithm == "AES256"
        assert bucket.sse_kms_key_id == "key"

    def test_unknown_function(self, service):
        with pytest.raises(FunctionNotFoundError, match="doesn't exist"):
            service.get_function("nope")

    def test_individual_packaging_override(self, make_service):
        spec = make_service(
            package={"individually": True},
            functions={
                "a": {"handler": "handler.first"},
                "b": {"handler": "second.handle", "package": {"individually": False}},
            },
        )
        assert spec.is_individually_packaged("a") is True
        assert spec.is_individually_packaged("b") is False

    def test_service_path(self, service, service_dir):
        assert service.service_path == service_dir


class TestArtifactRef:
    def test_remote_key_copy(self):
        ref = ArtifactRef(name="svc.zip", local_path=Path("/tmp/svc.zip"), content_hash="h", size_bytes=1)
        keyed = ref.with_remote_key("dir/svc.zip")
        assert ref.remote_key == ""
        assert keyed.remote_key == "dir/svc.zip"
        assert keyed.is_service_artifact


class TestDeploymentModels:
    def test_attempt_defaults(self):
        attempt = DeploymentAttempt(service="svc", stage="dev", region="us-east-1")
        assert attempt.status == DeploymentStatus.PENDING
        assert attempt.attempt_id.startswith("deploy-")
        assert attempt.timestamp_ms > 0

    def test_complete_status(self):
        assert StackOperation.CREATE.complete_status == "CREATE_COMPLETE"
        assert StackOperation.DELETE.complete_status == "DELETE_COMPLETE"

    def test_state_from_describe(self):
        state = StackState.from_describe(
            "id",
            {
                "Stacks": [
                    {
                        "StackId": "arn:1",
                        "StackName": "svc-dev",
                        "StackStatus": "UPDATE_COMPLETE",
                        "Outputs": [{"OutputKey": "ServiceEndpoint", "OutputValue": "https://x"}],
                    }
                ]
            },
        )
        assert state.stack_id == "arn:1"
        assert state.status == "UPDATE_COMPLETE"
        assert state.outputs == {"ServiceEndpoint": "https://x"}

    def test_sparse_describe(self):
        state = StackState.from_describe("id", {})
        assert state.stack_id == "id"
        assert state.status is None

    def test_listing_datetime(self):
        listing = DeploymentListing(directory="d", timestamp_ms=0)
        assert listing.deployed_at.year == 1970
