"""Deployment attempt, remote stack state and report models."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeploymentStatus(str, Enum):
    """Status of one orchestration run."""

    PENDING = "pending"
    COMPILING = "compiling"
    UPLOADING = "uploading"
    RECONCILING = "reconciling"
    MONITORING = "monitoring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# SUCCEEDED and FAILED are terminal.  COMPILING -> SUCCEEDED covers
# package-only runs; RECONCILING -> SUCCEEDED covers unmonitored runs.
VALID_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {DeploymentStatus.COMPILING, DeploymentStatus.FAILED},
    DeploymentStatus.COMPILING: {
        DeploymentStatus.UPLOADING,
        DeploymentStatus.SUCCEEDED,
        DeploymentStatus.FAILED,
    },
    DeploymentStatus.UPLOADING: {DeploymentStatus.RECONCILING, DeploymentStatus.FAILED},
    DeploymentStatus.RECONCILING: {
        DeploymentStatus.MONITORING,
        DeploymentStatus.SUCCEEDED,
        DeploymentStatus.FAILED,
    },
    DeploymentStatus.MONITORING: {DeploymentStatus.SUCCEEDED, DeploymentStatus.FAILED},
    DeploymentStatus.SUCCEEDED: set(),
    DeploymentStatus.FAILED: set(),
}


class StackOperation(str, Enum):
    """Kind of remote stack operation being monitored."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def complete_status(self) -> str:
        return f"{self.name}_COMPLETE"


class DeploymentAttempt(BaseModel):
    """One orchestration run.

    ``timestamp_ms`` is generated once and threaded through every
    component that needs it (version logical ids, the artifact
    directory) so one deployment never mixes two clock readings.
    Only the orchestrator's status machine mutates ``status``.
    """

    attempt_id: str = Field(default_factory=lambda: f"deploy-{uuid.uuid4().hex[:12]}")
    service: str
    stage: str
    region: str
    timestamp_ms: int = Field(default_factory=lambda: int(time.time() * 1000))
    status: DeploymentStatus = DeploymentStatus.PENDING
    artifact_directory: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StackState(BaseModel):
    """Remote-observed stack state; replaced wholesale on every poll."""

    model_config = ConfigDict(frozen=True)

    stack_id: str
    stack_name: str = ""
    status: str | None = None
    status_reason: str | None = None
    outputs: dict[str, str] = {}

    @classmethod
    def from_describe(cls, stack_id: str, response: dict[str, Any]) -> StackState:
        """Build a state from a ``DescribeStacks`` response.

        Sparse responses (no ``Stacks`` entry, no status) produce a state
        with ``status=None`` instead of failing here; the monitor decides
        what a missing status means.
        """
        stacks = response.get("Stacks") or []
        if not stacks:
            return cls(stack_id=stack_id)
        stack = stacks[0]
        outputs = {
            output["OutputKey"]: str(output.get("OutputValue", ""))
            for output in stack.get("Outputs") or []
            if "OutputKey" in output
        }
        return cls(
            stack_id=stack.get("StackId") or stack_id,
            stack_name=stack.get("StackName", ""),
            status=stack.get("StackStatus"),
            status_reason=stack.get("StackStatusReason"),
            outputs=outputs,
        )


class PhaseRecord(BaseModel):
    """What happened to one lifecycle phase during an attempt."""

    model_config = ConfigDict(frozen=True)

    phase: str
    state: str  # "passed", "failed", "skipped"
    error: str | None = None
    duration_ms: int = 0


class DeploymentReport(BaseModel):
    """Final, user-facing summary of an attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    service: str
    stage: str
    region: str
    stack_name: str
    status: DeploymentStatus
    outcome: str  # "completed", "scheduled", "packaged", "failed"
    artifact_directory: str = ""
    operation: StackOperation | None = None
    outputs: dict[str, str] = {}
    phases: list[PhaseRecord] = []
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == DeploymentStatus.SUCCEEDED


class DeploymentListing(BaseModel):
    """One deployment directory found in the deployment bucket."""

    model_config = ConfigDict(frozen=True)

    directory: str
    timestamp_ms: int
    files: list[str] = []

    @property
    def deployed_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=timezone.utc)
