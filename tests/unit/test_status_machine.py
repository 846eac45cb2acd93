"""Unit tests for the deployment status machine."""

from __future__ import annotations

import pytest

from stackforge.core.errors import InvalidTransitionError
from stackforge.core.status_machine import DeploymentStatusMachine
from stackforge.models.deployment import DeploymentAttempt, DeploymentStatus


@pytest.fixture
def machine() -> DeploymentStatusMachine:
    return DeploymentStatusMachine(DeploymentAttempt(service="svc", stage="dev", region="us-east-1"))


class TestTransitions:
    def test_full_happy_path(self, machine):
        for status in (
            DeploymentStatus.COMPILING,
            DeploymentStatus.UPLOADING,
            DeploymentStatus.RECONCILING,
            DeploymentStatus.MONITORING,
            DeploymentStatus.SUCCEEDED,
        ):
            machine.transition(status)
        assert machine.status == DeploymentStatus.SUCCEEDED
        assert machine.is_terminal
        assert len(machine.history) == 5

    def test_package_only_run(self, machine):
        machine.transition(DeploymentStatus.COMPILING)
        assert machine.can_transition(DeploymentStatus.SUCCEEDED)
        machine.transition(DeploymentStatus.SUCCEEDED)

    def test_skipping_ahead_rejected(self, machine):
        with pytest.raises(InvalidTransitionError, match="Cannot transition"):
            machine.transition(DeploymentStatus.MONITORING)
        assert machine.status == DeploymentStatus.PENDING
        assert machine.history == []

    def test_same_status_rejected(self, machine):
        with pytest.raises(InvalidTransitionError, match="already"):
            machine.transition(DeploymentStatus.PENDING)

    def test_terminal_is_final(self, machine):
        machine.transition(DeploymentStatus.FAILED)
        assert machine.is_terminal
        with pytest.raises(InvalidTransitionError):
            machine.transition(DeploymentStatus.COMPILING)

    def test_advance_to_is_idempotent(self, machine):
        machine.advance_to(DeploymentStatus.COMPILING)
        machine.advance_to(DeploymentStatus.COMPILING)
        assert len(machine.history) == 1

    def test_history_records_edges(self, machine):
        record = machine.transition(DeploymentStatus.COMPILING)
        assert record.from_status == DeploymentStatus.PENDING
        assert record.to_status == DeploymentStatus.COMPILING
        assert record.attempt_id == machine.attempt.attempt_id
