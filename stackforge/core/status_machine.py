"""Deployment attempt status machine.

Enforces the VALID_TRANSITIONS table and keeps an in-memory history of
every transition for the final report and the logs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from stackforge.core.errors import InvalidTransitionError
from stackforge.models.deployment import (
    VALID_TRANSITIONS,
    DeploymentAttempt,
    DeploymentStatus,
)

logger = logging.getLogger(__name__)


class StatusTransition(BaseModel):
    """Records a single status change."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    from_status: DeploymentStatus
    to_status: DeploymentStatus
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeploymentStatusMachine:
    """Moves a :class:`DeploymentAttempt` through its statuses."""

    def __init__(self, attempt: DeploymentAttempt) -> None:
        self.attempt = attempt
        self.history: list[StatusTransition] = []

    @property
    def status(self) -> DeploymentStatus:
        return self.attempt.status

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.attempt.status]

    def can_transition(self, target: DeploymentStatus) -> bool:
        return target in VALID_TRANSITIONS[self.attempt.status]

    def transition(self, target: DeploymentStatus) -> StatusTransition:
        current = self.attempt.status
        if current == target:
            raise InvalidTransitionError(
                f"Attempt {self.attempt.attempt_id} is already {current.value}"
            )
        allowed = VALID_TRANSITIONS[current]
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {self.attempt.attempt_id} from {current.value} "
                f"to {target.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        record = StatusTransition(
            attempt_id=self.attempt.attempt_id,
            from_status=current,
            to_status=target,
        )
        self.attempt.status = target
        self.history.append(record)
        logger.info("Deployment %s: %s -> %s", self.attempt.attempt_id, current.value, target.value)
        return record

    def advance_to(self, target: DeploymentStatus) -> None:
        """Transition unless the attempt is already at *target*."""
        if self.attempt.status != target:
            self.transition(target)
