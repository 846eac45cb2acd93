"""Polls a stack until its operation completes.

States: ``InProgress(kind) -> Complete(kind) | Failed``.

Each tick sleeps (cooperatively) and then describes the stack.  A status
in the allow-list keeps the loop going; the exact ``<KIND>_COMPLETE``
status ends it; anything else, including a missing status, stops
polling immediately with a :class:`StackMonitorError` that carries the
remote status reason.  There is no overall deadline: callers that need
one cancel the coroutine.
"""

from __future__ import annotations

import asyncio
import logging

from stackforge.core.errors import StackMonitorError
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError, Sleeper
from stackforge.models.deployment import StackOperation, StackState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 5000

# Statuses tolerated while waiting on each operation.  A create may still
# see DELETE_IN_PROGRESS from a stack of the same name being torn down.
ALLOWED_STATUSES: dict[StackOperation, frozenset[str]] = {
    StackOperation.CREATE: frozenset({
        "CREATE_IN_PROGRESS",
        "CREATE_COMPLETE",
        "DELETE_IN_PROGRESS",
    }),
    StackOperation.UPDATE: frozenset({
        "UPDATE_IN_PROGRESS",
        "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
        "UPDATE_COMPLETE",
    }),
    StackOperation.DELETE: frozenset({
        "DELETE_IN_PROGRESS",
        "DELETE_COMPLETE",
    }),
}


class StackMonitor:
    """Blocking-style wait on a remote stack operation.

    Parameters
    ----------
    client:
        Provider client.
    interval_ms:
        Delay before each poll; defaults to 5000 ms.
    sleep:
        Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        client: ProviderClient,
        *,
        stage: str | None = None,
        region: str | None = None,
        interval_ms: int | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self.client = client
        self.stage = stage
        self.region = region
        self.interval_ms = DEFAULT_POLL_INTERVAL_MS if interval_ms is None else interval_ms
        self._sleep = sleep or asyncio.sleep
        self.polls = 0

    async def monitor(self, operation: StackOperation | str, stack_id: str) -> StackState:
        operation = StackOperation(operation)
        allowed = ALLOWED_STATUSES[operation]
        target = operation.complete_status
        logger.info("Checking stack %s progress...", operation.value)

        self.polls = 0
        state: StackState | None = None
        while state is None or state.status != target:
            await self._sleep(self.interval_ms / 1000)
            state = await self._tick(operation, stack_id)
            if state.status is None or state.status not in allowed:
                logger.error(
                    "Stack %s reached %s: %s", stack_id, state.status, state.status_reason
                )
                raise StackMonitorError(state.status, state.status_reason)
            logger.info("Stack %s: %s", stack_id, state.status)
        logger.info("Stack %s finished", operation.value)
        return state

    async def _tick(self, operation: StackOperation, stack_id: str) -> StackState:
        try:
            response = await self.client.request(
                "CloudFormation",
                "describeStacks",
                {"StackName": stack_id},
                stage=self.stage,
                region=self.region,
            )
        except ProviderError as exc:
            if operation is StackOperation.DELETE and exc.kind is ErrorKind.NOT_FOUND:
                self.polls += 1
                return StackState(stack_id=stack_id, status="DELETE_COMPLETE")
            raise
        self.polls += 1
        return StackState.from_describe(stack_id, response)
