"""Lifecycle phases and the hook registry.

Each phase is a named hook point holding ordered callbacks for three
timings: ``before``, ``on`` (the phase's own work) and ``after``.
Callbacks receive the deployment context, may be plain functions or
coroutines, and are awaited one at a time in registration order.  The
first exception propagates and the remaining callbacks do not run.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

HookCallback = Callable[[Any], Union[Awaitable[None], None]]


class Phase(str, Enum):
    """Pipeline phases, in execution order."""

    VALIDATE = "validate"
    INITIALIZE = "initialize"
    COMPILE_EVENTS = "compileEvents"
    COMPILE_FUNCTIONS = "compileFunctions"
    GENERATE_ARTIFACT_DIRECTORY = "generateArtifactDirectoryName"
    PACKAGE = "package"
    UPLOAD = "upload"
    RECONCILE_STACK = "reconcileStack"
    MONITOR = "monitor"
    CLEANUP = "cleanup"


PIPELINE: list[Phase] = list(Phase)


class HookTiming(str, Enum):
    BEFORE = "before"
    ON = "on"
    AFTER = "after"


class HookRegistration(BaseModel):
    """A callback bound to one phase and timing."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    phase: Phase
    timing: HookTiming
    name: str
    callback: HookCallback

    @property
    def hook_name(self) -> str:
        """``before:deploy:upload`` style name used in logs."""
        prefix = "" if self.timing is HookTiming.ON else f"{self.timing.value}:"
        return f"{prefix}deploy:{self.phase.value}"


class LifecycleHooks:
    """Ordered callbacks per (phase, timing)."""

    def __init__(self) -> None:
        self._hooks: dict[tuple[Phase, HookTiming], list[HookRegistration]] = {}

    def register(
        self,
        phase: Phase,
        callback: HookCallback,
        *,
        timing: HookTiming = HookTiming.ON,
        name: str | None = None,
    ) -> HookRegistration:
        registration = HookRegistration(
            phase=phase,
            timing=timing,
            name=name or getattr(callback, "__qualname__", repr(callback)),
            callback=callback,
        )
        self._hooks.setdefault((phase, timing), []).append(registration)
        return registration

    def before(self, phase: Phase, callback: HookCallback, *, name: str | None = None) -> HookRegistration:
        return self.register(phase, callback, timing=HookTiming.BEFORE, name=name)

    def after(self, phase: Phase, callback: HookCallback, *, name: str | None = None) -> HookRegistration:
        return self.register(phase, callback, timing=HookTiming.AFTER, name=name)

    def registrations(self, phase: Phase, timing: HookTiming | None = None) -> list[HookRegistration]:
        timings = [timing] if timing else list(HookTiming)
        return [
            registration
            for each in timings
            for registration in self._hooks.get((phase, each), [])
        ]

    async def run(self, phase: Phase, context: Any) -> int:
        """Await every callback of *phase* in order; return how many ran."""
        count = 0
        for registration in self.registrations(phase):
            logger.debug("Running %s (%s)", registration.hook_name, registration.name)
            result = registration.callback(context)
            if inspect.isawaitable(result):
                await result
            count += 1
        return count
