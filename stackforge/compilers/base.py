"""Abstract base compiler with an enforced run wrapper.

Every concrete compiler implements only ``compile()``.  The ``run()``
wrapper is **not overridable**: it checks the Resources precondition,
logs, and hands the compiler the template for the duration of its
phase.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar, final

from stackforge.core.errors import InvalidEventConfigError
from stackforge.core.hooks import Phase
from stackforge.core.naming import NamingResolver
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument

logger = logging.getLogger(__name__)


class BaseCompiler(abc.ABC):
    """Abstract base for all resource compilers.

    Subclasses **must** implement:
        * ``name`` -- short identifier used in logs and errors.
        * ``compile(service, template)`` -- merge fragments into *template*.

    Subclasses **may** override:
        * ``phase`` -- the lifecycle phase the compiler is registered on.

    Compilers must be idempotent: compiling an unchanged service twice
    leaves the template byte-identical.

    Parameters
    ----------
    naming:
        The deployment's naming resolver.
    timestamp_ms:
        The attempt timestamp, for resources versioned per deployment.
    """

    phase: ClassVar[Phase] = Phase.COMPILE_EVENTS

    def __init__(self, naming: NamingResolver, timestamp_ms: int) -> None:
        self.naming = naming
        self.timestamp_ms = timestamp_ms

    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...

    @abc.abstractmethod
    def compile(self, service: ServiceSpec, template: TemplateDocument) -> None:
        ...

    # ------------------------------------------------------------------
    # Lifecycle -- NOT overridable
    # ------------------------------------------------------------------

    @final
    def run(self, service: ServiceSpec, template: TemplateDocument) -> None:
        template.require_resources(self.name)
        logger.debug("Compiling %s", self.name)
        self.compile(service, template)

    @final
    def as_hook(self, context: Any) -> None:
        """Hook callback adapter: compile the context's template."""
        self.run(context.service, context.require_template())

    # ------------------------------------------------------------------
    # Helpers shared by event compilers
    # ------------------------------------------------------------------

    def events_of_type(self, service: ServiceSpec, event_type: str) -> list[tuple[str, int, Any]]:
        """``(function_key, 1-based index, raw value)`` for every event of
        *event_type*, in declaration order."""
        found = []
        for function_key, function in service.functions.items():
            index = 0
            for event in function.events:
                if event_type in event:
                    index += 1
                    found.append((function_key, index, event[event_type]))
        return found

    @staticmethod
    def shape_error(function_key: str, event_type: str, syntax: str) -> InvalidEventConfigError:
        return InvalidEventConfigError(
            function_key,
            f"{event_type} event of function {function_key} is not an object nor a "
            f"string. The correct syntax is: {syntax}. Please check the docs for "
            "more info.",
        )

    def function_arn(self, function_key: str) -> dict[str, Any]:
        return {"Fn::GetAtt": [self.naming.lambda_logical_id(function_key), "Arn"]}

    @staticmethod
    def append_unique(items: list[Any], item: Any) -> None:
        if item not in items:
            items.append(item)
