"""Per-deployment arena handed from phase to phase.

The orchestrator creates one context per attempt and passes it by
reference to every hook callback.  Phases run strictly one after the
other, so whoever holds the context during its phase is the only
writer of the template.
"""

from __future__ import annotations

from pathlib import Path

from stackforge.core.naming import NamingResolver
from stackforge.models.artifacts import ArtifactRef
from stackforge.models.deployment import DeploymentAttempt, StackOperation, StackState
from stackforge.models.service import ServiceSpec
from stackforge.models.template import TemplateDocument


class DeploymentContext:
    """Mutable state of one deployment attempt."""

    def __init__(
        self,
        service: ServiceSpec,
        attempt: DeploymentAttempt,
        naming: NamingResolver,
        build_dir: Path,
    ) -> None:
        self.service = service
        self.attempt = attempt
        self.naming = naming
        self.build_dir = build_dir

        self.core_template: TemplateDocument | None = None
        self.template: TemplateDocument | None = None
        self.artifacts: list[ArtifactRef] = []
        self.bucket_name: str | None = None
        self.template_key: str | None = None
        self.stack_operation: StackOperation | None = None
        self.stack_id: str | None = None
        self.stack_state: StackState | None = None
        self.removed_keys: list[str] = []

    @property
    def stage(self) -> str:
        return self.attempt.stage

    @property
    def region(self) -> str:
        return self.attempt.region

    @property
    def stack_name(self) -> str:
        return self.naming.stack_name()

    def require_template(self) -> TemplateDocument:
        if self.template is None:
            raise RuntimeError("The compiled template is not available before Initialize")
        return self.template
