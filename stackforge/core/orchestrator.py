"""Deployment orchestrator -- the central coordinator of one deployment.

The Orchestrator wires the naming resolver, compilers, packager,
uploader, stack reconciler and stack monitor into the phase pipeline::

    validate -> initialize -> compileEvents -> compileFunctions
        -> generateArtifactDirectoryName -> package -> upload
        -> reconcileStack -> monitor -> cleanup

Every phase is a hook point.  The orchestrator registers its own work as
the first ``on`` callback of each phase at construction time; compilers
and plugins register further callbacks (``before``/``on``/``after``)
without the orchestrator knowing who they are.  The first error aborts
the remaining phases and the attempt is reported as failed; nothing is
rolled back beyond the stack's own rollback on failed creation.

One Orchestrator drives exactly one :class:`DeploymentAttempt`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path

from stackforge.compilers import DEFAULT_COMPILERS, BaseCompiler, build_core_template
from stackforge.config import DeployConfig, config as default_config
from stackforge.core.cleanup import DeploymentBucketJanitor
from stackforge.core.context import DeploymentContext
from stackforge.core.errors import (
    ConfigurationError,
    DeploymentFailedError,
    StackNotFoundError,
)
from stackforge.core.hooks import PIPELINE, HookCallback, HookTiming, LifecycleHooks, Phase
from stackforge.core.naming import (
    COMPILED_TEMPLATE_FILENAME,
    CORE_TEMPLATE_FILENAME,
    UPDATE_TEMPLATE_FILENAME,
    NamingResolver,
    check_bucket_name,
)
from stackforge.core.packager import Packager
from stackforge.core.provider import ErrorKind, ProviderClient, ProviderError, Sleeper
from stackforge.core.reconciler import StackReconciler, substitute_artifact_keys
from stackforge.core.status_machine import DeploymentStatusMachine
from stackforge.core.uploader import ArtifactUploader
from stackforge.models.deployment import (
    DeploymentAttempt,
    DeploymentListing,
    DeploymentReport,
    DeploymentStatus,
    PhaseRecord,
    StackOperation,
    StackState,
)
from stackforge.models.service import ServiceSpec
from stackforge.monitor.stack_monitor import StackMonitor

logger = logging.getLogger(__name__)

# Status the attempt enters when a phase starts; cleanup keeps the
# status of the phase before it.
PHASE_STATUS: dict[Phase, DeploymentStatus] = {
    Phase.VALIDATE: DeploymentStatus.COMPILING,
    Phase.INITIALIZE: DeploymentStatus.COMPILING,
    Phase.COMPILE_EVENTS: DeploymentStatus.COMPILING,
    Phase.COMPILE_FUNCTIONS: DeploymentStatus.COMPILING,
    Phase.GENERATE_ARTIFACT_DIRECTORY: DeploymentStatus.COMPILING,
    Phase.PACKAGE: DeploymentStatus.COMPILING,
    Phase.UPLOAD: DeploymentStatus.UPLOADING,
    Phase.RECONCILE_STACK: DeploymentStatus.RECONCILING,
    Phase.MONITOR: DeploymentStatus.MONITORING,
}

_NO_DEPLOY_SKIPS = frozenset({Phase.UPLOAD, Phase.RECONCILE_STACK, Phase.MONITOR, Phase.CLEANUP})


class Orchestrator:
    """Drives one deployment attempt of a service.

    Parameters
    ----------
    service:
        The service description.
    client:
        Provider client used for every remote call.
    stage, region:
        Overrides for ``provider.stage`` / ``provider.region``.
    settings:
        Defaults for poll interval, concurrency, layout; the module
        ``config`` singleton when omitted.
    hooks:
        Pre-populated hook registry (plugins); a fresh one when omitted.
    compilers:
        Compiler classes to register, in order; the built-in set when
        omitted.
    poll_interval_ms:
        Stack monitor interval override.
    sleep:
        Awaitable sleep for the monitor, injectable for tests.
    clock:
        Returns seconds since the epoch; read once for the attempt
        timestamp.
    """

    def __init__(
        self,
        service: ServiceSpec,
        client: ProviderClient,
        *,
        stage: str | None = None,
        region: str | None = None,
        settings: DeployConfig | None = None,
        hooks: LifecycleHooks | None = None,
        compilers: list[type[BaseCompiler]] | None = None,
        poll_interval_ms: int | None = None,
        sleep: Sleeper | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.service = service
        self.client = client
        self.settings = settings or default_config
        self.stage = stage or service.provider.stage
        self.region = region or service.provider.region

        self.naming = NamingResolver(
            service.service,
            self.stage,
            self.region,
            deployment_prefix=self.settings.deployment_prefix,
        )
        self.build_dir = Path(service.service_path) / self.settings.build_dir_name
        self.reconciler = StackReconciler(client, service, self.naming)
        self.monitor = StackMonitor(
            client,
            stage=self.stage,
            region=self.region,
            interval_ms=poll_interval_ms if poll_interval_ms is not None else self.settings.poll_interval_ms,
            sleep=sleep,
        )

        # Attempt state -- the timestamp is read exactly once.
        now = (clock or time.time)()
        self.attempt = DeploymentAttempt(
            service=service.service,
            stage=self.stage,
            region=self.region,
            timestamp_ms=int(now * 1000),
        )
        self.status = DeploymentStatusMachine(self.attempt)
        self.context = DeploymentContext(service, self.attempt, self.naming, self.build_dir)
        self._no_deploy = False

        # Built-in phase work first, then compilers, so plugins that were
        # registered on `hooks` beforehand still run in registration order.
        self.hooks = hooks or LifecycleHooks()
        self._register_builtin_hooks()
        for compiler_cls in compilers if compilers is not None else DEFAULT_COMPILERS:
            self.register_compiler(compiler_cls(self.naming, self.attempt.timestamp_ms))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_compiler(self, compiler: BaseCompiler) -> None:
        self.hooks.register(compiler.phase, compiler.as_hook, name=compiler.name)

    def register_hook(
        self,
        phase: Phase,
        callback: HookCallback,
        *,
        timing: HookTiming = HookTiming.ON,
        name: str | None = None,
    ) -> None:
        self.hooks.register(phase, callback, timing=timing, name=name)

    def _register_builtin_hooks(self) -> None:
        builtin = {
            Phase.VALIDATE: self._validate,
            Phase.INITIALIZE: self._initialize,
            Phase.GENERATE_ARTIFACT_DIRECTORY: self._generate_artifact_directory,
            Phase.PACKAGE: self._package,
            Phase.UPLOAD: self._upload,
            Phase.RECONCILE_STACK: self._reconcile,
            Phase.MONITOR: self._monitor,
            Phase.CLEANUP: self._cleanup,
        }
        for phase, callback in builtin.items():
            self.hooks.register(phase, callback, name=f"builtin:{phase.value}")

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(self, *, no_deploy: bool = False, dont_monitor: bool = False) -> DeploymentReport:
        """Run the phase pipeline.

        ``no_deploy`` stops after packaging (outcome ``"packaged"``);
        ``dont_monitor`` skips the monitor phase after submission
        (outcome ``"scheduled"``).  Raises :class:`DeploymentFailedError`
        when a phase fails.
        """
        self._no_deploy = no_deploy
        skipped: set[Phase] = set()
        if no_deploy:
            skipped |= _NO_DEPLOY_SKIPS
        if dont_monitor:
            skipped.add(Phase.MONITOR)

        records: list[PhaseRecord] = []
        logger.info(
            "Deploying %s to stage %s (%s), attempt %s",
            self.service.service,
            self.stage,
            self.region,
            self.attempt.attempt_id,
        )
        for phase in PIPELINE:
            if phase in skipped:
                records.append(PhaseRecord(phase=phase.value, state="skipped"))
                continue
            started = time.monotonic()
            try:
                target = PHASE_STATUS.get(phase)
                if target is not None:
                    self.status.advance_to(target)
                await self.hooks.run(phase, self.context)
                if phase is Phase.COMPILE_FUNCTIONS:
                    self.context.require_template().verify_references()
            except Exception as exc:
                records.append(
                    PhaseRecord(
                        phase=phase.value,
                        state="failed",
                        error=str(exc),
                        duration_ms=_elapsed_ms(started),
                    )
                )
                self.status.transition(DeploymentStatus.FAILED)
                report = self._report(records, "failed", error=str(exc))
                logger.error("Deployment failed during %s: %s", phase.value, exc)
                raise DeploymentFailedError(str(exc), report) from exc
            records.append(
                PhaseRecord(phase=phase.value, state="passed", duration_ms=_elapsed_ms(started))
            )

        self.status.transition(DeploymentStatus.SUCCEEDED)
        if no_deploy:
            logger.info("Did not deploy due to --noDeploy")
            outcome = "packaged"
        elif dont_monitor:
            outcome = "scheduled"
        else:
            outcome = "completed"
        return self._report(records, outcome)

    def _report(self, records: list[PhaseRecord], outcome: str, *, error: str | None = None) -> DeploymentReport:
        state = self.context.stack_state
        return DeploymentReport(
            attempt_id=self.attempt.attempt_id,
            service=self.service.service,
            stage=self.stage,
            region=self.region,
            stack_name=f"{self.service.service}-{self.stage}",
            status=self.attempt.status,
            outcome=outcome,
            artifact_directory=self.attempt.artifact_directory,
            operation=self.context.stack_operation,
            outputs=dict(state.outputs) if state else {},
            phases=records,
            error=error,
        )

    # ------------------------------------------------------------------
    # Built-in phase work
    # ------------------------------------------------------------------

    def _validate(self, context: DeploymentContext) -> None:
        self.naming.stack_name()
        if not Path(self.service.service_path).is_dir():
            raise ConfigurationError(
                f"Service directory {self.service.service_path} does not exist"
            )
        for function_key, function in self.service.functions.items():
            self.naming.function_name(function_key, function.name)
        if self.service.custom_bucket is not None:
            check_bucket_name(self.service.custom_bucket.name)

    async def _initialize(self, context: DeploymentContext) -> None:
        core = build_core_template()
        context.bucket_name = await self.reconciler.configure_deployment_bucket(
            core, check_region=not self._no_deploy
        )
        core.write(self.build_dir / CORE_TEMPLATE_FILENAME)
        context.core_template = core
        context.template = core.clone()

    def _generate_artifact_directory(self, context: DeploymentContext) -> None:
        self.attempt.artifact_directory = self.naming.artifact_directory(self.attempt.timestamp_ms)

    async def _package(self, context: DeploymentContext) -> None:
        packager = Packager(self.service, self.naming, self.build_dir)
        context.artifacts = await asyncio.to_thread(packager.package_all)
        context.require_template().write(self.build_dir / UPDATE_TEMPLATE_FILENAME)

    async def _upload(self, context: DeploymentContext) -> None:
        if context.bucket_name is None:
            submission = await self.reconciler.ensure_stack(
                context.core_template or build_core_template()
            )
            if submission is not None:
                await self.monitor.monitor(submission.operation, submission.stack_id)
            context.bucket_name = await self.reconciler.resolve_bucket_name()

        uploader = ArtifactUploader(
            self.client,
            context.bucket_name,
            self.attempt.artifact_directory,
            stage=self.stage,
            region=self.region,
            concurrency=self.settings.upload_concurrency,
            encryption=self.service.custom_bucket,
        )
        context.artifacts = await uploader.upload_all(context.artifacts)
        template = context.require_template()
        substitute_artifact_keys(template, context.artifacts)
        context.template_key = await uploader.upload_template(
            template, self.build_dir / COMPILED_TEMPLATE_FILENAME
        )

    async def _reconcile(self, context: DeploymentContext) -> None:
        template_url = None
        if context.bucket_name and context.template_key:
            template_url = f"https://s3.amazonaws.com/{context.bucket_name}/{context.template_key}"
        submission = await self.reconciler.reconcile(
            context.require_template(), context.artifacts, template_url=template_url
        )
        context.stack_operation = submission.operation
        context.stack_id = submission.stack_id

    async def _monitor(self, context: DeploymentContext) -> None:
        if context.stack_operation is None or context.stack_id is None:
            raise RuntimeError("Nothing was submitted to monitor")
        context.stack_state = await self.monitor.monitor(context.stack_operation, context.stack_id)

    async def _cleanup(self, context: DeploymentContext) -> None:
        janitor = self._janitor(context.bucket_name or await self.reconciler.resolve_bucket_name())
        context.removed_keys = await janitor.cleanup(self.settings.artifact_keep_count)

    # ------------------------------------------------------------------
    # Other commands
    # ------------------------------------------------------------------

    async def deploy_function(self, function_key: str) -> str:
        """Push new code for one already-deployed function.

        Returns the physical function name.
        """
        function = self.service.get_function(function_key)
        function_name = self.naming.function_name(function_key, function.name)
        packager = Packager(self.service, self.naming, self.build_dir)
        packager.check_handlers([function_key])

        try:
            await self.client.request(
                "Lambda", "getFunction", {"FunctionName": function_name},
                stage=self.stage, region=self.region,
            )
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                raise StackNotFoundError(
                    f'The function "{function_key}" you want to update is not yet '
                    'deployed. Please run "stackforge deploy" to deploy your service. '
                    'After that you can redeploy your services functions with the '
                    '"stackforge deploy function" command.'
                ) from exc
            raise

        artifact = await asyncio.to_thread(packager.build, function_key)
        logger.info("Deploying function %s (%s)", function_name, artifact.name)
        await self.client.request(
            "Lambda",
            "updateFunctionCode",
            {"FunctionName": function_name, "ZipFile": artifact.local_path.read_bytes()},
            stage=self.stage,
            region=self.region,
        )
        return function_name

    async def list_deployments(self) -> list[DeploymentListing]:
        bucket = await self.reconciler.resolve_bucket_name()
        return await self._janitor(bucket).list_deployments()

    async def remove(self) -> StackState:
        """Empty the deployment prefix and delete the stack."""
        bucket = await self.reconciler.resolve_bucket_name()
        removed = await self._janitor(bucket).empty()
        logger.info("Removed %d deployment objects from %s", len(removed), bucket)
        submission = await self.reconciler.delete()
        return await self.monitor.monitor(StackOperation.DELETE, submission.stack_id)

    def _janitor(self, bucket: str) -> DeploymentBucketJanitor:
        return DeploymentBucketJanitor(
            self.client,
            bucket,
            self.naming.deployment_root(),
            stage=self.stage,
            region=self.region,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
