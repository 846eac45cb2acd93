"""``stackforge deploy`` -- deploy the service, one function, or list deployments."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from stackforge.cli import common
from stackforge.core.errors import DeployError, DeploymentFailedError
from stackforge.core.provider import ProviderError
from stackforge.monitor.renderer import DeploymentRenderer

deploy_app = typer.Typer(
    help="Deploy the service (or a single function) to the cloud.",
    no_args_is_help=False,
    add_completion=False,
)


@deploy_app.callback(invoke_without_command=True)
def deploy_cmd(
    ctx: typer.Context,
    stage: str = common.STAGE_OPTION,
    region: str = common.REGION_OPTION,
    service_file: Path = common.CONFIG_OPTION,
    no_deploy: bool = typer.Option(
        False, "--no-deploy", "-n", help="Build the templates and archives without deploying."
    ),
    no_monitor: bool = typer.Option(
        False, "--no-monitor", help="Submit the stack operation without waiting for it."
    ),
) -> None:
    """Compile, package, upload and create/update the service stack."""
    if ctx.invoked_subcommand is not None:
        return
    renderer = DeploymentRenderer(common.console)
    try:
        orchestrator = common.make_orchestrator(service_file, stage, region)
        report = asyncio.run(orchestrator.deploy(no_deploy=no_deploy, dont_monitor=no_monitor))
    except DeploymentFailedError as exc:
        renderer.print_report(exc.report)
        common.fail(str(exc))
    except (DeployError, ProviderError) as exc:
        common.fail(str(exc))
    renderer.print_report(report)
    if report.outcome == "scheduled":
        common.console.print("[yellow]Stack update scheduled; not waiting for completion.[/yellow]")


@deploy_app.command(name="function", help="Deploy new code for a single function.")
def deploy_function_cmd(
    function: str = typer.Option(..., "--function", "-f", help="Name of the function."),
    stage: str = common.STAGE_OPTION,
    region: str = common.REGION_OPTION,
    service_file: Path = common.CONFIG_OPTION,
) -> None:
    """Package one function and push its code directly."""
    try:
        orchestrator = common.make_orchestrator(service_file, stage, region)
    except DeployError as exc:
        common.fail(str(exc))
    name = common.run_or_exit(orchestrator.deploy_function(function))
    common.console.print(f"[bold green]Successfully deployed function:[/bold green] {name}")


@deploy_app.command(name="list", help="List the deployments stored in the deployment bucket.")
def deploy_list_cmd(
    stage: str = common.STAGE_OPTION,
    region: str = common.REGION_OPTION,
    service_file: Path = common.CONFIG_OPTION,
) -> None:
    """Show every deployment directory of the service and stage."""
    try:
        orchestrator = common.make_orchestrator(service_file, stage, region)
    except DeployError as exc:
        common.fail(str(exc))
    deployments = common.run_or_exit(orchestrator.list_deployments())
    DeploymentRenderer(common.console).print_listing(deployments)
