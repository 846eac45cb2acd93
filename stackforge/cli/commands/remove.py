"""``stackforge remove`` -- delete the service stack and its deployment objects."""

from __future__ import annotations

from pathlib import Path

from stackforge.cli import common
from stackforge.core.errors import DeployError


def remove_cmd(
    stage: str = common.STAGE_OPTION,
    region: str = common.REGION_OPTION,
    service_file: Path = common.CONFIG_OPTION,
) -> None:
    """Empty the deployment prefix and delete the stack."""
    try:
        orchestrator = common.make_orchestrator(service_file, stage, region)
    except DeployError as exc:
        common.fail(str(exc))
    state = common.run_or_exit(orchestrator.remove())
    common.console.print(
        f"[bold green]Stack removed:[/bold green] {orchestrator.naming.stack_name()} ({state.status})"
    )
