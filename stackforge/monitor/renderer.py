"""Rich terminal rendering for deployment reports and listings.

Color scheme
------------
- green   : passed / completed
- red     : failed
- yellow  : scheduled (submitted, not monitored)
- cyan    : packaged only
- dim     : skipped
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackforge.models.deployment import DeploymentListing, DeploymentReport

_PHASE_STYLES: dict[str, str] = {
    "passed": "[green]PASSED[/green]",
    "failed": "[bold red]FAILED[/bold red]",
    "skipped": "[dim]SKIPPED[/dim]",
}

_OUTCOME_STYLES: dict[str, str] = {
    "completed": "bold green",
    "scheduled": "bold yellow",
    "packaged": "bold cyan",
    "failed": "bold red",
}


class DeploymentRenderer:
    """Turns reports and listings into Rich renderables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_report(self, report: DeploymentReport) -> Panel:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Phase", style="cyan")
        table.add_column("State", justify="center")
        table.add_column("Time", justify="right")
        table.add_column("Details")
        for record in report.phases:
            table.add_row(
                record.phase,
                _PHASE_STYLES.get(record.state, record.state),
                f"{record.duration_ms} ms" if record.state != "skipped" else "",
                record.error or "",
            )

        style = _OUTCOME_STYLES.get(report.outcome, "bold")
        title = (
            f"[{style}]{report.outcome.upper()}[/{style}] "
            f"{report.stack_name} ({report.region})"
        )
        return Panel(table, title=title, subtitle=report.attempt_id, border_style="blue")

    def render_outputs(self, report: DeploymentReport) -> Table:
        table = Table(title="Stack Outputs", show_header=True, header_style="bold")
        table.add_column("Output", style="cyan")
        table.add_column("Value")
        for key, value in sorted(report.outputs.items()):
            table.add_row(key, value)
        return table

    def render_listing(self, deployments: list[DeploymentListing]) -> Table:
        table = Table(title="Deployments", show_header=True, header_style="bold")
        table.add_column("Deployed (UTC)", style="cyan")
        table.add_column("Timestamp")
        table.add_column("Files")
        for listing in deployments:
            table.add_row(
                listing.deployed_at.strftime("%Y-%m-%d %H:%M:%S"),
                str(listing.timestamp_ms),
                "\n".join(listing.files),
            )
        return table

    # ------------------------------------------------------------------
    # Printing shortcuts
    # ------------------------------------------------------------------

    def print_report(self, report: DeploymentReport) -> None:
        self.console.print(self.render_report(report))
        if report.outputs:
            self.console.print(self.render_outputs(report))

    def print_listing(self, deployments: list[DeploymentListing]) -> None:
        if not deployments:
            self.console.print(
                "[yellow]No deployments found. If you've already deployed, check "
                "the stage and region you are targeting.[/yellow]"
            )
            return
        self.console.print(self.render_listing(deployments))
