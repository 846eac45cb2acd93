"""Main Typer application -- imports and registers all CLI commands.

Entry point: ``stackforge`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from stackforge.cli.commands.deploy import deploy_app
from stackforge.cli.commands.remove import remove_cmd
from stackforge.cli.common import configure_logging

app = typer.Typer(
    name="stackforge",
    help="Stackforge: compile, package and deploy serverless services to CloudFormation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Stackforge deployment CLI."""
    configure_logging(verbose)


# Register subcommands
app.add_typer(deploy_app, name="deploy")
app.command(name="remove", help="Remove the service stack and its deployment artifacts.")(remove_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
