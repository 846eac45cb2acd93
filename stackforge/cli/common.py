"""Shared CLI plumbing: consoles, logging, client construction, error exit."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, NoReturn, TypeVar

import typer
from rich.console import Console

from stackforge.config import config
from stackforge.core.errors import DeployError
from stackforge.core.orchestrator import Orchestrator
from stackforge.core.provider import Boto3ProviderClient, ProviderClient, ProviderError
from stackforge.service_loader import load_service

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose or config.debug else getattr(
        logging, config.log_level.upper(), logging.INFO
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))


def make_client(region: str | None = None) -> ProviderClient:
    return Boto3ProviderClient(
        profile=config.aws_profile,
        default_region=region,
        backoff_seconds=config.throttle_backoff_seconds,
        max_throttle_retries=config.max_throttle_retries,
    )


def make_orchestrator(service_file: Path, stage: str | None, region: str | None) -> Orchestrator:
    service = load_service(service_file)
    return Orchestrator(
        service,
        make_client(region or service.provider.region),
        stage=stage,
        region=region,
    )


def run_or_exit(coroutine: Coroutine[Any, Any, T]) -> T:
    """Run *coroutine*; print framework errors to stderr and exit 1."""
    try:
        return asyncio.run(coroutine)
    except (DeployError, ProviderError) as exc:
        fail(str(exc))


def fail(message: str) -> NoReturn:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=1)


STAGE_OPTION = typer.Option(None, "--stage", "-s", help="Stage of the service.")
REGION_OPTION = typer.Option(None, "--region", "-r", help="Region of the service.")
CONFIG_OPTION = typer.Option(
    Path("."), "--config", "-c", help="Service file, or the directory containing it."
)
