"""Stackforge command line interface (Typer)."""

from stackforge.cli.app import app, main

__all__ = ["app", "main"]
