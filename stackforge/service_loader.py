"""Reads a service file into a :class:`ServiceSpec`.

Plain YAML (or JSON, which is a YAML subset); variables are not resolved.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from stackforge.core.errors import ConfigurationError
from stackforge.models.service import ServiceSpec

SERVICE_FILENAMES = ("serverless.yml", "serverless.yaml", "stackforge.yml", "stackforge.yaml")


def find_service_file(directory: Path) -> Path:
    for filename in SERVICE_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        f"No service file found in {directory} (looked for {', '.join(SERVICE_FILENAMES)})"
    )


def load_service(path: Path) -> ServiceSpec:
    """Load *path* (a service file or a directory containing one)."""
    path = Path(path)
    if path.is_dir():
        path = find_service_file(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not read service file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Service file {path} must contain a mapping")
    data.setdefault("servicePath", str(path.parent))
    if isinstance(data.get("service"), dict):
        data["service"] = data["service"].get("name")
    try:
        return ServiceSpec.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid service file {path}:\n{exc}") from exc
