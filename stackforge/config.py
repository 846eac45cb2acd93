"""Runtime configuration -- env-driven defaults for every deployment.

Reads from a .env file and STACKFORGE_* environment variables.  Values
here are defaults only; per-deployment choices (stage, region, poll
interval) are passed to the :class:`~stackforge.core.orchestrator.Orchestrator`.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class DeployConfig(BaseSettings):
    """Deployment configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export STACKFORGE_LOG_LEVEL=DEBUG
        export STACKFORGE_POLL_INTERVAL_MS=2000
        export STACKFORGE_MAX_THROTTLE_RETRIES=20

    Or via .env file::

        STACKFORGE_AWS_PROFILE=deploy
        STACKFORGE_UPLOAD_CONCURRENCY=5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STACKFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Remote layout and local build output
    deployment_prefix: str = "serverless"
    build_dir_name: str = ".serverless"

    # Stack monitoring
    poll_interval_ms: int = 5000

    # Provider access
    aws_profile: str | None = None
    throttle_backoff_seconds: float = 5.0
    max_throttle_retries: int | None = None  # None: retry throttling forever

    # Uploads and cleanup
    upload_concurrency: int = 3
    artifact_keep_count: int = 4


# Module-level singleton -- import as `from stackforge.config import config`
config = DeployConfig()
