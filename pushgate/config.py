"""Service configuration, env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
PUSHGATE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Control-plane configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export PUSHGATE_LOG_LEVEL=DEBUG
        export PUSHGATE_LEDGER_PATH=/data/ledger.db
        export PUSHGATE_REDIS_URL=redis://localhost:6379/0

    Or via .env file::

        PUSHGATE_ENVIRONMENT=production
        PUSHGATE_DIFF_PACKAGE_COUNT=3
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PUSHGATE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    ledger_path: Path = Path(".pushgate/ledger.db")
    blob_store_path: Path = Path(".pushgate/blobs")
    blob_base_url: str = ""  # empty -> file:// URIs under blob_store_path
    work_dir: Path = Path(".pushgate/work")

    # Package diffing
    enable_package_diffing: bool = True
    diff_package_count: int = Field(default=5, ge=1)
    diff_max_workers: int = Field(default=4, ge=1)

    # Counter / response cache store
    redis_url: str = ""
    cache_expiry_seconds: int = 3600

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def counters_enabled(self) -> bool:
        return bool(self.redis_url)

