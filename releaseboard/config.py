"""Runtime configuration — env-driven.

Centralized config using pydantic-settings for environment variable
support.  Reads from a .env file and RELEASEBOARD_* environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class BoardConfig(BaseSettings):
    """Releaseboard configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export RELEASEBOARD_DB_PATH=/data/releaseboard.db
        export RELEASEBOARD_SCHEDULER_INTERVAL_SECONDS=15
        export RELEASEBOARD_SCRIPTS_DIR=/opt/deploy/scripts

    Or via .env file::

        RELEASEBOARD_LOG_LEVEL=DEBUG
        RELEASEBOARD_PORT=8080
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RELEASEBOARD_",
        env_file_encoding="utf-8",
    )

    # Runtime
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage
    db_path: Path = Path(".releaseboard/releaseboard.db")
    seed_default_clients: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Scheduler
    scheduler_interval_seconds: float = 60.0

    # Deployment item execution
    scripts_dir: Path = Path("scripts")
    shell: str = "bash"
    item_timeout_seconds: float = 1800.0
    line_delay_seconds: float = 0.1

    # Viewer sessions
    heartbeat_interval_seconds: float = 1.0
    client_timeout_seconds: float = 10.0

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


# Module-level singleton: `from releaseboard.config import config`
config = BoardConfig()
