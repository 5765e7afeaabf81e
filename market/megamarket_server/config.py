"""
Configuration for the Megamarket catalog server.

All configuration is done via environment variables with the MEGAMARKET_
prefix, loaded with pydantic-settings.

Invariants:
    - All settings have sensible defaults for local development
    - The database path is always derived from data_dir and db_filename

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Server configuration loaded from environment."""

    # Storage
    data_dir: str = Field(default="/var/lib/megamarket", description="Directory for the SQLite file")
    db_filename: str = Field(default="catalog.db", description="SQLite database file name")
    sqlite_wal_mode: bool = Field(default=True, description="Enable SQLite WAL mode")
    sqlite_busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")
    sqlite_cache_size_pages: int = Field(default=-64000, description="SQLite cache size (negative = KB)")

    # HTTP
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=80, description="Bind port")

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    model_config = {"env_prefix": "MEGAMARKET_"}

    @property
    def db_path(self) -> Path:
        """Full path of the catalog database."""
        return Path(self.data_dir) / self.db_filename

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": str(self.db_path),
                "sqlite_wal_mode": self.sqlite_wal_mode,
                "bind": f"{self.host}:{self.port}",
                "log_level": self.log_level,
            },
        )
