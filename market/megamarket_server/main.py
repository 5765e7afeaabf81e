"""
Megamarket Server - Main entry point.

This module starts the HTTP server on top of the catalog store.

Usage:
    python -m market.megamarket_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn
from pydantic import ValidationError as SettingsError

from .api import create_app
from .config import Settings

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Server configuration
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        settings = Settings()
    except SettingsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)
    settings.log_config()

    app = create_app(settings)
    logger.info("Starting Megamarket server", extra={"host": settings.host, "port": settings.port})
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
