"""Logging configuration for the sync service."""

import logging
import sys
from typing import Optional

from chainsync.config import Config


def setup_logging(config: Optional[Config] = None, log_level: Optional[str] = None) -> None:
    """Configure Python logging.

    Args:
        config: Config object (uses log_level from config if provided)
        log_level: Override log level (takes precedence over config)
    """
    level_str = log_level or (config.log_level if config else "INFO")
    level = logging.getLevelName(level_str.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    # uvicorn runs with log_config=None and logs through the root handler.
    # Access lines only at DEBUG.
    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO if level <= logging.DEBUG else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
