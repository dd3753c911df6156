"""Logging setup shared by the CLI and the indexing pipeline."""

import logging
import sys
from typing import Optional, TextIO

from escrow_indexer.config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers kept at WARNING
NOISY_LOGGERS = ("web3", "urllib3", "sqlalchemy.engine")


def setup_logging(
    config: Optional[Config] = None,
    log_level: Optional[str] = None,
    stream: TextIO = sys.stdout,
) -> None:
    """Configure the root logger.

    Args:
        config: Config object (uses log_level from config if provided)
        log_level: Override log level (takes precedence over config)
        stream: Output stream, stdout unless overridden
    """
    level_str = (log_level or (config.log_level if config else "INFO")).upper()
    level = logging.getLevelName(level_str)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=stream,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
