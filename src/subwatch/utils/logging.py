"""Centralized logging configuration for subwatch."""

import logging
import sys
from pathlib import Path
from typing import Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: LogLevel = "INFO",
    log_file: Path | None = None,
    console_level: LogLevel = "WARNING",
) -> logging.Logger:
    """Configure application logging.

    Args:
        level: Level for the subwatch logger namespace
        log_file: Optional file path for logging
        console_level: Level for console output (default WARNING to keep CLI clean)

    Returns:
        Configured subwatch logger instance
    """
    logger = logging.getLogger("subwatch")
    logger.setLevel(getattr(logging, level))

    # Clear existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, console_level))
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    # APScheduler logs every job execution at INFO, one per armed timer
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return logger
