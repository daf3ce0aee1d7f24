"""Tests for logging setup."""

import logging
from pathlib import Path

from subwatch.utils.logging import setup_logging


def test_setup_logging_writes_to_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "daemon.log"
    logger = setup_logging(level="DEBUG", log_file=log_file)

    logging.getLogger("subwatch.daemon.monitor").debug("voyage 10 scheduled")
    for handler in logger.handlers:
        handler.flush()

    assert logger.name == "subwatch"
    assert "voyage 10 scheduled" in log_file.read_text()
    assert logging.getLogger("apscheduler").level == logging.WARNING
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


def test_setup_logging_is_idempotent() -> None:
    setup_logging()
    logger = setup_logging()
    assert len(logger.handlers) == 1
    logger.handlers.clear()
