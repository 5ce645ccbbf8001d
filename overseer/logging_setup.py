from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

LOG_FILE = "overseer.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_RETENTION_DAYS = 14


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _retention_from_env() -> int:
    try:
        value = int(os.environ.get("LOG_RETENTION_DAYS", ""))
    except ValueError:
        return DEFAULT_RETENTION_DAYS
    return value if value > 0 else DEFAULT_RETENTION_DAYS


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("overseer")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(_level_from_env())
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stream_handler)
    return logger


def add_file_logging(log_dir: Path) -> logging.Logger:
    """Add a daily-rotated DEBUG file log, keeping ``LOG_RETENTION_DAYS`` files.

    The file always records DEBUG so forwarded job output survives even when
    the console is quiet.
    """
    logger = setup_logging()
    if any(isinstance(handler, logging.FileHandler) for handler in logger.handlers):
        return logger
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / LOG_FILE,
        when="midnight",
        backupCount=_retention_from_env(),
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    return logger
