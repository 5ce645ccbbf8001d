from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import pytest

from overseer.logging_setup import LOG_FILE, add_file_logging, setup_logging


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("overseer")
    saved = list(logger.handlers)
    logger.handlers.clear()
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved


def test_console_level_comes_from_env(clean_logger, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "warning")
    setup_logging()
    assert len(clean_logger.handlers) == 1
    assert clean_logger.handlers[0].level == logging.WARNING
    setup_logging()
    assert len(clean_logger.handlers) == 1


def test_file_log_rotates_daily_with_retention(
    clean_logger, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LOG_RETENTION_DAYS", "7")
    add_file_logging(tmp_path / "logs")
    add_file_logging(tmp_path / "logs")
    file_handlers = [h for h in clean_logger.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].backupCount == 7
    assert file_handlers[0].level == logging.DEBUG

    logging.getLogger("overseer.process").debug("[S62] batch 1/3")
    file_handlers[0].flush()
    assert "[S62] batch 1/3" in (tmp_path / "logs" / LOG_FILE).read_text(encoding="utf-8")
