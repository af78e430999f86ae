"""Tests for logging setup."""

import logging

import pytest
from rich.logging import RichHandler

from lectern.logging_config import LoggingConfig, reset_logging, setup_logging


@pytest.fixture(autouse=True)
def _clean_handlers():
    yield
    reset_logging()


def _ours():
    return [h for h in logging.getLogger().handlers if isinstance(h, (RichHandler, logging.FileHandler))]


def test_setup_writes_debug_to_file(tmp_path):
    log_file = setup_logging(LoggingConfig(level="warning", filename="test.log"), tmp_path / "logs")

    logging.getLogger("lectern.test").debug("detail for the file")
    for handler in _ours():
        handler.flush()

    assert log_file == tmp_path / "logs" / "test.log"
    text = log_file.read_text(encoding="utf-8")
    assert "detail for the file" in text
    assert "MainThread" in text


def test_console_level_follows_config(tmp_path):
    setup_logging(LoggingConfig(level="warning"), tmp_path)

    (console,) = [h for h in _ours() if isinstance(h, RichHandler)]
    assert console.level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    assert LoggingConfig(level="chatty").numeric_level == logging.INFO


def test_setup_again_replaces_handlers(tmp_path):
    setup_logging(LoggingConfig(), tmp_path)
    setup_logging(LoggingConfig(level="DEBUG"), tmp_path)

    handlers = _ours()
    assert len(handlers) == 2
    (console,) = [h for h in handlers if isinstance(h, RichHandler)]
    assert console.level == logging.DEBUG


def test_third_party_loggers_are_quieted(tmp_path):
    setup_logging(LoggingConfig(level="DEBUG"), tmp_path)
    assert logging.getLogger("PIL").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
