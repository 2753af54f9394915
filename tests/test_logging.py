"""Tests for logging setup."""

import logging

import pytest

from special_dates.utils.exceptions import ConfigurationError
from special_dates.utils.logging import setup_logging


def test_file_receives_debug(tmp_path):
    log_file = tmp_path / "logs" / "special_dates.log"
    logger = setup_logging(level="WARNING", log_file=log_file)

    logging.getLogger("special_dates.core.event_store").debug("debug detail")
    for handler in logger.handlers:
        handler.flush()

    assert "debug detail" in log_file.read_text(encoding="utf-8")
    assert logger.handlers[0].level == logging.WARNING


def test_repeated_setup_does_not_duplicate_handlers():
    setup_logging()
    logger = setup_logging()
    assert len(logger.handlers) == 1


def test_unknown_level():
    with pytest.raises(ConfigurationError):
        setup_logging(level="chatty")
