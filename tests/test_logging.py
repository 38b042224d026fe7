"""Tests for logging setup"""
import json
import logging
from unittest.mock import patch

import pytest

from billscan.logging import configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@patch("billscan.logging.settings")
def test_text_logging(mock_settings, restore_root_logger):
    mock_settings.log_level = "debug"
    mock_settings.log_json = False

    configure_logging()

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    record = logging.LogRecord("billscan.history", logging.INFO, __file__, 1, "Saved bill %s", ("42",), None)
    assert root.handlers[0].format(record) == "INFO billscan.history: Saved bill 42"
    assert logging.getLogger("httpx").level == logging.WARNING


@patch("billscan.logging.settings")
def test_json_logging(mock_settings, restore_root_logger):
    mock_settings.log_level = "INFO"
    mock_settings.log_json = True

    configure_logging()

    record = logging.LogRecord("billscan.gateway", logging.WARNING, __file__, 1, "Extraction rate limited", (), None)
    record.provider = "gemini"
    line = json.loads(restore_root_logger.handlers[0].format(record))
    assert line["level"] == "WARNING"
    assert line["name"] == "billscan.gateway"
    assert line["message"] == "Extraction rate limited"
    assert line["provider"] == "gemini"
    assert "timestamp" in line


@patch("billscan.logging.settings")
def test_unknown_level_defaults_to_info(mock_settings, restore_root_logger):
    mock_settings.log_level = "chatty"
    mock_settings.log_json = False

    configure_logging()

    assert restore_root_logger.level == logging.INFO
