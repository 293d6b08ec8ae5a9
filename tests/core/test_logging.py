"""
Tests for alertflow Structured Logging.

Tests logger configuration, formatters, and utility functions.
"""

from __future__ import annotations

import json
import logging
import sys

from alertflow.core.logging import AlertflowFormatter, get_logger, reset_logging, set_log_level


def _record(name: str = "alertflow.test", level: int = logging.INFO, msg: str = "Test message", exc_info=None):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


# =============================================================================
# AlertflowFormatter Tests
# =============================================================================


class TestAlertflowFormatter:
    """Test AlertflowFormatter class."""

    def test_text_format_basic(self):
        """Text format includes level and module."""
        formatted = AlertflowFormatter(json_output=False).format(
            _record(name="alertflow.services.notifications.engine")
        )

        assert formatted == "[alertflow INFO] [engine] Test message"

    def test_text_format_appends_extra_context(self):
        record = _record(name="alertflow.services.notifications.dispatcher")
        record.notification_id = "notif-1"
        record.channel = "email"

        formatted = AlertflowFormatter().format(record)

        assert formatted == "[alertflow INFO] [dispatcher] Test message channel=email notification_id=notif-1"

    def test_text_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        formatted = AlertflowFormatter().format(_record(level=logging.ERROR, exc_info=exc_info))

        assert "ValueError" in formatted
        assert "Test error" in formatted

    def test_json_format_basic(self):
        """JSON format produces valid JSON."""
        data = json.loads(AlertflowFormatter(json_output=True).format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "alertflow.test"
        assert data["message"] == "Test message"
        assert "timestamp" in data

    def test_json_format_with_extra(self):
        record = _record()
        record.notification_id = "notif-1"

        data = json.loads(AlertflowFormatter(json_output=True).format(record))

        assert data["notification_id"] == "notif-1"
        assert "lineno" not in data


# =============================================================================
# get_logger Tests
# =============================================================================


class TestGetLogger:
    """Test get_logger function."""

    def test_returns_cached_logger(self):
        logger = get_logger("alertflow.test.unique1")

        assert isinstance(logger, logging.Logger)
        assert get_logger("alertflow.test.unique1") is logger

    def test_logger_does_not_propagate(self):
        assert get_logger("alertflow.test.unique2").propagate is False

    def test_set_log_level(self):
        logger = get_logger("alertflow.test.unique3")

        set_log_level(logging.DEBUG)
        try:
            assert logger.level == logging.DEBUG
        finally:
            set_log_level(logging.WARNING)

    def test_reset_logging_restores_propagation(self):
        logger = get_logger("alertflow.test.unique4")

        reset_logging()

        assert logger.propagate is True
        assert logger.level == logging.NOTSET
