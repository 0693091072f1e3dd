"""Tests for logging module."""

import logging

from onetouch.config import Config
from onetouch.logging import redact_codes, setup_logging


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_returns_logger(self):
        """Setup returns the package logger."""
        logger = setup_logging(Config())

        assert isinstance(logger, logging.Logger)
        assert logger.name == "onetouch"
        assert logger.propagate is False

    def test_setup_logging_is_idempotent(self):
        """Second call returns the same logger without extra handlers."""
        first = setup_logging(Config())
        handlers = len(first.handlers)
        second = setup_logging(Config(log_level="DEBUG"))

        assert second is first
        assert len(second.handlers) == handlers

    def test_setup_logging_creates_log_file(self, tmp_path):
        """Logging setup creates log file and directory."""
        log_file = tmp_path / "subdir" / "test.log"
        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("test message")

        assert "test message" in log_file.read_text()

    def test_child_loggers_reach_handlers(self, tmp_path):
        """Module loggers under onetouch.* use the configured handlers."""
        log_file = tmp_path / "test.log"
        setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("onetouch.pairing.service").info("from service")

        assert "[INFO] from service" in log_file.read_text()

    def test_log_levels_respected(self, tmp_path):
        """Only logs at configured level and above."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="WARNING"))

        logger.debug("debug message")
        logger.info("info message")
        logger.warning("warning message")

        content = log_file.read_text()
        assert "debug message" not in content
        assert "info message" not in content
        assert "warning message" in content


class TestCodeRedaction:
    """Pairing codes appear in full only at DEBUG."""

    def test_codes_masked_above_debug(self, tmp_path):
        """INFO and ERROR records carry a masked code."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="DEBUG"))

        logger.info("Created session K7Q2ZD")
        logging.getLogger("onetouch.server").error("Claim failed for %s", "K7Q2ZD")

        content = log_file.read_text()
        assert "K7Q2ZD" not in content
        assert "Created session K7****" in content
        assert "Claim failed for K7****" in content

    def test_codes_kept_at_debug(self, tmp_path):
        """DEBUG records are left intact."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="DEBUG"))

        logger.debug("Created session K7Q2ZD")

        assert "Created session K7Q2ZD" in log_file.read_text()

    def test_query_and_quoted_values(self):
        """code= parameters and quoted values are masked, any case for code=."""
        assert redact_codes("GET /status?code=k7q2zd failed") == (
            "GET /status?code=k7**** failed"
        )
        assert redact_codes("[parameters: ('QWERTY', 1.0)]") == (
            "[parameters: ('QW****', 1.0)]"
        )

    def test_ordinary_words_untouched(self):
        """SQL keywords and lower-case words are not mistaken for codes."""
        message = "UPDATE one_touch_sessions failed: KeyError('status')"
        assert redact_codes(message) == message
