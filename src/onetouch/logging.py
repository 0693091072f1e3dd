"""Logging configuration for onetouch.

A pairing code is a bearer credential until its session ends: whoever
holds it can claim the session. Records above DEBUG therefore have any
code-shaped token masked before they reach a handler.
"""

import logging
import re
from pathlib import Path

from onetouch.config import Config

# Module-level logger cache
_logger: logging.Logger | None = None

# code=abc123 in query strings, as typed by the user
_CODE_PARAM = re.compile(r"((?i:code=))([A-Za-z0-9]{6})(?![A-Za-z0-9])")
# 'ABC123' as a quoted value, e.g. bound SQL parameters in driver errors
_QUOTED_CODE = re.compile(r"(['\"])([A-Z0-9]{6})(?=['\"])")
# Bare tokens need a digit so SQL keywords like UPDATE survive
_BARE_CODE = re.compile(r"(?<![A-Za-z0-9])(?=[A-Z]*[0-9])[A-Z0-9]{6}(?![A-Za-z0-9])")


def _mask(code: str) -> str:
    return code[:2] + "****"


def redact_codes(text: str) -> str:
    """Mask pairing codes in a log message, keeping two leading characters."""
    for pattern in (_CODE_PARAM, _QUOTED_CODE):
        text = pattern.sub(lambda m: m.group(1) + _mask(m.group(2)), text)
    return _BARE_CODE.sub(lambda m: _mask(m.group(0)), text)


class CodeRedactingFilter(logging.Filter):
    """Masks pairing codes in records above DEBUG."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG:
            message = record.getMessage()
            redacted = redact_codes(message)
            if redacted != message:
                record.msg = redacted
                record.args = None
        return True


def setup_logging(config: Config) -> logging.Logger:
    """Set up logging based on configuration.

    Args:
        config: Configuration object with log settings.

    Returns:
        Configured logger instance.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger("onetouch")
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    # 2025-01-27 10:30:45 [INFO] message
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    formatter.datefmt = "%Y-%m-%d %H:%M:%S"
    redactor = CodeRedactingFilter()

    handlers: list[logging.Handler] = []
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers:
            handler.close()
        _logger.handlers.clear()
        _logger = None
