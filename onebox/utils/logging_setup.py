"""
Encoding-Safe Logging Utility

Configures service-wide logging with Unicode handling that degrades to ASCII
on consoles with limited encoding support, so status markers in log lines
never raise encoding errors.
"""

import logging
import os
import platform
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SafeFormatter(logging.Formatter):
    """
    Log formatter with encoding-safe character substitution.

    Replaces status symbols with ASCII alternatives when the environment
    cannot render them.
    """

    SYMBOL_MAP = {
        "✅": "[OK]",
        "✓": "[OK]",
        "⚠️": "[WARNING]",
        "⚠": "!",
        "❌": "[ERROR]",
        "→": "->",
        "•": "*",
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(fmt or DEFAULT_FORMAT, datefmt)
        self.is_windows = platform.system() == "Windows"
        self.force_ascii = os.environ.get("FORCE_ASCII_LOGGING", "0").lower() in ("1", "true", "yes")
        self.limited_encoding = self._has_limited_encoding()

    def _has_limited_encoding(self) -> bool:
        if self.force_ascii:
            return True
        if self.is_windows:
            if "WT_SESSION" in os.environ:
                return False
            if os.environ.get("PYTHONIOENCODING", "").lower() == "utf-8":
                return False
            return True
        return False

    def format(self, record: logging.LogRecord) -> str:
        formatted_message = super().format(record)
        if self.limited_encoding:
            for unicode_char, ascii_char in self.SYMBOL_MAP.items():
                formatted_message = formatted_message.replace(unicode_char, ascii_char)
        return formatted_message


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_str: Optional[str] = None
) -> logging.Logger:
    """
    Configure the root logger with encoding-safe console and file output.

    Args:
        level: Logging level name
        log_file: Optional log file path; its directory is created if needed
        format_str: Custom format string for log messages

    Returns:
        logging.Logger: The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear any existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = SafeFormatter(format_str)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Failed to create log file handler: {str(e)}")

    # Chatty client libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    return logger
