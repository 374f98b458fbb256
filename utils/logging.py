"""
Logging utilities for the BitBucket reporting backend
"""
import logging
import os
import sys
from typing import Any, Dict

# Configure basic logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)


def _format_message(message: str, context: Dict[str, Any]) -> str:
    extra_info = " ".join(f"{k}={v}" for k, v in context.items())
    return f"{message} {extra_info}".strip()


class EnhancedLogger:
    """Logger that renders keyword arguments as key=value context"""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def debug(self, message: str, **kwargs):
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(_format_message(message, kwargs))

    def info(self, message: str, **kwargs):
        self._logger.info(_format_message(message, kwargs))

    def warning(self, message: str, **kwargs):
        self._logger.warning(_format_message(message, kwargs))

    def error(self, message: str, **kwargs):
        self._logger.error(_format_message(message, kwargs))

    def exception(self, message: str, **kwargs):
        self._logger.exception(_format_message(message, kwargs))


def get_logger(name: str) -> EnhancedLogger:
    """Get a logger instance"""
    return EnhancedLogger(logging.getLogger(name))


def log_page_fetched(resource: str, page: int, count: int, url: str, **kwargs):
    """Log one pagination step against the BitBucket API"""
    logger = get_logger("pagination")
    logger.info(f"Fetched {resource} page {page}", count=count, url=url, **kwargs)
