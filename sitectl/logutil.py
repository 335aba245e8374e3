"""
Logging setup for sitectl.

INFO/DEBUG/WARNING records go to a plain stream handler; ERROR records are
routed through the console manager so they share the CLI's error styling.
"""

import logging
import os

from .config import Config
from .console import console_manager

logger = logging.getLogger("sitectl")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConsoleManagerHandler(logging.Handler):
    """Send ERROR and above to the console manager."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            console_manager.print_error(self.format(record))
        except Exception:
            self.handleError(record)


class _BelowErrorFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


def _resolve_level() -> int:
    level_name = os.environ.get("SITECTL_LOG_LEVEL")
    if not level_name:
        try:
            level_name = str(Config().get("system.log_level", "WARNING"))
        except ValueError:
            level_name = "WARNING"
    return getattr(logging, level_name.upper(), logging.WARNING)


def init_logging() -> None:
    """Configure the sitectl logger. Safe to call more than once."""
    logger.setLevel(_resolve_level())
    logger.propagate = False

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        stream_handler.addFilter(_BelowErrorFilter())
        logger.addHandler(stream_handler)

    if not any(isinstance(h, ConsoleManagerHandler) for h in logger.handlers):
        console_handler = ConsoleManagerHandler(level=logging.ERROR)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console_handler)
