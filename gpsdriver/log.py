"""Log levels and the default log sink used by devices and interfaces."""

from __future__ import annotations

import enum
import logging
from typing import Callable

LOG_PREFIX = "[driver_gps] "

_logger = logging.getLogger("gpsdriver")


class LogLevel(enum.IntEnum):
    """Severity of a driver log message."""

    VERBOSE = 0
    INFO = 1
    WARN = 2
    ERROR = 3


LogFunction = Callable[[str, LogLevel], None]

_LEVEL_MAP = {
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def default_log(text: str, level: LogLevel) -> None:
    """Send a driver message to the ``gpsdriver`` logger with the driver prefix."""
    _logger.log(_LEVEL_MAP.get(level, logging.ERROR), "%s%s", LOG_PREFIX, text)