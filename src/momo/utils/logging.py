"""Logging setup: console output plus a rotating file sink."""

import logging
import logging.handlers
from pathlib import Path

from momo.config import LOG_LEVEL_NONE
from momo.errors import ResourceAcquisitionError

LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"

LOG_FILE_NAME = "webrtc_logs"
MAX_LOG_FILE_SIZE = 10 * 1024 * 1024
MAX_LOG_FILES = 10

# Console log levels indexed by the 0-5 --log-level value
_CONSOLE_LEVELS = {
    0: logging.DEBUG,
    1: logging.INFO,
    2: logging.WARNING,
    3: logging.ERROR,
}


def console_level(log_level: int) -> int | None:
    """Map a --log-level value to a logging level.

    Returns:
        Logging level, or None when console logging is disabled
    """
    if log_level >= LOG_LEVEL_NONE:
        return None
    return _CONSOLE_LEVELS[log_level]


def setup_logging(log_level: int = LOG_LEVEL_NONE, log_dir: Path = Path(".")) -> logging.Handler:
    """Configure root logging.

    The rotating file sink always records INFO and above; the console only
    shows what the log level asks for.

    Args:
        log_level: Value of --log-level (0=verbose ... 4 and above=none)
        log_dir: Directory that holds the rotating log files

    Returns:
        The file handler, so callers can detach it on shutdown

    Raises:
        ResourceAcquisitionError: If the log file cannot be opened
    """
    formatter = logging.Formatter(LOG_FORMAT)

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=MAX_LOG_FILE_SIZE,
            backupCount=MAX_LOG_FILES,
        )
    except OSError as e:
        raise ResourceAcquisitionError(f"Failed to open log file: {e}") from e

    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(file_handler)

    level = console_level(log_level)
    if level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
        root_logger.setLevel(min(level, logging.INFO))
    else:
        root_logger.setLevel(logging.INFO)

    return file_handler
