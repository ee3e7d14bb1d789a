"""Logging setup for flock.

Every module logs through a child of the "flock" logger (get_logger).
setup_logger configures that root once per process, from the CLI or the
API start-up. Console output goes to stderr because CLI commands print
their JSON results on stdout.
"""

import logging
import logging.handlers
import os
import sys
from typing import Optional

ROOT_LOGGER = "flock"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
ISO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024


def setup_logger(
    name: str = ROOT_LOGGER,
    log_dir: str = "logs",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = False,
    console_logging: bool = True,
    max_bytes: int = MAX_LOG_BYTES,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the flock logger tree.

    Handlers are attached on the first call only. Later calls (a second
    CLI invocation in the same process, tests) just change the level.

    Args:
        name: Logger to configure; children inherit its handlers
        log_dir: Directory for <name>.log when file_logging is on
        level: One of LOG_LEVELS, case-insensitive
        log_format: Record format; LOG_FORMAT when omitted
        date_format: Timestamp format; ISO 8601 when omitted
        file_logging: Also write to a size-rotated file
        console_logging: Write to stderr
        max_bytes: Rotate the file past this size
        backup_count: Rotated files to keep

    Raises:
        ValueError: If level is not a known level name
    """
    level_name = level.upper()
    if level_name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LOG_LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(level_name)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(log_format or LOG_FORMAT, datefmt=date_format or ISO_DATE_FORMAT)

    if file_logging:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"), maxBytes=max_bytes, backupCount=backup_count
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if console_logging:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, e.g. get_logger("tagging.service") -> flock.tagging.service."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
