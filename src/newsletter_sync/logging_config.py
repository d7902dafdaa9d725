# SPDX-License-Identifier: MIT
"""Logging configuration for the newsletter synchronization layer.

Two loggers are used throughout the package:
1. Detail Logger: cache writes, invalidations, state transitions, chunk attempts
   (file only, for troubleshooting)
2. Status Logger: user-visible outcomes such as rollback notices and batch
   summaries (stderr and file)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Logger names
DETAIL_LOGGER_NAME = "newsletter_sync.detail"
STATUS_LOGGER_NAME = "newsletter_sync.status"

LOG_FILE_NAME = "newsletter-sync.log"


class FlushingStreamHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Stream handler that flushes after every record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        if self.stream and not self.stream.closed:
            self.flush()


def setup_logging(log_dir: Path | None = None) -> tuple[logging.Logger, logging.Logger]:
    """Configure the detail and status loggers.

    Detail Logger:
        - DEBUG and above
        - Writes to the log file only

    Status Logger:
        - INFO and above
        - Writes to stderr and to the log file

    Args:
        log_dir: Directory for the log file. Defaults to .newsletter-sync/ in
            the current directory.

    Returns:
        Tuple of (detail_logger, status_logger)
    """
    if log_dir is None:
        log_dir = Path.cwd() / ".newsletter-sync"

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    detail_logger = logging.getLogger(DETAIL_LOGGER_NAME)
    detail_logger.setLevel(logging.DEBUG)
    detail_logger.handlers.clear()
    detail_logger.addHandler(file_handler)
    detail_logger.propagate = False

    status_logger = logging.getLogger(STATUS_LOGGER_NAME)
    status_logger.setLevel(logging.INFO)
    status_logger.handlers.clear()

    console_handler = FlushingStreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")
    )

    status_logger.addHandler(console_handler)
    status_logger.addHandler(file_handler)
    status_logger.propagate = False

    detail_logger.info(f"Logging initialized. Log file: {log_file}")

    return detail_logger, status_logger


def get_detail_logger() -> logging.Logger:
    """Get the detail logger for technical diagnostics.

    Use this logger for:
    - Cache reads and writes
    - Invalidation and refetch scheduling
    - Mutation state transitions
    - Gateway requests and chunk attempts

    Returns:
        The detail logger instance
    """
    return logging.getLogger(DETAIL_LOGGER_NAME)


def get_status_logger() -> logging.Logger:
    """Get the status logger for user-facing outcomes.

    Use this logger for:
    - Rollback notifications
    - Batch summaries ("X succeeded, Y failed")
    - Retry warnings

    Returns:
        The status logger instance
    """
    return logging.getLogger(STATUS_LOGGER_NAME)
