"""
Logging utility for xhs-writer.

Provides multi-destination logging with:
- Daily rotating file logs (YYYYMMDD prefix)
- Colorized console output
- Console-only operation when the log directory is read-only
- Cached logger instances (one handler set per name)
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import colorlog

from xhs_writer.config import LoggingConfig


# Global logger cache to prevent duplicate logger creation
_LOGGER_CACHE: Dict[str, logging.Logger] = {}

LOG_COLORS = {
    'DEBUG': 'white',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'bold_red',
}


class LoggerConfig:
    """
    Centralized logger configuration manager.

    Manages the log directory, file naming conventions, and formatting rules.
    ``log_dir`` is None when no writable directory could be prepared.
    """

    def __init__(self):
        self.log_level = getattr(logging, LoggingConfig.LOG_LEVEL.upper(), logging.INFO)
        self.max_bytes = LoggingConfig.MAX_LOG_SIZE
        self.backup_count = LoggingConfig.BACKUP_COUNT

        # File format (detailed)
        self.file_format = LoggingConfig.LOG_FORMAT
        self.date_format = LoggingConfig.DATE_FORMAT

        # Console format (colorized and simplified)
        self.console_format = (
            "%(log_color)s%(levelname)-8s%(reset)s "
            "%(cyan)s%(name)s%(reset)s - %(message)s"
        )

        self.log_dir: Optional[Path] = LoggingConfig.ensure_log_directory()

    def get_daily_log_filename(self) -> str:
        """
        Generate daily log filename with YYYYMMDD prefix.

        Returns:
            Formatted log filename (e.g., '20260107_xhs_writer.log')
        """
        date_prefix = datetime.now().strftime("%Y%m%d")
        return f"{date_prefix}_{LoggingConfig.LOG_FILE}"

    def get_log_file_path(self) -> Optional[Path]:
        """Get full path to today's log file, or None for console-only logging."""
        if self.log_dir is None:
            return None
        return self.log_dir / self.get_daily_log_filename()


def _build_file_handler(config: LoggerConfig) -> Optional[logging.Handler]:
    log_file_path = config.get_log_file_path()
    if log_file_path is None:
        return None
    try:
        handler = RotatingFileHandler(
            filename=log_file_path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8"
        )
    except OSError:
        return None
    handler.setLevel(logging.DEBUG)  # Capture all levels in file
    handler.setFormatter(logging.Formatter(fmt=config.file_format, datefmt=config.date_format))
    return handler


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Create and configure a logger instance with file and console handlers.

    Features:
    - Daily log file with size-based rotation (10MB default, 5 backups)
    - Colorized console output
    - Falls back to console only when the log file cannot be opened

    Args:
        name: Logger name (typically __name__ of calling module)
        level: Optional custom log level (defaults to config setting)

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger(__name__)
        >>> logger.info("Application started")
    """
    # Check cache first
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]

    config = LoggerConfig()
    logger = logging.getLogger(name)
    logger.setLevel(level or config.log_level)

    # Prevent duplicate handlers on repeated calls
    if logger.handlers:
        _LOGGER_CACHE[name] = logger
        return logger

    file_handler = _build_file_handler(config)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level or config.log_level)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            fmt=config.console_format,
            datefmt=config.date_format,
            log_colors=LOG_COLORS,
        )
    )
    logger.addHandler(console_handler)

    _LOGGER_CACHE[name] = logger
    return logger

