"""
Utils Module

Shared utilities.

Components:
    - logger: Daily rotating file logs and colorized console output
    - exceptions: Exception hierarchy with details and retryable flag
"""

from xhs_writer.utils.logger import LoggerConfig, setup_logger

__all__ = [
    # Logger utilities
    "LoggerConfig",
    "setup_logger",
]
