"""Loguru setup shared by the API, the worker and the orchestration engine.

Usage:
    from testbench_common.log import logger
    logger.info("Message")

Environment Variables:
    TESTBENCH_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
    TESTBENCH_LOG_FILE: path to an additional log file (optional)
"""

import os
import sys

from loguru import logger

logger.remove()

_log_level = os.environ.get("TESTBENCH_LOG_LEVEL", "INFO").upper()
_log_file = os.environ.get("TESTBENCH_LOG_FILE")

_human_format = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}:{function}:{line}</cyan> - "
    "<level>{message}</level>"
)

logger.add(sys.stderr, level=_log_level, format=_human_format, colorize=None)

if _log_file:
    logger.add(
        _log_file,
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    )

__all__ = ["logger"]
