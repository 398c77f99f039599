"""
Logging configuration for the job client
"""

import logging
import sys
from typing import Optional

from pulsejobs.core.config import settings

_CONFIGURED = False


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the package logger once; repeated calls only adjust the level"""
    global _CONFIGURED

    level_name = (level or settings.LOG_LEVEL).upper()
    package_logger = logging.getLogger("pulsejobs")
    package_logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not _CONFIGURED:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        package_logger.addHandler(handler)
        package_logger.propagate = False
        _CONFIGURED = True

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return package_logger


def mask_identifier(value: Optional[str]) -> str:
    """Shorten an identifier for log output"""
    if not value:
        return "<none>"
    return f"{value[:8]}..."
