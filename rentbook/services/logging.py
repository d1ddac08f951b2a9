"""Logging setup for the rentbook API server.

Level and file come from settings (LOG_LEVEL and LOG_FILE in the environment
or .env). Every logger writes to stdout and to the log file, so billing runs,
reconciliation and payment edits end up in one trail.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from rentbook.config import Settings, settings

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers opened by configure_logging, closed when it runs again
_installed_handlers: List[logging.Handler] = []


def resolve_log_level(name: Optional[str]) -> int:
    """Map a level name ("debug", "WARNING") to its logging constant.

    Unknown or blank names fall back to INFO.
    """
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def uvicorn_log_level(config: Optional[Settings] = None) -> str:
    """Level name in the lowercase form uvicorn accepts."""
    config = config or settings
    return logging.getLevelName(resolve_log_level(config.log_level)).lower()


def configure_logging(config: Optional[Settings] = None) -> Path:
    """Point the root logger at stdout and the configured log file.

    Calling it again replaces the handlers of the previous call.

    Args:
        config: Settings to read log_level and log_file from (default: global settings)

    Returns:
        Path of the log file
    """
    config = config or settings
    level = resolve_log_level(config.log_level)
    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in _installed_handlers:
        handler.close()
    _installed_handlers.clear()
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path, encoding="utf-8")):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
        _installed_handlers.append(handler)

    return log_path


__all__ = ["configure_logging", "resolve_log_level", "uvicorn_log_level"]
