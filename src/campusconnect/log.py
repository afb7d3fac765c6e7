"""
Logging setup driven by ``LoggingConfig``.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingConfig

ROOT_LOGGER = "campusconnect"


def configure_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Install a handler on the ``campusconnect`` logger.

    Logs go to stderr, or to a rotating file when ``file_path`` is set.
    Calling it again replaces the handler instead of stacking another one.
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(config.level.upper())

    for handler in list(logger.handlers):
        if getattr(handler, "_campus_handler", False):
            logger.removeHandler(handler)
            handler.close()

    if config.file_path:
        handler = RotatingFileHandler(
            config.file_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
        )
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(config.format))
    handler._campus_handler = True
    logger.addHandler(handler)
    return logger
