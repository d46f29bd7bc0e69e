"""
Logging setup for the detector process.

The driver configures each top-level logger (``stakewatch``, ``backend``,
``llm``) once; module loggers such as ``backend.orchestrator`` propagate to
them. Each top-level logger writes to the console and to a rotating file
under ``logs_dir``.
"""

import logging
import logging.handlers
from typing import List, Optional

from .config import Config, config as default_config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def _handlers(logger_name: str, settings: Config) -> List[logging.Handler]:
    log_file = settings.logs_dir / f"{logger_name}.log"
    return [
        logging.StreamHandler(),
        logging.handlers.RotatingFileHandler(log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS),
    ]


def setup_logging(logger_name: str = "stakewatch", settings: Optional[Config] = None) -> logging.Logger:
    """
    Configure a top-level logger once and return it.

    Args:
        logger_name: Top-level package logger to configure
        settings: Config override (defaults to the global config)

    Returns:
        The configured logger; repeated calls leave existing handlers alone
    """
    settings = settings or default_config
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        return logger

    logger.setLevel(settings.log_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _handlers(logger_name, settings):
        handler.setLevel(settings.log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
