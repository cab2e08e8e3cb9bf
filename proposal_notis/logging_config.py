"""
Logging Configuration for the Governance Proposal Watcher.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from . import config


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    Configure logging with file and console handlers.

    Args:
        log_file: Override for config.LOG_FILE_PATH (empty string disables the file handler)
        level: Override for config.LOG_LEVEL
    """
    log_file = config.LOG_FILE_PATH if log_file is None else log_file
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    # Create logger
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear any existing handlers
    logger.handlers.clear()

    # Create formatter
    formatter = logging.Formatter(config.LOG_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        # Ensure log directory exists
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.LOG_MAX_BYTES,
            backupCount=config.LOG_BACKUP_COUNT
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("apprise").setLevel(logging.WARNING)

    logger.info("=" * 80)
    logger.info("Governance Proposal Watcher - Logging Initialized")
    logger.info(f"Log level: {level_name}")
    logger.info(f"Log file: {log_file or '(console only)'}")
    logger.info("=" * 80)
