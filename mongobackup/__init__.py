"""
Mongobackup - streaming backups of a MongoDB replica set member to S3.

The lowest-sorted secondary of the replica set freezes its data files with
fsyncLock, streams the data folder as a compressed tar archive straight into
object storage, and unlocks again.
"""

import os
import time
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
FILE_FORMAT = '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'


def configure_logging(level='INFO', log_file=None):
    """
    Configure process logging.

    Args:
        level: Log level name or number
        log_file: Optional path of a rotating log file

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO
    else:
        log_level = level

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(CONSOLE_FORMAT)
    console_formatter.converter = time.gmtime
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # File handler
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(FILE_FORMAT)
        file_formatter.converter = time.gmtime
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # pymongo and botocore are chatty at DEBUG
    for noisy in ('pymongo', 'botocore', 'boto3', 's3transfer', 'urllib3'):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logger = logging.getLogger('mongobackup')
    logger.setLevel(log_level)
    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
