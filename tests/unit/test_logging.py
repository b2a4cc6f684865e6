"""
Unit tests for process logging setup (mongobackup/__init__.py).
"""

import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from mongobackup import configure_logging


NOISY_LOGGERS = ('pymongo', 'botocore', 'boto3', 's3transfer', 'urllib3')


@pytest.fixture
def basic_config():
    """Patch basicConfig so pytest's handlers stay in place, and restore levels."""
    names = ('mongobackup',) + NOISY_LOGGERS
    levels = {name: logging.getLogger(name).level for name in names}

    with patch('mongobackup.logging.basicConfig') as basic:
        yield basic

    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    for handler in basic.call_args[1]['handlers']:
        handler.close()


def test_console_only(basic_config):
    logger = configure_logging('DEBUG')

    kwargs = basic_config.call_args[1]
    assert kwargs['level'] == logging.DEBUG
    assert kwargs['force'] is True
    assert len(kwargs['handlers']) == 1
    assert logger.name == 'mongobackup'
    assert logger.level == logging.DEBUG


def test_rotating_file(basic_config, tmp_path):
    log_file = tmp_path / 'logs' / 'mongobackup.log'

    configure_logging('INFO', log_file=str(log_file))

    handlers = basic_config.call_args[1]['handlers']
    file_handler = handlers[1]
    assert isinstance(file_handler, RotatingFileHandler)
    assert file_handler.maxBytes == 10485760
    assert file_handler.backupCount == 10
    assert log_file.parent.is_dir()


def test_unknown_level_falls_back_to_info(basic_config):
    configure_logging('LOUD')

    assert basic_config.call_args[1]['level'] == logging.INFO


def test_client_libraries_are_quieted(basic_config):
    configure_logging('DEBUG')

    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
