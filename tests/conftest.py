"""
Shared pytest fixtures for Mongobackup tests.

This module provides fixtures for:
- A clean process environment for configuration tests
- isMaster replies and a mocked MongoDB service
- A sample data folder to archive
- Mock fixtures for S3 (moto)
"""

import os
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from mongobackup.config import Config
from mongobackup.backup.cluster import ClusterStatus


CONFIG_ENV_VARS = [
    'MONGO_HOST', 'MONGO_PORT', 'MONGO_USERNAME', 'MONGO_PASSWORD', 'MONGO_TIMEOUT_MS',
    'STORAGE_BACKEND', 'AWS_ACCESS_KEY', 'AWS_SECRET_KEY', 'BUCKET_NAME', 'S3_DOMAIN',
    'S3_REGION', 'UPLOAD_PART_SIZE_MB', 'LOCAL_BACKUP_DIR', 'DATA_FOLDER',
    'BACKUP_ENVIRONMENT', 'COMPRESSION_FORMAT', 'LOG_LEVEL', 'LOG_FILE',
]

PRIMARY = 'primary'
SEC1 = 'secondary1'
SEC2 = 'secondary2'


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove configuration variables so tests never see the host's settings."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    # moto needs credentials to sign requests
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


def hello_reply(is_primary, hosts, primary, me):
    """Build an isMaster reply like a replica set member sends."""
    return {
        'ismaster': is_primary,
        'secondary': not is_primary,
        'hosts': list(hosts),
        'primary': primary,
        'me': me,
        'ok': 1.0
    }


@pytest.fixture
def make_status():
    """Factory for ClusterStatus snapshots built from isMaster replies."""
    def _make(is_primary=False, hosts=(SEC1, PRIMARY, SEC2), primary=PRIMARY, me=SEC1):
        return ClusterStatus.from_hello(hello_reply(is_primary, hosts, primary, me))
    return _make


@pytest.fixture
def mongo_service(make_status):
    """
    Mocked MongoService.

    By default this node is secondary1, the lowest secondary, so it owns
    the backup.
    """
    service = MagicMock()
    service.cluster_status.return_value = make_status()
    return service


@pytest.fixture
def data_folder(tmp_path):
    """
    Create a sample data folder.

    Creates:
    - collection-0.wt
    - journal/WiredTigerLog.0001
    - diagnostic.data/metrics.2024
    - empty/ (no files)
    """
    folder = tmp_path / 'db'
    folder.mkdir()

    (folder / 'collection-0.wt').write_bytes(b'collection data' * 100)

    journal = folder / 'journal'
    journal.mkdir()
    (journal / 'WiredTigerLog.0001').write_bytes(os.urandom(4096))

    diagnostics = folder / 'diagnostic.data'
    diagnostics.mkdir()
    (diagnostics / 'metrics.2024').write_text('metrics')

    (folder / 'empty').mkdir()

    return folder


@pytest.fixture
def data_files(data_folder):
    """Full paths of the regular files in data_folder, mapped to their content."""
    files = {}
    for dirpath, _dirnames, filenames in os.walk(data_folder):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            with open(path, 'rb') as f:
                files[path] = f.read()
    return files


@pytest.fixture
def local_config(data_folder, tmp_path):
    """Configuration using the local storage backend."""
    return Config(
        mongo_host='localhost',
        data_folder=str(data_folder),
        storage_backend='local',
        local_backup_dir=str(tmp_path / 'backups')
    )


@pytest.fixture
def s3_config(data_folder):
    """Configuration using the S3 storage backend."""
    return Config(
        mongo_host='localhost',
        data_folder=str(data_folder),
        aws_access_key='test_access_key',
        aws_secret_key='test_secret_key',
        bucket_name='test-bucket',
        s3_domain='s3.amazonaws.com',
        environment='test'
    )


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
