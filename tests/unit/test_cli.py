"""
Unit tests for the command line interface (mongobackup/cli.py).
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mongobackup import __version__
from mongobackup.cli import cli, EXIT_OK, EXIT_FAILED, EXIT_CONFIG_ERROR
from mongobackup.backup.cluster import BackupDecision, ClusterMembership
from mongobackup.backup.errors import ConfigError, ConnectivityError
from mongobackup.backup.executor import BackupResult


MEMBERSHIP = ClusterMembership(node='secondary1', primary='primary', secondaries=['secondary1', 'secondary2'])


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def configure_logging():
    with patch('mongobackup.cli.configure_logging') as configure:
        yield configure


@pytest.fixture
def execute_backup():
    with patch('mongobackup.cli.execute_backup') as execute:
        yield execute


@pytest.fixture
def check_role():
    with patch('mongobackup.cli.check_role') as check:
        yield check


class TestRunCommand:
    """Test `mongobackup run`."""

    def test_success(self, runner, execute_backup):
        execute_backup.return_value = BackupResult(
            status='success',
            destination='s3://backups/2024-01-15T12-30-45.tar.gz',
            files_archived=3,
            bytes_written=1024
        )

        result = runner.invoke(cli, ['run', '--mongo-host', 'db1'])

        assert result.exit_code == EXIT_OK
        assert "Backup uploaded to s3://backups/2024-01-15T12-30-45.tar.gz" in result.output
        assert "3 files" in result.output

    def test_options_reach_config(self, runner, execute_backup):
        execute_backup.return_value = BackupResult(status='success')

        runner.invoke(cli, [
            'run',
            '--mongo-host', 'db1',
            '--mongo-port', '27018',
            '--bucket-name', 'backups',
            '--data-folder', '/data/db',
            '--compression-format', 'tar.xz',
            '--environment', 'prod'
        ])

        config = execute_backup.call_args[0][0]
        assert config.mongo_host == 'db1'
        assert config.mongo_port == 27018
        assert config.bucket_name == 'backups'
        assert config.data_folder == '/data/db'
        assert config.compression_format == 'tar.xz'
        assert config.environment == 'prod'

    def test_environment_fills_missing_options(self, runner, execute_backup, monkeypatch):
        monkeypatch.setenv('MONGO_HOST', 'db-from-env')
        execute_backup.return_value = BackupResult(status='success')

        runner.invoke(cli, ['run'])

        assert execute_backup.call_args[0][0].mongo_host == 'db-from-env'

    def test_skipped(self, runner, execute_backup):
        execute_backup.return_value = BackupResult(
            status='skipped',
            decision=BackupDecision(False, MEMBERSHIP, reason='This node is the primary')
        )

        result = runner.invoke(cli, ['run'])

        assert result.exit_code == EXIT_OK
        assert "Backup skipped: This node is the primary" in result.output

    def test_unlock_warning(self, runner, execute_backup):
        execute_backup.return_value = BackupResult(status='success', unlock_failed=True)

        result = runner.invoke(cli, ['run'])

        assert result.exit_code == EXIT_OK
        assert "fsyncUnlock failed" in result.output

    def test_failure(self, runner, execute_backup):
        error = ConnectivityError("Can't connect to MongoDB on db1:27017")
        execute_backup.return_value = BackupResult(status='failed', error=error, error_message=str(error))

        result = runner.invoke(cli, ['run'])

        assert result.exit_code == EXIT_FAILED
        assert "Backup failed: Can't connect to MongoDB on db1:27017" in result.output

    def test_config_failure(self, runner, execute_backup):
        error = ConfigError("Aborting backup operation, invalid configuration: mongo_host", invalid=['mongo_host'])
        execute_backup.return_value = BackupResult(status='failed', error=error, error_message=str(error))

        result = runner.invoke(cli, ['run'])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_invalid_compression_format(self, runner, execute_backup):
        result = runner.invoke(cli, ['run', '--compression-format', 'zip'])

        assert result.exit_code == 2
        execute_backup.assert_not_called()

    def test_log_options(self, runner, execute_backup, configure_logging):
        execute_backup.return_value = BackupResult(status='success')

        runner.invoke(cli, ['--log-level', 'DEBUG', '--log-file', '/tmp/backup.log', 'run'])

        configure_logging.assert_called_once_with(level='DEBUG', log_file='/tmp/backup.log')

    def test_log_level_from_environment(self, runner, execute_backup, configure_logging, monkeypatch):
        monkeypatch.setenv('LOG_LEVEL', 'WARNING')
        execute_backup.return_value = BackupResult(status='success')

        runner.invoke(cli, ['run'])

        configure_logging.assert_called_once_with(level='WARNING', log_file=None)


class TestStatusCommand:
    """Test `mongobackup status`."""

    def test_owner(self, runner, check_role):
        check_role.return_value = BackupDecision(True, MEMBERSHIP, reason='This node is the lowest secondary')

        result = runner.invoke(cli, ['status', '--mongo-host', 'db1'])

        assert result.exit_code == EXIT_OK
        assert "Node:        secondary1" in result.output
        assert "Primary:     primary" in result.output
        assert "Secondaries: secondary1, secondary2" in result.output
        assert "Backup owner: yes" in result.output
        assert check_role.call_args[0][0].mongo_host == 'db1'

    def test_not_owner(self, runner, check_role):
        membership = ClusterMembership(node='secondary2', primary='primary', secondaries=['secondary1', 'secondary2'])
        check_role.return_value = BackupDecision(False, membership, reason='not the lowest secondary')

        result = runner.invoke(cli, ['status'])

        assert result.exit_code == EXIT_OK
        assert "Backup owner: no (not the lowest secondary)" in result.output

    def test_config_error(self, runner, check_role):
        check_role.side_effect = ConfigError("Invalid MongoDB configuration: mongo_host", invalid=['mongo_host'])

        result = runner.invoke(cli, ['status'])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "mongo_host" in result.output

    def test_unreachable(self, runner, check_role):
        check_role.side_effect = ConnectivityError("Can't connect to MongoDB on db1:27017")

        result = runner.invoke(cli, ['status', '--mongo-host', 'db1'])

        assert result.exit_code == EXIT_FAILED
        assert "Can't connect" in result.output


def test_version(runner):
    result = runner.invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert __version__ in result.output
