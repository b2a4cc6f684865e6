"""Command line entry point."""

import click

from mongobackup import __version__, configure_logging
from mongobackup.config import Config, STORAGE_BACKENDS
from mongobackup.backup.compression import FORMAT_EXTENSIONS
from mongobackup.backup.errors import BackupError, ConfigError
from mongobackup.backup.executor import execute_backup, check_role


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


MONGO_OPTIONS = [
    click.option('--mongo-host', help='MongoDB host of this member [MONGO_HOST]'),
    click.option('--mongo-port', type=int, help='MongoDB port [MONGO_PORT, default 27017]'),
    click.option('--mongo-username', help='MongoDB user [MONGO_USERNAME]'),
    click.option('--mongo-password', help='MongoDB password [MONGO_PASSWORD]'),
    click.option('--mongo-timeout-ms', type=int, help='Server selection timeout [MONGO_TIMEOUT_MS]'),
]


def mongo_options(func):
    """Options shared by every command that talks to MongoDB."""
    for option in reversed(MONGO_OPTIONS):
        func = option(func)
    return func


@click.group()
@click.option('--log-level', default=None, help='Log level [LOG_LEVEL, default INFO]')
@click.option('--log-file', default=None, help='Rotating log file [LOG_FILE]')
@click.version_option(version=__version__, prog_name='mongobackup')
@click.pass_context
def cli(ctx, log_level, log_file):
    """Mongobackup - stream a MongoDB replica set member's data folder to S3.

    Run the same command on every member; only the lowest-sorted secondary
    performs the backup, the others exit successfully without doing anything.

    Examples:
        # Back up to S3
        mongobackup run --mongo-host localhost --data-folder /data/db \\
            --bucket-name backups --s3-domain s3-eu-west-1.amazonaws.com

        # Show whether this member would take the backup
        mongobackup status --mongo-host localhost
    """
    ctx.ensure_object(dict)
    ctx.obj['log_level'] = log_level
    ctx.obj['log_file'] = log_file


def _setup_logging(ctx, config):
    configure_logging(
        level=ctx.obj.get('log_level') or config.log_level,
        log_file=ctx.obj.get('log_file') or config.log_file
    )


@cli.command('run')
@mongo_options
@click.option('--aws-access-key', help='AWS access key [AWS_ACCESS_KEY]')
@click.option('--aws-secret-key', help='AWS secret key [AWS_SECRET_KEY]')
@click.option('--bucket-name', help='Destination bucket [BUCKET_NAME]')
@click.option('--s3-domain', help='S3 endpoint domain [S3_DOMAIN]')
@click.option('--s3-region', help='S3 region [S3_REGION, default us-east-1]')
@click.option('--upload-part-size-mb', type=int, help='Multipart part size [UPLOAD_PART_SIZE_MB, default 10]')
@click.option('--data-folder', help='Data folder to back up [DATA_FOLDER]')
@click.option('--environment', help='Tag appended to the archive name [BACKUP_ENVIRONMENT]')
@click.option('--compression-format', type=click.Choice(list(FORMAT_EXTENSIONS.keys())),
              help='Archive format [COMPRESSION_FORMAT, default tar.gz]')
@click.option('--storage-backend', type=click.Choice(list(STORAGE_BACKENDS)),
              help='Where to store the archive [STORAGE_BACKEND, default s3]')
@click.option('--local-backup-dir', help='Directory for the local backend [LOCAL_BACKUP_DIR]')
@click.pass_context
def run_command(ctx, **options):
    """Perform a backup if this member is the backup owner."""
    config = Config(**options)
    _setup_logging(ctx, config)

    result = execute_backup(config)

    if result.status == 'skipped':
        click.echo(f"Backup skipped: {result.decision.reason}")
        ctx.exit(EXIT_OK)

    if result.status == 'success':
        click.echo(
            f"Backup uploaded to {result.destination} "
            f"({result.files_archived} files, {result.bytes_written} bytes)"
        )
        if result.unlock_failed:
            click.echo("Warning: fsyncUnlock failed, the node may still be locked", err=True)
        ctx.exit(EXIT_OK)

    click.echo(f"Backup failed: {result.error_message}", err=True)
    if result.unlock_failed:
        click.echo("Warning: fsyncUnlock failed, the node may still be locked", err=True)
    if isinstance(result.error, ConfigError):
        ctx.exit(EXIT_CONFIG_ERROR)
    ctx.exit(EXIT_FAILED)


@cli.command('status')
@mongo_options
@click.pass_context
def status_command(ctx, **options):
    """Show whether this member would take the backup."""
    config = Config(**options)
    _setup_logging(ctx, config)

    try:
        decision = check_role(config)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_CONFIG_ERROR)
    except BackupError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_FAILED)

    membership = decision.membership
    click.echo(f"Node:        {membership.node or '-'}")
    click.echo(f"Primary:     {membership.primary or '-'}")
    click.echo(f"Secondaries: {', '.join(membership.secondaries) or '-'}")
    click.echo(f"Backup owner: {'yes' if decision.eligible else 'no'} ({decision.reason})")


if __name__ == '__main__':
    cli()
