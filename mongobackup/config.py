import os
import logging

from mongobackup.backup.compression import FORMAT_EXTENSIONS
from mongobackup.backup.errors import ConfigError


logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ('s3', 'local')

SECRET_FIELDS = ('mongo_password', 'aws_access_key', 'aws_secret_key')


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        # Keep the raw value so validate() can report it
        return value


class Config:
    """
    Backup run configuration.

    Values come from the environment; keyword arguments that are not None
    take precedence (the CLI passes its options this way).
    """

    def __init__(self, **overrides):
        env = os.environ

        # MongoDB
        self.mongo_host = env.get('MONGO_HOST')
        self.mongo_port = _env_int('MONGO_PORT', 27017)
        self.mongo_username = env.get('MONGO_USERNAME')
        self.mongo_password = env.get('MONGO_PASSWORD')
        self.mongo_timeout_ms = _env_int('MONGO_TIMEOUT_MS', 10000)

        # Storage
        self.storage_backend = (env.get('STORAGE_BACKEND') or 's3').lower()
        self.aws_access_key = env.get('AWS_ACCESS_KEY')
        self.aws_secret_key = env.get('AWS_SECRET_KEY')
        self.bucket_name = env.get('BUCKET_NAME')
        self.s3_domain = env.get('S3_DOMAIN')
        self.s3_region = env.get('S3_REGION') or 'us-east-1'
        self.upload_part_size_mb = _env_int('UPLOAD_PART_SIZE_MB', 10)
        self.local_backup_dir = env.get('LOCAL_BACKUP_DIR')

        # Archive
        self.data_folder = env.get('DATA_FOLDER')
        self.environment = env.get('BACKUP_ENVIRONMENT')
        self.compression_format = env.get('COMPRESSION_FORMAT') or 'tar.gz'

        # Logging
        self.log_level = env.get('LOG_LEVEL') or 'INFO'
        self.log_file = env.get('LOG_FILE')

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"Unknown configuration option: {name}")
            if value is not None:
                setattr(self, name, value)

    @property
    def upload_part_size(self):
        return self.upload_part_size_mb * 1024 * 1024

    def invalid_fields(self):
        """
        Names of all missing or invalid settings.

        Returns:
            List of setting names, empty when the configuration is usable
        """
        invalid = []

        if not self.mongo_host:
            invalid.append('mongo_host')
        if not isinstance(self.mongo_port, int) or not 0 < self.mongo_port < 65536:
            invalid.append('mongo_port')
        if self.mongo_username and not self.mongo_password:
            invalid.append('mongo_password')
        if not isinstance(self.mongo_timeout_ms, int) or self.mongo_timeout_ms <= 0:
            invalid.append('mongo_timeout_ms')

        if not self.data_folder or not os.path.isdir(self.data_folder):
            invalid.append('data_folder')
        if self.compression_format not in FORMAT_EXTENSIONS:
            invalid.append('compression_format')

        if self.storage_backend == 's3':
            if not self.aws_access_key:
                invalid.append('aws_access_key')
            if not self.aws_secret_key:
                invalid.append('aws_secret_key')
            if not self.bucket_name:
                invalid.append('bucket_name')
            if not self.s3_domain:
                invalid.append('s3_domain')
            if not isinstance(self.upload_part_size_mb, int) or self.upload_part_size_mb < 5:
                invalid.append('upload_part_size_mb')
        elif self.storage_backend == 'local':
            if not self.local_backup_dir:
                invalid.append('local_backup_dir')
        else:
            invalid.append('storage_backend')

        return invalid

    def validate(self):
        """
        Check the configuration before any connection is attempted.

        Raises:
            ConfigError: Listing every missing or invalid setting
        """
        invalid = self.invalid_fields()
        if not invalid:
            return

        for name in invalid:
            logger.warning(f"{name} is missing or invalid!")
        raise ConfigError(
            f"Aborting backup operation, invalid configuration: {', '.join(invalid)}",
            invalid=invalid
        )

    def describe(self):
        """
        Settings as a dict with secrets masked, for logging.
        """
        values = {}
        for name, value in vars(self).items():
            if name in SECRET_FIELDS and value:
                value = '****'
            values[name] = value
        return values
