"""
Backup executor - orchestrates one backup run.

Workflow:
1. Validate configuration
2. Connect to the local MongoDB member and read the replica set status
3. Decide whether this member owns the backup (skip cleanly if not)
4. fsyncLock the member
5. Stream the data folder as a compressed archive into the upload sink
6. Finalize the upload (or abort it on any failure)
7. fsyncUnlock the member, whatever happened in steps 5-6
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .cluster import BackupDecision, resolve
from .compression import generate_archive_name, stream_archive
from .errors import BackupError, ConfigError, StorageError, UploadError
from .lock import BackupLockManager
from .mongo import MongoService
from .storage import S3Storage, LocalStorage


logger = logging.getLogger(__name__)


@dataclass
class BackupResult:
    """Outcome of a backup run."""

    status: str = 'running'
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    decision: Optional[BackupDecision] = None
    archive_key: Optional[str] = None
    destination: Optional[str] = None
    files_archived: int = 0
    bytes_read: int = 0
    bytes_written: int = 0
    error: Optional[BaseException] = None
    error_message: Optional[str] = None
    unlock_failed: bool = False
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in ('success', 'skipped')

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


def _utcnow():
    return datetime.now(timezone.utc)


def build_mongo_service(config) -> MongoService:
    return MongoService(
        host=config.mongo_host,
        port=config.mongo_port,
        username=config.mongo_username,
        password=config.mongo_password,
        timeout_ms=config.mongo_timeout_ms
    )


def build_storage(config):
    """
    Create the storage handler selected by config.storage_backend.

    Raises:
        StorageError: If the handler cannot be initialized
    """
    if config.storage_backend == 'local':
        return LocalStorage(config.local_backup_dir)

    return S3Storage(
        access_key=config.aws_access_key,
        secret_key=config.aws_secret_key,
        bucket_name=config.bucket_name,
        domain=config.s3_domain,
        region=config.s3_region,
        part_size=config.upload_part_size
    )


class BackupExecutor:
    """
    Orchestrates a backup run for one MongoDB member.
    """

    def __init__(self, config, mongo_service=None, storage=None):
        """
        Initialize backup executor.

        Args:
            config: Config instance
            mongo_service: Optional MongoService (built from config if omitted)
            storage: Optional storage handler (built from config if omitted)
        """
        self.config = config
        self.mongo_service = mongo_service
        self.storage = storage
        self.result = None

    def execute(self) -> BackupResult:
        """
        Execute the backup run.

        Fatal errors do not propagate; they are recorded on the result.

        Returns:
            BackupResult with status 'success', 'skipped' or 'failed'
        """
        self.result = BackupResult(started_at=_utcnow())
        self._log("Starting backup operation.")

        try:
            self._execute_workflow()

        except BackupError as e:
            self._fail(e)

        except Exception as e:
            logger.exception("Unexpected error during backup")
            self._fail(e)

        finally:
            self._close_mongo_service()
            self.result.completed_at = _utcnow()
            self._log(f"Duration: {self.result.duration_seconds:.3f}s")

        return self.result

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Pre-flight checks, before any connection
        self.config.validate()
        self._log(f"Using configuration: {self.config.describe()}")

        # Step 2-3: Backup owner election
        decision = self._resolve_role()
        self.result.decision = decision
        if not decision:
            self.result.status = 'skipped'
            self._log(f"Backup will NOT be performed: {decision.reason}")
            return
        self._log(f"Backup will be performed: {decision.reason}")

        storage = self._get_storage()

        # Step 4-7: Archive under the fsync lock
        lock_manager = BackupLockManager(self.mongo_service)
        try:
            with lock_manager.frozen():
                self._archive_and_upload(storage)
        finally:
            self.result.unlock_failed = lock_manager.last_release_failed
            if lock_manager.last_release_failed:
                self._log("DB UNLOCK failed, the node may still be locked", logging.WARNING)

        self.result.status = 'success'
        self._log(f"Uploaded archive {self.result.archive_key} to {self.result.destination}")

    def _resolve_role(self) -> BackupDecision:
        """
        Read the replica set status and run the election.

        Raises:
            ConnectivityError: If MongoDB cannot be reached or queried
        """
        if self.mongo_service is None:
            self.mongo_service = build_mongo_service(self.config)

        self.mongo_service.open()
        status = self.mongo_service.cluster_status()
        decision = resolve(status)

        membership = decision.membership
        self._log(
            f"Replica set view: node={membership.node}, primary={membership.primary}, "
            f"secondaries={membership.secondaries}"
        )
        return decision

    def _get_storage(self):
        if self.storage is None:
            try:
                self.storage = build_storage(self.config)
            except StorageError as e:
                raise UploadError(f"Cannot open upload destination: {e}")

        # Checked before the member is locked
        try:
            self.storage.test_connection()
        except StorageError as e:
            raise UploadError(f"Upload destination is not reachable: {e}")
        return self.storage

    def _archive_and_upload(self, storage):
        """
        Stream the data folder into the storage sink.

        Raises:
            ArchiveIOError: If the data folder cannot be archived
            UploadError: If the sink cannot be opened, written or finalized
        """
        archive_key = generate_archive_name(
            environment=self.config.environment,
            compression_format=self.config.compression_format
        )
        self.result.archive_key = archive_key
        self.result.destination = storage.describe(archive_key)

        metadata = {'data-folder': self.config.data_folder}
        if self.result.decision is not None and self.result.decision.membership.node:
            metadata['source-node'] = self.result.decision.membership.node
        if self.config.environment:
            metadata['environment'] = self.config.environment

        self._log(f"Streaming {self.config.data_folder} to {self.result.destination}")
        try:
            sink = storage.open_writer(archive_key, metadata=metadata)
        except UploadError:
            raise
        except StorageError as e:
            raise UploadError(f"Cannot open upload for {archive_key}: {e}")

        try:
            stats = stream_archive(self.config.data_folder, sink, self.config.compression_format)
        except BaseException:
            if sink.abort():
                self._log(f"Aborted upload of {archive_key}, nothing was stored")
            else:
                self._log(f"Upload of {archive_key} could not be aborted cleanly", logging.WARNING)
            raise

        # Finalize only after the tar trailer and the compressor's last block are in
        sink.close()

        self.result.files_archived = stats.files
        self.result.bytes_read = stats.bytes_read
        self.result.bytes_written = stats.bytes_written
        self._log(
            f"Archived {stats.files} files ({stats.bytes_read / 1024 / 1024:.2f} MB, "
            f"{stats.bytes_written / 1024 / 1024:.2f} MB compressed)"
        )

    def _fail(self, error: BaseException):
        self.result.status = 'failed'
        self.result.error = error
        self.result.error_message = str(error)
        self._log(f"Backup failed: {error}", logging.ERROR)

    def _close_mongo_service(self):
        if self.mongo_service is not None:
            self.mongo_service.close()

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the process log
        """
        timestamp = _utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.result.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")
        logger.log(level, message)


def execute_backup(config, mongo_service=None, storage=None) -> BackupResult:
    """
    Run one backup with the given configuration.

    Returns:
        BackupResult with execution results
    """
    executor = BackupExecutor(config, mongo_service=mongo_service, storage=storage)
    return executor.execute()


def check_role(config, mongo_service=None) -> BackupDecision:
    """
    Report whether this member would own the backup, without locking.

    Raises:
        ConfigError: If the MongoDB settings are missing or invalid
        ConnectivityError: If MongoDB cannot be reached or queried
    """
    invalid = [name for name in config.invalid_fields() if name.startswith('mongo_')]
    if invalid:
        raise ConfigError(
            f"Invalid MongoDB configuration: {', '.join(invalid)}",
            invalid=invalid
        )

    service = mongo_service or build_mongo_service(config)
    with service:
        return resolve(service.cluster_status())
