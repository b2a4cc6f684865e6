"""
Backup module for Mongobackup.

This module handles the core backup functionality including:
- Backup owner election from the replica set status
- fsync lock lifecycle
- Streaming tar archive and compression
- Upload sinks (S3 and local)
- Execution orchestration
"""

from .cluster import ClusterStatus, ClusterMembership, BackupDecision, resolve
from .compression import stream_archive, write_tree, generate_archive_name
from .errors import (
    BackupError,
    ConfigError,
    ConnectivityError,
    LockError,
    ArchiveIOError,
    StorageError,
    UploadError
)
from .executor import BackupExecutor, BackupResult, execute_backup, check_role
from .lock import BackupLockManager, LockHandle
from .mongo import MongoService
from .storage import S3Storage, LocalStorage

__all__ = [
    'ClusterStatus',
    'ClusterMembership',
    'BackupDecision',
    'resolve',
    'stream_archive',
    'write_tree',
    'generate_archive_name',
    'BackupError',
    'ConfigError',
    'ConnectivityError',
    'LockError',
    'ArchiveIOError',
    'StorageError',
    'UploadError',
    'BackupExecutor',
    'BackupResult',
    'execute_backup',
    'check_role',
    'BackupLockManager',
    'LockHandle',
    'MongoService',
    'S3Storage',
    'LocalStorage'
]
