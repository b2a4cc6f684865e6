"""
Exception types for a backup run.

Every fatal condition of a run has its own class so the executor and the CLI
can tell them apart. A node that is not the backup owner is not an error and
has no class here; neither does a failed unlock, which is only logged.
"""


class BackupError(Exception):
    """Base class for fatal backup errors."""
    pass


class ConfigError(BackupError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message, invalid=None):
        super().__init__(message)
        self.invalid = list(invalid or [])


class ConnectivityError(BackupError):
    """Raised when the MongoDB node cannot be reached or queried."""
    pass


class LockError(BackupError):
    """Raised when the fsync lock cannot be acquired."""
    pass


class ArchiveIOError(BackupError):
    """Raised when a source file cannot be read or written into the archive."""
    pass


class StorageError(BackupError):
    """Raised when a storage operation fails."""
    pass


class UploadError(StorageError):
    """Raised when the upload sink cannot be opened, written or finalized."""
    pass
