"""
fsync lock lifecycle around the archive step.

The lock must be released exactly once for every successful acquire, on
every exit path. A failed release is logged and reported but never raised,
so it cannot hide the error that ended the run.
"""

import uuid
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import LockError


logger = logging.getLogger(__name__)


@dataclass
class LockHandle:
    """Token for an acquired fsync lock."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    released: bool = False


class BackupLockManager:
    """
    Acquires and releases the cluster write freeze for one run.

    Args:
        service: Object with fsync_lock() and fsync_unlock() methods
    """

    def __init__(self, service):
        self.service = service
        self.handle: Optional[LockHandle] = None
        self.last_release_failed = False

    def acquire(self) -> LockHandle:
        """
        Freeze writes on this node.

        Returns:
            LockHandle for the acquired lock

        Raises:
            LockError: If the lock command fails or a lock is already held
        """
        if self.handle is not None:
            raise LockError(f"Lock {self.handle.id} is already held")

        logger.info("Attempting to LOCK DB...")
        try:
            self.service.fsync_lock()
        except LockError:
            raise
        except Exception as e:
            raise LockError(f"Cannot lock DB: {e}")

        self.handle = LockHandle()
        logger.info("DB LOCK command successfully executed.")
        return self.handle

    def release(self, handle: LockHandle) -> bool:
        """
        Unfreeze writes on this node.

        Never raises. Releasing a handle that is not the outstanding one
        does nothing.

        Args:
            handle: Handle returned by acquire()

        Returns:
            True if the unlock command succeeded
        """
        if handle is None or handle.released or handle is not self.handle:
            logger.debug("Ignoring release of a lock that is not held")
            return False

        # The handle is spent whether or not the command succeeds
        handle.released = True
        self.handle = None

        logger.info("Attempting to UNLOCK DB...")
        try:
            self.service.fsync_unlock()
        except Exception as e:
            self.last_release_failed = True
            logger.warning(f"Cannot UNLOCK DB, the node may still be locked: {e}")
            return False

        self.last_release_failed = False
        logger.info("DB UNLOCK command successfully executed.")
        return True

    @contextmanager
    def frozen(self):
        """
        Hold the lock for the duration of a with block.

        Yields:
            LockHandle

        Raises:
            LockError: If the lock cannot be acquired (the block does not run)
        """
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)
