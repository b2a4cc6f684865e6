"""
MongoDB access for a backup run.

Wraps a pymongo client connected directly to one replica set member and
exposes the three commands a backup needs: isMaster, fsync lock and
fsyncUnlock.
"""

import logging
from typing import List, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .cluster import ClusterStatus
from .errors import ConnectivityError, LockError


logger = logging.getLogger(__name__)

# Talk to the addressed member even when it is a secondary
DIRECT_CONNECTION_OPTION = 'directConnection=true'
CONNECTION_OPTION_SEPARATOR = '&'


def build_connection_uri(host: str, port: int, options: Optional[List[str]] = None) -> str:
    """
    Build a MongoDB connection URI for a single member.

    Args:
        host: Member host name
        port: Member port
        options: Extra connection options ('key=value')

    Returns:
        URI of the form mongodb://host:port/?opt1&opt2
    """
    uri = f"mongodb://{host}:{port}"
    if not options:
        return uri
    return uri + '/?' + CONNECTION_OPTION_SEPARATOR.join(options)


class MongoService:
    """
    Connection to the local replica set member.

    Use as a context manager or call open()/close() explicitly.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_ms: int = 10000
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout_ms = timeout_ms
        self.uri = build_connection_uri(host, port, [DIRECT_CONNECTION_OPTION])
        self.client = None

    def open(self):
        """
        Connect to the member and verify it answers.

        Raises:
            ConnectivityError: If the member cannot be reached
        """
        kwargs = {'serverSelectionTimeoutMS': self.timeout_ms}
        if self.username:
            kwargs['username'] = self.username
            kwargs['password'] = self.password

        try:
            self.client = MongoClient(self.uri, **kwargs)
            self.client.admin.command('ping')
        except PyMongoError as e:
            self.close()
            raise ConnectivityError(f"Can't connect to MongoDB on {self.host}:{self.port}: {e}")

        logger.info(f"Connected to MongoDB on {self.host}:{self.port}")

    def close(self):
        """Close the client if open."""
        if self.client is not None:
            self.client.close()
            self.client = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _require_client(self):
        if self.client is None:
            raise ConnectivityError("MongoDB connection is not open")
        return self.client

    def cluster_status(self) -> ClusterStatus:
        """
        Query the member's view of the replica set.

        Returns:
            ClusterStatus built from the isMaster reply

        Raises:
            ConnectivityError: If the command fails
        """
        client = self._require_client()
        try:
            response = client.admin.command('isMaster')
        except PyMongoError as e:
            raise ConnectivityError(f"Can't check if node is primary, isMaster failed: {e}")

        return ClusterStatus.from_hello(response)

    def fsync_lock(self):
        """
        Flush all pending writes and block further writes.

        Raises:
            LockError: If the lock command fails
        """
        client = self._require_client()
        try:
            response = client.admin.command('fsync', lock=True)
        except PyMongoError as e:
            raise LockError(f"Cannot lock DB: {e}")
        return response

    def fsync_unlock(self):
        """
        Release the fsync lock.

        Raises:
            PyMongoError: If the unlock command fails
        """
        client = self._require_client()
        return client.admin.command('fsyncUnlock')
