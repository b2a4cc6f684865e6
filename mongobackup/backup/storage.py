"""
Upload sinks for backup archives.

Supports:
- S3Storage: Stream to an S3 compatible bucket with a multipart upload
- LocalStorage: Stream to a file in a local directory

A sink is a writable binary object. close() finalizes the object at the
destination; abort() discards everything written so far so a failed run
never leaves a partial archive behind.
"""

import os
import logging
from pathlib import Path
from typing import Optional, Dict

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from .errors import StorageError, UploadError


logger = logging.getLogger(__name__)

# S3 rejects multipart parts smaller than 5MB (except the last one)
MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 10 * 1024 * 1024


def _client_error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3StreamWriter:
    """
    Writable stream backed by an S3 multipart upload.

    Bytes are buffered until a full part is available, then uploaded.
    A payload that never fills a part is sent with a single put_object on
    close().
    """

    def __init__(
        self,
        s3_client,
        bucket_name: str,
        key: str,
        part_size: int = DEFAULT_PART_SIZE,
        metadata: Optional[Dict[str, str]] = None
    ):
        self.closed = False
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.key = key
        self.part_size = max(part_size, MIN_PART_SIZE)
        self.metadata = metadata or {}
        self.upload_id = None
        self.parts = []
        self.bytes_written = 0
        self.aborted = False
        self._buffer = bytearray()

    def flush(self):
        # Called by the compressor stage through the chain output
        pass

    def write(self, data) -> int:
        if self.closed:
            raise UploadError(f"Write to closed upload: {self.key}")

        self._buffer.extend(data)
        self.bytes_written += len(data)

        while len(self._buffer) >= self.part_size:
            chunk = bytes(self._buffer[:self.part_size])
            del self._buffer[:self.part_size]
            self._upload_part(chunk)

        return len(data)

    def _start_multipart(self):
        kwargs = {'Bucket': self.bucket_name, 'Key': self.key}
        if self.metadata:
            kwargs['Metadata'] = self.metadata

        try:
            response = self.s3_client.create_multipart_upload(**kwargs)
        except ClientError as e:
            raise UploadError(f"S3 upload could not be started ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload could not be started: {e}")

        self.upload_id = response['UploadId']
        logger.debug(f"Started multipart upload {self.upload_id} for {self.key}")

    def _upload_part(self, chunk: bytes):
        if self.upload_id is None:
            self._start_multipart()

        part_number = len(self.parts) + 1
        try:
            response = self.s3_client.upload_part(
                Bucket=self.bucket_name,
                Key=self.key,
                PartNumber=part_number,
                UploadId=self.upload_id,
                Body=chunk
            )
        except ClientError as e:
            raise UploadError(f"S3 upload of part {part_number} failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload of part {part_number} failed: {e}")

        self.parts.append({
            'PartNumber': part_number,
            'ETag': response['ETag']
        })

    def close(self):
        """
        Finalize the object in the bucket.

        Raises:
            UploadError: If the upload cannot be completed
        """
        if self.closed:
            return

        try:
            if self.upload_id is None:
                self._put_whole_object()
            else:
                if self._buffer:
                    self._upload_part(bytes(self._buffer))
                    self._buffer.clear()
                self._complete_multipart()
        except UploadError:
            self.abort()
            raise

        self.closed = True
        logger.info(f"Uploaded {self.bytes_written} bytes to s3://{self.bucket_name}/{self.key}")

    def _put_whole_object(self):
        kwargs = {'Bucket': self.bucket_name, 'Key': self.key, 'Body': bytes(self._buffer)}
        if self.metadata:
            kwargs['Metadata'] = self.metadata

        try:
            self.s3_client.put_object(**kwargs)
        except ClientError as e:
            raise UploadError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload failed: {e}")

        self._buffer.clear()

    def _complete_multipart(self):
        try:
            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=self.key,
                UploadId=self.upload_id,
                MultipartUpload={'Parts': self.parts}
            )
        except ClientError as e:
            raise UploadError(f"S3 upload could not be completed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload could not be completed: {e}")

    def abort(self):
        """
        Discard the upload. Never raises.

        Returns:
            True if nothing is left behind in the bucket
        """
        if self.closed:
            return self.aborted

        self.aborted = True
        self._buffer.clear()
        self.closed = True

        if self.upload_id is None:
            return True

        try:
            self.s3_client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=self.key,
                UploadId=self.upload_id
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to abort multipart upload {self.upload_id} for {self.key}: {e}")
            return False

        logger.info(f"Aborted multipart upload for {self.key}")
        return True


class S3Storage:
    """
    Handler for streaming backups to S3.

    Archives are stored directly under the archive name, without any
    prefix, so the bucket lists backups in chronological order.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        domain: Optional[str] = None,
        region: str = 'us-east-1',
        part_size: int = DEFAULT_PART_SIZE
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: AWS access key ID
            secret_key: AWS secret access key
            bucket_name: S3 bucket name
            domain: S3 endpoint domain (e.g. s3-eu-west-1.amazonaws.com)
            region: AWS region (default: us-east-1)
            part_size: Multipart upload part size in bytes
        """
        self.bucket_name = bucket_name
        self.region = region
        self.part_size = part_size
        self.endpoint_url = self._endpoint_url(domain)

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=self.endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @staticmethod
    def _endpoint_url(domain: Optional[str]) -> Optional[str]:
        if not domain:
            return None
        if domain.startswith('http://') or domain.startswith('https://'):
            return domain
        return f"https://{domain}"

    def open_writer(self, key: str, metadata: Optional[Dict[str, str]] = None) -> S3StreamWriter:
        """
        Open a streaming upload.

        Args:
            key: Object key
            metadata: Optional user metadata stored with the object

        Returns:
            S3StreamWriter
        """
        logger.info(f"Opening upload to s3://{self.bucket_name}/{key}")
        return S3StreamWriter(
            self.s3_client,
            self.bucket_name,
            key,
            part_size=self.part_size,
            metadata=metadata
        )

    def describe(self, key: str) -> str:
        return f"s3://{self.bucket_name}/{key}"

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _client_error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")


class LocalFileWriter:
    """
    Writable stream into {path}.partial, renamed to {path} on close().
    """

    def __init__(self, path: Path):
        self.closed = False
        self.path = path
        self.partial_path = path.with_name(path.name + '.partial')
        self.bytes_written = 0
        self.aborted = False

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.partial_path, 'wb')
        except OSError as e:
            raise UploadError(f"Cannot create {self.partial_path}: {e}")

    def flush(self):
        # Called by the compressor stage through the chain output
        pass

    def write(self, data) -> int:
        if self.closed:
            raise UploadError(f"Write to closed file: {self.path}")
        try:
            self._file.write(data)
        except OSError as e:
            raise UploadError(f"Failed to write {self.partial_path}: {e}")
        self.bytes_written += len(data)
        return len(data)

    def close(self):
        """
        Flush the file and move it into place.

        Raises:
            UploadError: If the file cannot be flushed or renamed
        """
        if self.closed:
            return

        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
            os.replace(self.partial_path, self.path)
        except OSError as e:
            error = UploadError(f"Failed to store {self.path}: {e}")
            self.abort()
            raise error

        self.closed = True
        logger.info(f"Stored {self.bytes_written} bytes in {self.path}")

    def abort(self):
        """
        Remove the partial file. Never raises.

        Returns:
            True if nothing is left behind
        """
        if self.closed:
            return self.aborted

        self.aborted = True
        self.closed = True
        try:
            self._file.close()
        except OSError as e:
            logger.warning(f"Failed to close partial file {self.partial_path}: {e}")

        try:
            if os.path.lexists(self.partial_path):
                self.partial_path.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove partial file {self.partial_path}: {e}")
            return False
        return True


class LocalStorage:
    """
    Handler for storing backups in a local directory.

    Useful for development and for hosts that ship backups with another
    tool. Archives are stored as {base_path}/{archive_name}.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def open_writer(self, key: str, metadata: Optional[Dict[str, str]] = None) -> LocalFileWriter:
        """
        Open a streaming write of an archive file.

        Args:
            key: Archive name, relative to base_path
            metadata: Ignored for local storage

        Returns:
            LocalFileWriter
        """
        logger.info(f"Opening local archive {self.base_path / key}")
        return LocalFileWriter(self.base_path / key)

    def describe(self, key: str) -> str:
        return str(self.base_path / key)

    def test_connection(self) -> bool:
        """
        Raises:
            StorageError: If base_path is not writable
        """
        if not os.access(self.base_path, os.W_OK):
            raise StorageError(f"Local storage directory is not writable: {self.base_path}")
        return True
