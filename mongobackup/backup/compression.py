"""
Streaming archive creation.

The data folder is written as a tar stream into a compressor, which writes
into the upload sink. Nothing is staged on disk and memory use is bounded by
the buffers of the chain.

Supported formats:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)

Directories do not get entries of their own; only regular files are
archived, each under its full path as found during the walk.
"""

import os
import bz2
import gzip
import lzma
import stat
import logging
import tarfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import ArchiveIOError, UploadError


logger = logging.getLogger(__name__)

ARCHIVE_NAME_DATE_FORMAT = '%Y-%m-%dT%H-%M-%S'

FORMAT_EXTENSIONS = {
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}


@dataclass
class ArchiveContext:
    """State of one archive being written."""

    writer: tarfile.TarFile
    files_added: int = 0
    bytes_added: int = 0


@dataclass
class ArchiveStats:
    """Totals of a finished archive."""

    files: int
    bytes_read: int
    bytes_written: int


class _ChainOutput:
    """
    Last link before the sink.

    Counts what reaches the sink. Once detached, writes are discarded so
    the stages above it can be closed without touching a failed sink.
    """

    def __init__(self, sink):
        self.sink = sink
        self.bytes_written = 0

    def write(self, data):
        if self.sink is not None:
            self.sink.write(data)
            self.bytes_written += len(data)
        return len(data)

    def flush(self):
        if self.sink is not None and hasattr(self.sink, 'flush'):
            self.sink.flush()

    def detach(self):
        self.sink = None


class _Uncompressed:
    """Pass-through stage for the 'none' format. Never closes its target."""

    def __init__(self, fileobj):
        self.fileobj = fileobj

    def write(self, data):
        return self.fileobj.write(data)

    def flush(self):
        self.fileobj.flush()

    def close(self):
        self.fileobj.flush()


def validate_format(compression_format: str):
    """
    Raises:
        ValueError: If compression_format is not supported
    """
    if compression_format not in FORMAT_EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMAT_EXTENSIONS.keys())}"
        )


def open_compressor(fileobj, compression_format: str = 'tar.gz'):
    """
    Wrap a writable object in a streaming compressor.

    Closing the returned object writes the final compressed block but
    leaves fileobj open.

    Args:
        fileobj: Writable binary object receiving compressed bytes
        compression_format: One of FORMAT_EXTENSIONS

    Returns:
        Writable binary object
    """
    validate_format(compression_format)

    if compression_format == 'tar.gz':
        return gzip.GzipFile(fileobj=fileobj, mode='wb')
    if compression_format == 'tar.bz2':
        return bz2.BZ2File(fileobj, mode='wb')
    if compression_format == 'tar.xz':
        return lzma.LZMAFile(fileobj, mode='wb')
    return _Uncompressed(fileobj)


def add_file(path: str, context: ArchiveContext):
    """
    Append one regular file to the archive under its full path.

    Args:
        path: Path of the file as produced by the walk
        context: Archive being written

    Raises:
        ArchiveIOError: If the file cannot be opened, described or copied
        UploadError: If the sink fails while the entry is written
    """
    try:
        source = open(path, 'rb')
    except OSError as e:
        raise ArchiveIOError(f"Cannot open file to add to archive: {path}: {e}")

    with source:
        try:
            tarinfo = context.writer.gettarinfo(arcname=path, fileobj=source)
        except OSError as e:
            raise ArchiveIOError(f"Cannot create tar header for {path}: {e}")

        # gettarinfo strips leading slashes; keep the path exactly as walked
        tarinfo.name = path

        try:
            context.writer.addfile(tarinfo, source)
        except UploadError:
            raise
        except (OSError, tarfile.TarError) as e:
            raise ArchiveIOError(f"Cannot add file to archive: {path}: {e}")

    context.files_added += 1
    context.bytes_added += tarinfo.size
    logger.debug(f"Added file {path} to archive")


def write_tree(root: str, context: ArchiveContext):
    """
    Recursively add every regular file under root to the archive.

    Walk order is whatever the filesystem yields. Symlinks and special
    files are skipped. Any read or write failure aborts the whole walk.

    Args:
        root: Directory to archive
        context: Archive being written

    Raises:
        ArchiveIOError: On any failure to read the tree or write an entry
    """
    if not os.path.isdir(root):
        raise ArchiveIOError(f"Data folder is not a directory: {root}")

    def on_walk_error(error):
        raise ArchiveIOError(f"Cannot read directory {error.filename}: {error}")

    for dirpath, _dirnames, filenames in os.walk(root, onerror=on_walk_error):
        for filename in filenames:
            path = os.path.join(dirpath, filename)

            try:
                mode = os.lstat(path).st_mode
            except OSError as e:
                raise ArchiveIOError(f"Cannot stat file {path}: {e}")

            if not stat.S_ISREG(mode):
                logger.debug(f"Skipping non-regular file {path}")
                continue

            add_file(path, context)


def stream_archive(root: str, sink, compression_format: str = 'tar.gz') -> ArchiveStats:
    """
    Write root as a compressed tar stream into sink.

    On success the tar trailer is written first, then the compressor's
    final block. The sink itself is left open; the caller finalizes it
    (or aborts it when this raises).

    Args:
        root: Directory to archive
        sink: Writable binary object
        compression_format: One of FORMAT_EXTENSIONS

    Returns:
        ArchiveStats for the written archive

    Raises:
        ArchiveIOError: If reading the tree or building the archive fails
        UploadError: If the sink rejects a write
    """
    output = _ChainOutput(sink)
    compressor = open_compressor(output, compression_format)
    writer = tarfile.open(fileobj=compressor, mode='w|')
    context = ArchiveContext(writer)

    try:
        write_tree(root, context)
        try:
            writer.close()
            compressor.close()
        except UploadError:
            raise
        except (OSError, tarfile.TarError) as e:
            raise ArchiveIOError(f"Cannot finalize archive: {e}")
    except BaseException:
        # Release the stages without letting them write to the failed sink
        output.detach()
        for stage in (writer, compressor):
            try:
                stage.close()
            except Exception as e:
                logger.warning(f"Cannot release archive stage after failure: {e}")
        raise

    logger.info(
        f"Archived {context.files_added} files "
        f"({context.bytes_added} bytes, {output.bytes_written} bytes compressed)"
    )
    return ArchiveStats(
        files=context.files_added,
        bytes_read=context.bytes_added,
        bytes_written=output.bytes_written
    )


def generate_archive_name(
    environment: Optional[str] = None,
    compression_format: str = 'tar.gz',
    now: Optional[datetime] = None
) -> str:
    """
    Generate the object key of an archive.

    Format: {YYYY-MM-DDTHH-MM-SS}[-{environment}].{ext}, in UTC, so keys
    sort chronologically.

    Args:
        environment: Optional deployment tag
        compression_format: Compression format
        now: Timestamp to use instead of the current time

    Returns:
        Archive name
    """
    validate_format(compression_format)

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    name = now.strftime(ARCHIVE_NAME_DATE_FORMAT)

    if environment:
        # Sanitize tag (replace spaces and special chars with underscores)
        safe_environment = "".join(
            c if c.isalnum() or c in ('-', '_') else '_'
            for c in environment.strip()
        )
        if safe_environment:
            name = f"{name}-{safe_environment}"

    return f"{name}.{FORMAT_EXTENSIONS[compression_format]}"
