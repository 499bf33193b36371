"""
Per-file byte streams for workers.

A ``FileStreamProvider`` opens exactly one remote file, retrying transient
failures with its own connection. The returned stream keeps that connection
alive until it is closed.
"""

from __future__ import annotations

import errno
import io
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sftp_ingest.config.models import ConnectionConfig, SftpInputConfig
from sftp_ingest.connections.sftp import SFTPConnection
from sftp_ingest.core.retry import (
    STREAM_FATAL_ERRORS,
    RetryExecutor,
    RetryPolicy,
    is_permission_denied,
    log_retry,
)
from sftp_ingest.exceptions import RemotePermissionError, RetryGiveupError, StreamOpenError
from sftp_ingest.listing.file_list import FileList
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import redact_uri, relative_path

logger = get_logger("sftp_ingest.streaming.provider")


class StreamState(Enum):
    UNOPENED = "unopened"
    OPENED = "opened"
    CLOSED = "closed"


class RemoteFileStream(io.RawIOBase):
    """
    Readable stream over one remote file.

    Owns both the remote file handle and the connection it came from; closing
    the stream releases both. Wrap in ``io.BufferedReader`` for line access.
    """

    def __init__(
        self,
        handle: Any,
        connection: SFTPConnection,
        *,
        uri: str,
        size: int,
        last_modified: datetime | None,
    ):
        super().__init__()
        self._handle = handle
        self._connection = connection
        self.uri = uri
        self.size = size
        self.last_modified = last_modified

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        data = self._handle.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        return n

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._handle.close()
        finally:
            try:
                self._connection.close()
            finally:
                super().close()

    def __repr__(self) -> str:
        return f"RemoteFileStream(uri='{self.uri}', size={self.size})"


class FileStreamProvider:
    """
    Opens one assigned key at most once.

    ``open_once()`` returns a ``RemoteFileStream`` on the first call and None
    (end of input) afterwards. Permission errors fail immediately; anything
    else is retried with exponential backoff.
    """

    def __init__(
        self,
        connection_config: ConnectionConfig,
        key: str,
        *,
        connection_factory: Callable[[ConnectionConfig], SFTPConnection] = SFTPConnection,
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.connection_config = connection_config
        self.key = key
        self.connection_factory = connection_factory
        self.policy = policy or RetryPolicy.for_connection_retries(connection_config.max_connection_retry)
        self.cancel_event = cancel_event
        self._state = StreamState.UNOPENED
        self._stream: RemoteFileStream | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def public_uri(self) -> str:
        return redact_uri(self.key)

    def open_once(self) -> RemoteFileStream | None:
        """
        Open the assigned file.

        Raises:
            RemotePermissionError: The file exists but cannot be read
            StreamOpenError: Retries were exhausted
            RetryCancelledError: Cancelled during a backoff wait
        """
        if self._state is not StreamState.UNOPENED:
            return None
        self._state = StreamState.OPENED

        executor = RetryExecutor(
            self.policy,
            fatal_errors=STREAM_FATAL_ERRORS,
            on_retry=log_retry("SFTP GET request"),
            cancel_event=self.cancel_event,
        )
        try:
            self._stream = executor.run(self._open, name=f"Opening {self.public_uri}")
        except RetryGiveupError as e:
            last = e.last_exception
            if last is not None and is_permission_denied(last):
                logger.error("Could not download file due to Permission Denied")
                raise RemotePermissionError(
                    self.public_uri, f"Permission denied reading {self.public_uri}: {last}", attempts=e.attempts
                ) from last
            raise StreamOpenError(
                self.public_uri, f"Could not open {self.public_uri} after {e.attempts} attempt(s): {last}", attempts=e.attempts
            ) from last
        return self._stream

    def _open(self) -> RemoteFileStream:
        connection = self.connection_factory(self.connection_config)
        try:
            path = relative_path(self.key)
            info = connection.stat(path)
            if info is None:
                raise FileNotFoundError(errno.ENOENT, "No such file", path)
            handle = connection.open(path)
        except BaseException:
            connection.close()
            raise

        last_modified = datetime.fromtimestamp(info.mtime, tz=timezone.utc) if info.mtime is not None else None
        logger.info(f"file name {self.public_uri}, last modified time {last_modified}, size {info.size}")
        return RemoteFileStream(handle, connection, uri=self.public_uri, size=info.size, last_modified=last_modified)

    def close(self) -> None:
        """Close the opened stream (if any) and its connection."""
        self._state = StreamState.CLOSED
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def __enter__(self) -> FileStreamProvider:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.close()


def open_task(
    config: SftpInputConfig,
    file_list: FileList,
    task_index: int,
    **kwargs: Any,
) -> list[FileStreamProvider]:
    """One provider per key in bucket ``task_index``, in discovery order."""
    return [FileStreamProvider(config.connection, key, **kwargs) for key in file_list.bucket(task_index)]
