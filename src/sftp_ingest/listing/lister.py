"""
Remote file discovery by path prefix.

The whole listing is one retryable unit: a failure anywhere restarts it with
a fresh connection.
"""

from __future__ import annotations

import posixpath
import threading
from collections.abc import Callable, Iterable, Iterator

from sftp_ingest.config.models import ConnectionConfig, CursorUnmatched, SftpInputConfig
from sftp_ingest.connections.sftp import RemoteFile, SFTPConnection
from sftp_ingest.core.retry import (
    LISTING_FATAL_ERRORS,
    RetryExecutor,
    RetryPolicy,
    innermost_cause,
    log_retry,
)
from sftp_ingest.core.retry.predicates import is_authentication_failure, is_wrapped_fatal_message
from sftp_ingest.exceptions import ConfigurationError
from sftp_ingest.listing.file_list import FileList, FileListBuilder
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import display_uri, file_uri, relative_path

logger = get_logger("sftp_ingest.listing.lister")

ConnectionFactory = Callable[[ConnectionConfig], SFTPConnection]

STOP_WHEN_FILE_NOT_FOUND_MESSAGE = 'No file is found. "stop_when_file_not_found" option is "true".'


def name_without_extension(path: str) -> str:
    name = posixpath.basename(path)
    dot = name.rfind(".")
    return name[:dot] if dot != -1 else name


def skip_through_cursor(
    keys: Iterable[str],
    last_key: str | None,
    *,
    on_unmatched: CursorUnmatched = CursorUnmatched.SKIP,
) -> Iterator[str]:
    """
    Drop every key up to and including ``last_key``; keep the rest.

    If ``last_key`` never appears, nothing is kept unless ``on_unmatched``
    is ``INCLUDE``. The seen-cursor flag is local to this call.
    """
    if last_key is None:
        yield from keys
        return

    candidates = list(keys)
    if on_unmatched is CursorUnmatched.INCLUDE and last_key not in candidates:
        logger.warning("last_path was not found among listed files; including every file")
        yield from candidates
        return

    seen_cursor = False
    for key in candidates:
        if seen_cursor:
            yield key
        elif key == last_key:
            seen_cursor = True


class FileLister:
    """
    Lists remote files under ``path_prefix`` into a ``FileList``.

    ``path_prefix`` may name a directory (its files), a file (just that
    file), or neither (files in the parent whose name without extension
    starts with the prefix's basename).
    """

    def __init__(
        self,
        config: SftpInputConfig,
        *,
        connection_factory: ConnectionFactory = SFTPConnection,
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        task_count: int | None = None,
    ):
        self.config = config
        self.connection_factory = connection_factory
        self.policy = policy or RetryPolicy.for_connection_retries(config.connection.max_connection_retry)
        self.cancel_event = cancel_event
        self.task_count = task_count

    def list_files(self) -> FileList:
        """
        Discover files, retrying the whole listing on transient failures.

        Raises:
            ConfigurationError: Authentication failure, invalid host, or an empty
                result with ``stop_when_file_not_found``
            RetryGiveupError: Transient failures outlasted the retry budget
        """
        executor = RetryExecutor(
            self.policy,
            fatal_errors=LISTING_FATAL_ERRORS,
            on_retry=log_retry("SFTP GET request"),
            on_giveup=self._on_giveup,
            cancel_event=self.cancel_event,
        )
        file_list = executor.run(self._list_once, name="SFTP file listing")

        if len(file_list) == 0 and self.config.stop_when_file_not_found:
            raise ConfigurationError(STOP_WHEN_FILE_NOT_FOUND_MESSAGE)
        logger.info(f"Found {len(file_list)} file(s) in {file_list.task_count} task(s)")
        return file_list

    def _list_once(self) -> FileList:
        logger.info("Getting to download file list")
        builder = FileListBuilder.from_config(self.config)
        connection = self.connection_factory(self.config.connection)
        try:
            last_key = self._resolve_cursor(connection)
            # Listing order is key order, so the greatest key is the last file listed
            keys = dict(
                sorted(
                    ((file_uri(self.config.connection, f.path), f) for f in self._candidates(connection)),
                    key=lambda item: item[0],
                )
            )
            for key in skip_through_cursor(keys, last_key, on_unmatched=self.config.on_cursor_unmatched):
                if not builder.add(key, keys[key].size):
                    logger.info(f"Reached total_file_count_limit ({self.config.total_file_count_limit})")
                    break
            return builder.build(self.task_count)
        finally:
            connection.close()

    def _resolve_cursor(self, connection: SFTPConnection) -> str | None:
        last_path = self.config.last_path
        if not last_path:
            return None
        path = relative_path(last_path)
        if connection.stat(path) is None:
            logger.warning("Failed to load last_path due to non-existence in sftp, skip using last_path")
            return None
        return file_uri(self.config.connection, path)

    def _candidates(self, connection: SFTPConnection) -> list[RemoteFile]:
        """Regular files selected by ``path_prefix``, in no particular order."""
        prefix = self.config.path_prefix
        target = connection.stat(prefix)

        if target is not None and target.is_dir:
            children = connection.listdir(prefix)
        elif target is not None and target.is_file:
            return [target]
        else:
            parent = posixpath.dirname(prefix)
            basename = posixpath.basename(prefix)
            parent_stat = connection.stat(parent)
            if parent_stat is None or not parent_stat.is_dir:
                logger.warning(f"Parent directory of path_prefix does not exist: {parent or '/'}")
                return []
            children = [c for c in connection.listdir(parent) if name_without_extension(c.path).startswith(basename)]

        return [c for c in children if c.is_file]

    def _on_giveup(self, first: BaseException, last: BaseException) -> None:
        """Report errors retrying could not fix as configuration errors."""
        if isinstance(last, ConfigurationError):
            raise last
        # A fatal cause can be masked on later attempts, so check the first one too
        for exception in (last, first):
            if is_authentication_failure(exception) or is_wrapped_fatal_message(exception):
                raise ConfigurationError(
                    f"Could not list files on {display_uri(self.config.connection)}: {innermost_cause(exception)}",
                    details={"host": self.config.connection.host},
                ) from exception


def list_files_by_prefix(config: SftpInputConfig, **kwargs) -> FileList:
    """Shortcut for ``FileLister(config, **kwargs).list_files()``."""
    return FileLister(config, **kwargs).list_files()
