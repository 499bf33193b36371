"""
sftp-ingest - Incremental, parallel file ingestion from SFTP servers.

Lists files under a remote path prefix, partitions them into task buckets,
streams each file to a worker, and emits a ``last_path`` cursor so the next
run only picks up newer files.
"""

__version__ = "0.1.0"

# Configuration
from sftp_ingest.config import ConnectionConfig, ProxyConfig, ProxyType, SftpInputConfig, load_config

# Exceptions
from sftp_ingest.exceptions import (
    ConfigurationError,
    RemoteConnectionError,
    RemotePermissionError,
    RetryCancelledError,
    RetryError,
    RetryGiveupError,
    SftpIngestError,
    StreamOpenError,
)

# Entry points
from sftp_ingest.ingest import next_config_diff, run_task, run_tasks, transaction
from sftp_ingest.listing import FileEntry, FileList, FileLister
from sftp_ingest.streaming import FileStreamProvider, RemoteFileStream, open_task

# Retry
from sftp_ingest.core.retry import RetryExecutor, RetryPolicy

# Logging utilities
from sftp_ingest.utils.logging import get_logger, setup_logging, setup_logging_from_config

# URI helpers
from sftp_ingest.utils.uri import file_uri, relative_path

__all__ = [
    # Entry points
    "transaction",
    "next_config_diff",
    "open_task",
    "run_task",
    "run_tasks",
    # Listing and streaming
    "FileEntry",
    "FileList",
    "FileLister",
    "FileStreamProvider",
    "RemoteFileStream",
    # Config
    "ConnectionConfig",
    "ProxyConfig",
    "ProxyType",
    "SftpInputConfig",
    "load_config",
    # Retry
    "RetryExecutor",
    "RetryPolicy",
    # URIs
    "file_uri",
    "relative_path",
    # Logging
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    # Exceptions
    "SftpIngestError",
    "ConfigurationError",
    "RemoteConnectionError",
    "StreamOpenError",
    "RemotePermissionError",
    "RetryError",
    "RetryGiveupError",
    "RetryCancelledError",
]
