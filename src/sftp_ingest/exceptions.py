"""
sftp-ingest exception hierarchy.

All domain-specific exceptions inherit from SftpIngestError, so callers can
catch any library failure with one base class while still handling the
fatal/retryable distinction precisely.

Hierarchy::

    SftpIngestError
    ├── ConfigurationError        - bad config, auth failure, no files found
    ├── RemoteConnectionError     - transport / connect failures (retryable)
    ├── StreamOpenError           - a remote file could not be opened
    │   └── RemotePermissionError - file exists but read access is denied
    └── RetryError                - retry bookkeeping
        ├── RetryGiveupError      - retries exhausted or fatal failure
        └── RetryCancelledError   - backoff wait interrupted by cancellation
"""

from __future__ import annotations


class SftpIngestError(Exception):
    """Base exception for all sftp-ingest errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(SftpIngestError):
    """Raised for errors that retrying can never fix.

    Covers invalid configuration values as well as conditions that are
    reported as configuration problems, such as authentication failures and
    ``stop_when_file_not_found`` with an empty listing.
    """


# --- Connections -------------------------------------------------------------


class RemoteConnectionError(SftpIngestError):
    """Raised when the SFTP transport cannot be established."""

    def __init__(self, message: str, *, host: str | None = None, port: int | None = None) -> None:
        super().__init__(message, details={"host": host, "port": port})
        self.host = host
        self.port = port


# --- Streams -----------------------------------------------------------------


class StreamOpenError(SftpIngestError):
    """Raised when a remote file could not be opened for reading."""

    def __init__(self, key: str, message: str, *, attempts: int = 0) -> None:
        super().__init__(message, details={"key": key, "attempts": attempts})
        self.key = key
        self.attempts = attempts


class RemotePermissionError(StreamOpenError):
    """Raised when the remote file exists but cannot be read."""


# --- Retry -------------------------------------------------------------------


class RetryError(SftpIngestError):
    """Base class for retry failures."""


class RetryGiveupError(RetryError):
    """Raised when an operation is abandoned after its final attempt.

    The last failure is chained as ``__cause__``; the first failure is kept
    so callers can reclassify errors that were masked on later attempts.
    """

    def __init__(
        self,
        operation: str,
        attempts: int,
        *,
        first_exception: BaseException | None = None,
        last_exception: BaseException | None = None,
    ) -> None:
        message = f"{operation} failed after {attempts} attempt(s)"
        if last_exception is not None:
            message += f": {last_exception}"
        super().__init__(message, details={"operation": operation, "attempts": attempts})
        self.operation = operation
        self.attempts = attempts
        self.first_exception = first_exception
        self.last_exception = last_exception


class RetryCancelledError(RetryError):
    """Raised when the surrounding task is cancelled during a backoff wait."""

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(
            f"{operation} cancelled after {attempts} attempt(s)",
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts
