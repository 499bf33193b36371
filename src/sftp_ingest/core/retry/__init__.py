"""
Retry framework for transient SFTP failures.

Exponential backoff, explicit fatal-error sets and cancellable waits.
"""

from sftp_ingest.core.retry.executor import RetryExecutor, log_retry
from sftp_ingest.core.retry.policy import RetryPolicy, RetryState
from sftp_ingest.core.retry.predicates import (
    LISTING_FATAL_ERRORS,
    NO_FATAL_ERRORS,
    STREAM_FATAL_ERRORS,
    FatalErrorSet,
    innermost_cause,
    is_authentication_failure,
    is_permission_denied,
    iter_causes,
)

__all__ = [
    # Policy
    "RetryPolicy",
    "RetryState",
    # Executor
    "RetryExecutor",
    "log_retry",
    # Fatal error classification
    "FatalErrorSet",
    "LISTING_FATAL_ERRORS",
    "STREAM_FATAL_ERRORS",
    "NO_FATAL_ERRORS",
    "innermost_cause",
    "iter_causes",
    "is_authentication_failure",
    "is_permission_denied",
]
