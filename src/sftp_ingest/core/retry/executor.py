"""
Retry executor for remote operations with exponential backoff.

Runs a callable (sync or async) until it succeeds, hits a fatal error, runs
out of attempts, or is cancelled during a backoff wait.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from sftp_ingest.core.retry.policy import RetryPolicy, RetryState
from sftp_ingest.core.retry.predicates import NO_FATAL_ERRORS, FatalErrorSet
from sftp_ingest.exceptions import RetryCancelledError, RetryGiveupError
from sftp_ingest.utils.logging import get_logger

logger = get_logger("sftp_ingest.retry.executor")

T = TypeVar("T")

OnRetry = Callable[[BaseException, int, int, float], None]
OnGiveup = Callable[[BaseException, BaseException], None]

# Full tracebacks on every Nth retry only
TRACEBACK_EVERY = 3


def log_retry(operation: str) -> OnRetry:
    """Build the default retry observer: one warning per retry."""

    def on_retry(exception: BaseException, retry_count: int, retry_limit: int, wait: float) -> None:
        message = (
            f"{operation} failed. Retrying {retry_count}/{retry_limit} after {wait:.1f} seconds. "
            f"Message: {exception}"
        )
        if retry_count % TRACEBACK_EVERY == 0:
            logger.warning(message, exc_info=exception)
        else:
            logger.warning(message)

    return on_retry


class RetryExecutor:
    """
    Runs an operation with bounded retries.

    Examples:
        >>> executor = RetryExecutor(RetryPolicy(retry_limit=3), fatal_errors=LISTING_FATAL_ERRORS)
        >>> files = executor.run(lambda: conn.listdir("/data"), name="SFTP list")

        >>> # Cancellable backoff from another thread
        >>> stop = threading.Event()
        >>> executor = RetryExecutor(policy, cancel_event=stop)
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        fatal_errors: FatalErrorSet = NO_FATAL_ERRORS,
        on_retry: Optional[OnRetry] = None,
        on_giveup: Optional[OnGiveup] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize RetryExecutor.

        Args:
            policy: Attempt budget and backoff settings
            fatal_errors: Exceptions matching this set are never retried
            on_retry: Called before each wait with (exception, retry_count, retry_limit, wait)
            on_giveup: Called with (first_exception, last_exception) before giving up;
                may raise to reclassify the failure
            cancel_event: When set during a wait, the executor stops retrying
            sleep: Sleep function used when no cancel_event is given
        """
        self.policy = policy
        self.fatal_errors = fatal_errors
        self.on_retry = on_retry
        self.on_giveup = on_giveup
        self.cancel_event = cancel_event
        self._sleep = sleep

    def run(self, operation: Callable[[], T], *, name: Optional[str] = None) -> T:
        """
        Execute ``operation`` with retry logic.

        Raises:
            RetryGiveupError: Fatal failure or attempts exhausted (chained from the last failure)
            RetryCancelledError: ``cancel_event`` was set during a backoff wait
        """
        state = RetryState(operation=name or getattr(operation, "__name__", "operation"), retry_limit=self.policy.retry_limit)

        while True:
            state.attempts += 1
            logger.debug(f"Executing {state.operation} (attempt {state.attempts}/{self.policy.max_attempts})")
            try:
                result = operation()
            except Exception as e:
                wait = self._handle_failure(state, e)
                if self._wait(wait):
                    raise RetryCancelledError(state.operation, state.attempts) from e
                continue

            if state.attempts > 1:
                logger.info(f"{state.operation} succeeded after {state.attempts} attempts")
            return result

    async def run_async(self, operation: Callable[[], Awaitable[T]], *, name: Optional[str] = None) -> T:
        """
        Async variant of ``run``.

        Task cancellation during a wait propagates as ``asyncio.CancelledError``.
        """
        state = RetryState(operation=name or getattr(operation, "__name__", "operation"), retry_limit=self.policy.retry_limit)

        while True:
            state.attempts += 1
            logger.debug(f"Executing {state.operation} (attempt {state.attempts}/{self.policy.max_attempts})")
            try:
                result = await operation()
            except Exception as e:
                wait = self._handle_failure(state, e)
                await asyncio.sleep(wait)
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise RetryCancelledError(state.operation, state.attempts) from e
                continue

            if state.attempts > 1:
                logger.info(f"{state.operation} succeeded after {state.attempts} attempts")
            return result

    def _handle_failure(self, state: RetryState, exception: Exception) -> float:
        """Record a failure; give up, or return the wait before the next attempt."""
        state.record_failure(exception)

        fatal = self.fatal_errors.match(exception)
        if fatal is not None:
            logger.debug(
                f"{state.operation} failure classified fatal by {getattr(fatal, '__name__', fatal)} ({self.fatal_errors})"
            )
            self._give_up(state)
        if not self.policy.has_attempts_left(state.attempts):
            self._give_up(state)

        wait = self.policy.get_wait(state.attempts)
        state.current_wait = wait
        on_retry = self.on_retry or log_retry(state.operation)
        on_retry(exception, state.attempts, self.policy.retry_limit, wait)
        return wait

    def _give_up(self, state: RetryState) -> None:
        if self.on_giveup is not None:
            self.on_giveup(state.first_exception, state.last_exception)
        raise RetryGiveupError(
            state.operation,
            state.attempts,
            first_exception=state.first_exception,
            last_exception=state.last_exception,
        ) from state.last_exception

    def _wait(self, seconds: float) -> bool:
        """Block for the backoff wait; True if cancellation was requested."""
        if self.cancel_event is not None:
            return self.cancel_event.wait(seconds)
        self._sleep(seconds)
        return False
