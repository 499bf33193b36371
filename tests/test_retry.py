"""
Tests for the retry framework.

Covers backoff math, attempt budgets, fatal-error sets, give-up hooks,
cancellation and the async executor.
"""

import errno
import logging
import threading

import paramiko
import pytest

from sftp_ingest.core.retry import (
    LISTING_FATAL_ERRORS,
    NO_FATAL_ERRORS,
    STREAM_FATAL_ERRORS,
    FatalErrorSet,
    RetryExecutor,
    RetryPolicy,
    RetryState,
    innermost_cause,
    is_authentication_failure,
    is_permission_denied,
    log_retry,
)
from sftp_ingest.core.retry.predicates import is_wrapped_fatal_message, wrap_depth
from sftp_ingest.exceptions import (
    ConfigurationError,
    RemoteConnectionError,
    RetryCancelledError,
    RetryGiveupError,
)


def chain(*exceptions):
    """Link exceptions outermost first through ``__cause__``."""
    for outer, inner in zip(exceptions, exceptions[1:]):
        outer.__cause__ = inner
    return exceptions[0]


class Flaky:
    """Callable that raises the queued exceptions, then returns ``result``."""

    def __init__(self, *exceptions, result="ok"):
        self.exceptions = list(exceptions)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.exceptions:
            raise self.exceptions.pop(0)
        return self.result


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.retry_limit == 5
        assert policy.initial_wait == 0.5
        assert policy.max_wait == 30.0
        assert policy.exponential_base == 2.0
        assert policy.jitter is False

    def test_exponential_waits(self):
        policy = RetryPolicy()
        assert [policy.get_wait(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 4.0, 8.0]

    def test_wait_is_capped(self):
        policy = RetryPolicy()
        assert policy.get_wait(7) == 30.0
        assert policy.get_wait(100) == 30.0

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(initial_wait=4.0, max_wait=5.0, jitter=True)
        for _ in range(50):
            assert 3.0 <= policy.get_wait(1) <= 5.0

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"retry_limit": -1}, "retry_limit must be >= 0"),
            ({"initial_wait": -0.1}, "initial_wait must be >= 0"),
            ({"initial_wait": 10.0, "max_wait": 1.0}, "max_wait must be >= initial_wait"),
            ({"exponential_base": 0.5}, "exponential_base must be >= 1.0"),
        ],
    )
    def test_validation(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            RetryPolicy(**kwargs)

    def test_max_attempts_is_at_least_one(self):
        assert RetryPolicy(retry_limit=0).max_attempts == 1
        assert RetryPolicy(retry_limit=3).max_attempts == 3

    def test_for_connection_retries(self):
        policy = RetryPolicy.for_connection_retries(7)
        assert policy.retry_limit == 7
        assert policy.initial_wait == 0.5
        assert policy.max_wait == 30.0


class TestRetryState:
    """Tests for RetryState bookkeeping."""

    def test_record_failure_keeps_first_and_last(self):
        state = RetryState(operation="op", retry_limit=3)
        first, last = ValueError("first"), ValueError("last")
        state.attempts = 1
        state.record_failure(first)
        state.attempts = 2
        state.record_failure(last)
        assert state.first_exception is first
        assert state.last_exception is last
        assert [f["attempt"] for f in state.failures] == [1, 2]
        assert state.retry_count == 1


class TestRetryExecutor:
    """Tests for RetryExecutor.run."""

    def test_success_first_attempt(self):
        op = Flaky()
        sleeps = []
        assert RetryExecutor(RetryPolicy(), sleep=sleeps.append).run(op) == "ok"
        assert op.calls == 1
        assert sleeps == []

    def test_transient_failures_then_success(self):
        op = Flaky(OSError("reset"), OSError("reset"))
        sleeps = []
        result = RetryExecutor(RetryPolicy(retry_limit=5), sleep=sleeps.append).run(op)
        assert result == "ok"
        assert op.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_retry_limit_is_total_attempts(self):
        op = Flaky(*[OSError("down")] * 10)
        sleeps = []
        with pytest.raises(RetryGiveupError) as exc_info:
            RetryExecutor(RetryPolicy(retry_limit=2), sleep=sleeps.append).run(op, name="listing")
        assert op.calls == 2
        assert sleeps == [0.5]
        assert exc_info.value.attempts == 2
        assert "listing failed after 2 attempt(s)" in str(exc_info.value)

    def test_zero_retry_limit_still_attempts_once(self):
        op = Flaky(OSError("down"))
        with pytest.raises(RetryGiveupError):
            RetryExecutor(RetryPolicy(retry_limit=0), sleep=lambda s: None).run(op)
        assert op.calls == 1

    def test_giveup_chains_last_failure(self):
        first, last = OSError("first"), OSError("last")
        with pytest.raises(RetryGiveupError) as exc_info:
            RetryExecutor(RetryPolicy(retry_limit=2), sleep=lambda s: None).run(Flaky(first, last))
        assert exc_info.value.__cause__ is last
        assert exc_info.value.first_exception is first
        assert exc_info.value.last_exception is last

    def test_fatal_error_is_not_retried(self):
        fatal = FatalErrorSet(name="test", version=1, predicates=(lambda e: isinstance(e, KeyError),))
        op = Flaky(KeyError("bad"))
        sleeps = []
        with pytest.raises(RetryGiveupError) as exc_info:
            RetryExecutor(RetryPolicy(retry_limit=5), fatal_errors=fatal, sleep=sleeps.append).run(op)
        assert op.calls == 1
        assert sleeps == []
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_on_retry_receives_counts_and_wait(self):
        calls = []
        op = Flaky(OSError("a"), OSError("b"))
        executor = RetryExecutor(
            RetryPolicy(retry_limit=3),
            on_retry=lambda e, n, limit, wait: calls.append((str(e), n, limit, wait)),
            sleep=lambda s: None,
        )
        executor.run(op)
        assert calls == [("a", 1, 3, 0.5), ("b", 2, 3, 1.0)]

    def test_on_giveup_can_reclassify(self):
        def on_giveup(first, last):
            raise ConfigurationError(f"reclassified: {first}")

        executor = RetryExecutor(RetryPolicy(retry_limit=2), on_giveup=on_giveup, sleep=lambda s: None)
        with pytest.raises(ConfigurationError, match="reclassified: one"):
            executor.run(Flaky(OSError("one"), OSError("two")))

    def test_on_giveup_returning_falls_through_to_giveup_error(self):
        seen = []
        executor = RetryExecutor(
            RetryPolicy(retry_limit=1), on_giveup=lambda f, l: seen.append((f, l)), sleep=lambda s: None
        )
        with pytest.raises(RetryGiveupError):
            executor.run(Flaky(OSError("x")))
        assert len(seen) == 1

    def test_cancel_event_stops_retrying(self):
        cancel = threading.Event()
        cancel.set()
        op = Flaky(OSError("down"), OSError("down"))
        with pytest.raises(RetryCancelledError) as exc_info:
            RetryExecutor(RetryPolicy(retry_limit=5), cancel_event=cancel).run(op, name="listing")
        assert op.calls == 1
        assert exc_info.value.attempts == 1

    def test_unset_cancel_event_waits_and_retries(self):
        cancel = threading.Event()
        policy = RetryPolicy(retry_limit=3, initial_wait=0.0, max_wait=0.0)
        op = Flaky(OSError("down"))
        assert RetryExecutor(policy, cancel_event=cancel).run(op) == "ok"
        assert op.calls == 2


class TestRetryExecutorAsync:
    """Tests for RetryExecutor.run_async."""

    @pytest.mark.asyncio
    async def test_async_retry_then_success(self):
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise OSError("down")
            return "done"

        policy = RetryPolicy(retry_limit=3, initial_wait=0.0, max_wait=0.0)
        assert await RetryExecutor(policy).run_async(op) == "done"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_async_gives_up(self):
        async def op():
            raise OSError("down")

        policy = RetryPolicy(retry_limit=2, initial_wait=0.0, max_wait=0.0)
        with pytest.raises(RetryGiveupError) as exc_info:
            await RetryExecutor(policy).run_async(op, name="async op")
        assert exc_info.value.attempts == 2


class TestLogRetry:
    """Tests for the default retry observer."""

    def test_message_format(self, caplog):
        caplog.set_level(logging.WARNING, logger="sftp_ingest")
        log_retry("SFTP GET request")(OSError("boom"), 1, 5, 0.5)
        assert "SFTP GET request failed. Retrying 1/5 after 0.5 seconds. Message: boom" in caplog.text

    def test_traceback_every_third_retry(self, caplog):
        caplog.set_level(logging.WARNING, logger="sftp_ingest")
        on_retry = log_retry("op")
        for n in range(1, 7):
            on_retry(OSError("boom"), n, 10, 0.0)
        with_traceback = [bool(r.exc_info) for r in caplog.records]
        assert with_traceback == [False, False, True, False, False, True]


class TestPredicates:
    """Tests for fatal-error predicates and sets."""

    def test_iter_causes_innermost(self):
        inner = OSError("inner")
        outer = chain(RuntimeError("outer"), ValueError("middle"), inner)
        assert innermost_cause(outer) is inner
        assert wrap_depth(outer) == 2
        assert wrap_depth(inner) == 0

    def test_cycle_in_chain_terminates(self):
        a, b = ValueError("a"), ValueError("b")
        a.__cause__ = b
        b.__cause__ = a
        assert wrap_depth(a) == 1

    def test_authentication_failure_anywhere_in_chain(self):
        wrapped = chain(RemoteConnectionError("connect failed"), paramiko.AuthenticationException("Authentication failed."))
        assert is_authentication_failure(wrapped)
        assert is_authentication_failure(paramiko.SSHException("Auth fail"))
        assert not is_authentication_failure(paramiko.SSHException("Error reading SSH protocol banner"))

    def test_wrapped_fatal_message_needs_two_wrappers(self):
        assert not is_wrapped_fatal_message(OSError("Connection refused"))
        assert not is_wrapped_fatal_message(chain(RemoteConnectionError("x"), OSError("Connection refused")))
        assert is_wrapped_fatal_message(
            chain(RuntimeError("a"), RemoteConnectionError("b"), OSError("Connection refused"))
        )
        assert is_wrapped_fatal_message(chain(RuntimeError("a"), RuntimeError("b"), Exception("Auth fail")))

    @pytest.mark.parametrize(
        "exception",
        [
            PermissionError("nope"),
            OSError(errno.EACCES, "denied"),
            IOError("Permission denied"),
            chain(RuntimeError("wrapped"), PermissionError("nope")),
        ],
    )
    def test_permission_denied(self, exception):
        assert is_permission_denied(exception)

    def test_not_permission_denied(self):
        assert not is_permission_denied(FileNotFoundError(errno.ENOENT, "No such file"))

    def test_listing_set(self):
        assert LISTING_FATAL_ERRORS.is_fatal(ConfigurationError("bad"))
        assert LISTING_FATAL_ERRORS.is_fatal(paramiko.AuthenticationException("Authentication failed."))
        assert not LISTING_FATAL_ERRORS.is_fatal(OSError("Connection reset"))
        assert not LISTING_FATAL_ERRORS.is_fatal(PermissionError("Permission denied"))

    def test_stream_set(self):
        assert STREAM_FATAL_ERRORS.is_fatal(PermissionError("Permission denied"))
        assert STREAM_FATAL_ERRORS.is_fatal(ConfigurationError("bad"))
        assert not STREAM_FATAL_ERRORS.is_fatal(OSError("Connection reset"))

    def test_no_fatal_errors(self):
        assert not NO_FATAL_ERRORS.is_fatal(ConfigurationError("bad"))

    def test_extend_bumps_version(self):
        extended = STREAM_FATAL_ERRORS.extend(lambda e: isinstance(e, KeyError))
        assert extended.version == STREAM_FATAL_ERRORS.version + 1
        assert extended.is_fatal(KeyError("k"))
        assert str(LISTING_FATAL_ERRORS) == "listing/v1"
