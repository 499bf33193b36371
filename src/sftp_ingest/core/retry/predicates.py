"""
Fatal-error predicates for retry classification.

Each operation gets an explicit, versioned ``FatalErrorSet``. An exception
matching any predicate in the set is not retried. Bump ``version`` whenever
a predicate is added or changed so logs show which rules were in force.
"""

from __future__ import annotations

import errno
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import paramiko

from sftp_ingest.exceptions import ConfigurationError

FatalPredicate = Callable[[BaseException], bool]

# Messages that only show up deep inside wrapped transport errors
WRAPPED_FATAL_MESSAGES = ("Auth fail", "Connection refused")
AUTH_FAILURE_MESSAGES = ("Auth fail", "Authentication failed")
PERMISSION_DENIED_MESSAGE = "Permission denied"


def iter_causes(exception: BaseException) -> Iterator[BaseException]:
    """Yield the exception followed by its chained causes, outermost first."""
    seen: set[int] = set()
    current: BaseException | None = exception
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def innermost_cause(exception: BaseException) -> BaseException:
    *_, last = iter_causes(exception)
    return last


def wrap_depth(exception: BaseException) -> int:
    """Number of wrappers above the innermost cause."""
    return sum(1 for _ in iter_causes(exception)) - 1


def is_configuration_error(exception: BaseException) -> bool:
    return isinstance(exception, ConfigurationError)


def is_authentication_failure(exception: BaseException) -> bool:
    """True when an authentication failure appears anywhere in the chain."""
    for cause in iter_causes(exception):
        if isinstance(cause, paramiko.AuthenticationException):
            return True
        if isinstance(cause, paramiko.SSHException) and any(m in str(cause) for m in AUTH_FAILURE_MESSAGES):
            return True
    return False


def is_wrapped_fatal_message(exception: BaseException) -> bool:
    """
    True when an exception wrapped at least twice bottoms out in a known fatal message.

    A bare or singly wrapped ``Connection refused`` is a plain transport
    failure and stays retryable.
    """
    if wrap_depth(exception) < 2:
        return False
    message = str(innermost_cause(exception))
    return any(m in message for m in WRAPPED_FATAL_MESSAGES)


def is_permission_denied(exception: BaseException) -> bool:
    for cause in iter_causes(exception):
        if isinstance(cause, PermissionError):
            return True
        if isinstance(cause, OSError) and cause.errno in (errno.EACCES, errno.EPERM):
            return True
        if PERMISSION_DENIED_MESSAGE in str(cause):
            return True
    return False


@dataclass(frozen=True)
class FatalErrorSet:
    """A named, versioned collection of fatal-error predicates."""

    name: str
    version: int
    predicates: tuple[FatalPredicate, ...]

    def match(self, exception: BaseException) -> FatalPredicate | None:
        """Return the first predicate that classifies ``exception`` as fatal."""
        for predicate in self.predicates:
            if predicate(exception):
                return predicate
        return None

    def is_fatal(self, exception: BaseException) -> bool:
        return self.match(exception) is not None

    def extend(self, *predicates: FatalPredicate, version: int | None = None) -> FatalErrorSet:
        return FatalErrorSet(
            name=self.name,
            version=version if version is not None else self.version + 1,
            predicates=self.predicates + predicates,
        )

    def __str__(self) -> str:
        return f"{self.name}/v{self.version}"


NO_FATAL_ERRORS = FatalErrorSet(name="none", version=1, predicates=())

LISTING_FATAL_ERRORS = FatalErrorSet(
    name="listing",
    version=1,
    predicates=(is_configuration_error, is_authentication_failure, is_wrapped_fatal_message),
)

STREAM_FATAL_ERRORS = FatalErrorSet(
    name="stream-open",
    version=1,
    predicates=(is_configuration_error, is_permission_denied),
)
