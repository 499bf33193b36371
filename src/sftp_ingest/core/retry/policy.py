"""
Retry policy configuration for remote operations.

Exponential backoff shared by listing and stream opening.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for retry behavior when a remote operation fails.

    ``retry_limit`` is the total attempt budget: an operation that keeps
    failing transiently is called exactly ``retry_limit`` times (at least once).

    Examples:
        >>> policy = RetryPolicy(retry_limit=5)
        >>> policy.get_wait(1), policy.get_wait(2), policy.get_wait(10)
        (0.5, 1.0, 30.0)
    """

    retry_limit: int = 5

    # Wait before the first retry (seconds)
    initial_wait: float = 0.5

    # Upper bound for any single wait (seconds)
    max_wait: float = 30.0

    # wait = initial_wait * base^(retry_count - 1)
    exponential_base: float = 2.0

    # Random ±25% jitter, off by default so waits are reproducible
    jitter: bool = False

    def __post_init__(self):
        """Validate configuration."""
        if self.retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        if self.initial_wait < 0:
            raise ValueError("initial_wait must be >= 0")
        if self.max_wait < self.initial_wait:
            raise ValueError("max_wait must be >= initial_wait")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    @property
    def max_attempts(self) -> int:
        return max(self.retry_limit, 1)

    def has_attempts_left(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts

    def get_wait(self, retry_count: int) -> float:
        """
        Calculate the wait before a retry.

        Args:
            retry_count: Which retry this is (1 for the first retry)

        Returns:
            Wait in seconds, never above ``max_wait``
        """
        wait = self.initial_wait * (self.exponential_base ** max(retry_count - 1, 0))
        if self.jitter:
            wait *= random.uniform(0.75, 1.25)
        # Cap after jitter so max_wait is a hard upper bound
        return min(wait, self.max_wait)

    @classmethod
    def for_connection_retries(cls, max_connection_retry: int) -> "RetryPolicy":
        """The policy used by listing and stream opening for a configured retry count."""
        return cls(retry_limit=max_connection_retry, initial_wait=0.5, max_wait=30.0)


@dataclass
class RetryState:
    """
    State for one retryable operation.

    Transient: created per ``RetryExecutor.run`` call and discarded after.
    """

    operation: str
    retry_limit: int

    # Attempts made so far
    attempts: int = 0

    # Wait chosen before the next attempt
    current_wait: float = 0.0

    first_exception: Optional[BaseException] = None
    last_exception: Optional[BaseException] = None

    # One entry per failed attempt, for debugging
    failures: list[dict[str, Any]] = field(default_factory=list)

    def record_failure(self, exception: BaseException) -> None:
        """Record a failed attempt."""
        if self.first_exception is None:
            self.first_exception = exception
        self.last_exception = exception
        self.failures.append(
            {
                "attempt": self.attempts,
                "exception_type": type(exception).__name__,
                "exception_message": str(exception),
                "timestamp": time.time(),
            }
        )

    @property
    def retry_count(self) -> int:
        """Retries performed so far (attempts after the first)."""
        return max(self.attempts - 1, 0)
