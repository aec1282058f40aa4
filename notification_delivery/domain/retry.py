"""Retry decisions for the asynchronous path.

Backoff is linear: attempt 1 fails -> wait `base_delay`, attempt 2 fails ->
wait `2 * base_delay`, and so on until `max_attempts` attempts have run.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        return self.base_delay * attempt

    def start(self) -> "RetryState":
        return RetryState(attempt=1, max_attempts=self.max_attempts, base_delay=self.base_delay)


@dataclass(frozen=True)
class RetryState:
    """Attempt bookkeeping for one message. Never persisted."""

    attempt: int
    max_attempts: int
    base_delay: float

    def next(self) -> "RetryState":
        return RetryState(
            attempt=self.attempt + 1,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
        )
