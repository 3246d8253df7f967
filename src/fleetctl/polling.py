"""Bounded polling primitive shared by the readiness checks."""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


class PollExhausted(RuntimeError):
    """Raised when every attempt of a :class:`RetryPolicy` failed."""

    def __init__(self, attempts: int) -> None:
        """Record how many attempts were made."""
        super().__init__(f"condition not met after {attempts} attempts")
        self.attempts = attempts


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Maximum number of attempts and the pause between two attempts."""

    max_attempts: int
    interval: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


def poll_until(
    predicate: Callable[[], bool],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int], None] | None = None,
) -> int:
    """Call *predicate* until it returns ``True``; return the successful attempt.

    The predicate runs at most ``policy.max_attempts`` times. *on_retry* is
    told the number of the attempt that just failed before each pause. No pause
    follows the final attempt.
    """
    for attempt in range(1, policy.max_attempts + 1):
        if predicate():
            return attempt
        if attempt == policy.max_attempts:
            break
        if on_retry is not None:
            on_retry(attempt)
        sleep(policy.interval)
    raise PollExhausted(policy.max_attempts)


__all__ = ["PollExhausted", "RetryPolicy", "poll_until"]
