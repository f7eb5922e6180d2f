"""
Retry policy: maps a failed attempt to "wait and retry" or "give up".

    Rejected     -> GiveUp (record goes to FAILED, no automatic retry)
    Unavailable  -> Retry(after=min(base * 2**attempt_count, cap))

There is no overall attempt limit. max_attempts_per_pass only bounds how many
times one pass tries the same record before leaving it PENDING for the next
triggered pass.
"""
from dataclasses import dataclass
from typing import Union

from offsync.remote.client import Outcome, Rejected

# 2**32 seconds is far beyond any sane cap; avoids building huge ints
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class Retry:
    after: float  # seconds


@dataclass(frozen=True)
class GiveUp:
    pass


Decision = Union[Retry, GiveUp]


@dataclass(frozen=True)
class RetryPolicy:
    base: float = 1.0
    cap: float = 30.0
    max_attempts_per_pass: int = 3

    def __post_init__(self):
        if self.base <= 0 or self.cap < self.base:
            raise ValueError("RetryPolicy needs 0 < base <= cap")
        if self.max_attempts_per_pass < 1:
            raise ValueError("max_attempts_per_pass must be at least 1")

    def delay(self, attempt_count: int) -> float:
        """Backoff before the next attempt, given the failures seen so far."""
        exponent = min(max(attempt_count, 0), _MAX_EXPONENT)
        return min(self.base * (2 ** exponent), self.cap)

    def next(self, attempt_count: int, outcome: Outcome) -> Decision:
        """
        Decide what follows a failed attempt.

        Args:
            attempt_count: Transient failures recorded before this one.
            outcome: The failed outcome (Rejected or Unavailable).
        """
        if isinstance(outcome, Rejected):
            return GiveUp()
        return Retry(after=self.delay(attempt_count))

    def allows_another_attempt(self, attempts_this_pass: int) -> bool:
        return attempts_this_pass < self.max_attempts_per_pass
