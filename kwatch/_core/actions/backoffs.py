"""
Retrying with backoff: the policy (immutable) and the state (per loop).

The policy defines how long to wait between the attempts and for how long
to keep trying in total. The state is the loop's memory of the current
reconnection cycle: when it started, how many attempts have failed in a row,
and what was the latest error (to be chained when giving up).

A reconnection cycle starts with the first attempt and ends with the first event received.
The time budget is measured from the cycle's start, not from the first failure,
so that a long-hanging first attempt is counted against the budget too.
"""
import dataclasses
from typing import Optional


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """
    How to retry: the delays between the attempts and the total time budget.
    """

    interval: float
    """ The delay after the first failed attempt. """

    timeout: Optional[float] = None
    """ The time budget of one reconnection cycle; ``None`` or ``0`` for infinite. """

    attempt_timeout: Optional[float] = None
    """ The time limit of one attempt; ``None`` for unlimited (except by the budget). """

    factor: float = 1.0
    """ The multiplier of the delay for every next failure; ``1.0`` for a fixed delay. """

    limit: Optional[float] = None
    """ The maximum delay regardless of the factor; ``None`` for unlimited. """

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError(f"The retry interval cannot be negative: {self.interval!r}")
        if self.factor < 1:
            raise ValueError(f"The backoff factor must be >= 1: {self.factor!r}")

    @property
    def infinite(self) -> bool:
        return not self.timeout

    def delay(self, failures: int) -> float:
        """
        The delay before the next attempt after so many consecutive failures.
        """
        if failures <= 0:
            return 0
        delay = self.interval * self.factor ** (failures - 1)
        return delay if self.limit is None else min(delay, self.limit)


@dataclasses.dataclass
class RetryState:
    """
    The mutable state of retrying within one loop. Never shared between loops.
    """
    failures: int = 0
    cycle_started: Optional[float] = None  # loop clock
    last_error: Optional[BaseException] = None

    def start_cycle(self, now: float) -> None:
        if self.cycle_started is None:
            self.cycle_started = now

    def end_cycle(self) -> None:
        self.cycle_started = None

    def record_failure(self, exc: Optional[BaseException] = None) -> None:
        self.failures += 1
        if exc is not None:
            self.last_error = exc

    def record_success(self) -> None:
        """ Forget the past failures: the next failure will start the backoff anew. """
        self.failures = 0
        self.last_error = None

    def deadline(self, policy: RetryPolicy) -> Optional[float]:
        if policy.infinite or self.cycle_started is None:
            return None
        return self.cycle_started + (policy.timeout or 0)

    def remaining(self, policy: RetryPolicy, now: float) -> Optional[float]:
        deadline = self.deadline(policy)
        return None if deadline is None else max(0.0, deadline - now)

    def next_delay(self, policy: RetryPolicy) -> float:
        return policy.delay(self.failures)

    def attempt_timeout(self, policy: RetryPolicy, now: float) -> Optional[float]:
        """ The time limit of the next attempt: the policy's one, capped by the budget. """
        remaining = self.remaining(policy, now)
        if remaining is None:
            return policy.attempt_timeout
        elif policy.attempt_timeout is None:
            return remaining
        else:
            return min(remaining, policy.attempt_timeout)
