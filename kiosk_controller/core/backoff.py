"""
Retry delay policy for transient failures.
"""

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class ExponentialBackoff:
    """
    Bounded exponential backoff with jitter.

    Attributes:
        base_delay: Delay after the first failure, in seconds.
        max_delay: Upper bound for the un-jittered delay.
        multiplier: Growth factor per consecutive failure.
        jitter: Spread applied as a fraction of the delay (0.5 -> 50%-150%).
    """

    base_delay: float = 3.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.5
    rand: Callable[[], float] = field(default=random.random, repr=False)

    _attempt: int = field(default=0, init=False)

    @property
    def attempt(self) -> int:
        """Number of consecutive failures recorded."""
        return self._attempt

    def next_delay(self) -> float:
        """Record a failure and get the delay before the next attempt."""
        delay = min(self.base_delay * (self.multiplier ** self._attempt), self.max_delay)
        self._attempt += 1

        if self.jitter:
            delay *= (1 - self.jitter) + 2 * self.jitter * self.rand()

        return delay

    def reset(self) -> None:
        """Reset after a success."""
        self._attempt = 0
