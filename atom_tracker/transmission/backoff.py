"""
Exponential backoff with jitter for batch retries.

Each delay is the previous one doubled plus a random jitter. Once the delay
reaches the ceiling the batch is abandoned.
"""
import random
from typing import Callable, Optional


class Backoff:
    """
    Retry state for one batch.

    Attributes:
        delay_s: Delay before the next retry
        attempts: Retries scheduled so far
    """

    def __init__(
        self,
        base_delay_s: float = 1.0,
        ceiling_s: float = 20 * 60.0,
        jitter_min_s: float = 0.1,
        jitter_max_s: float = 1.1,
        uniform: Optional[Callable[[float, float], float]] = None
    ):
        self.base_delay_s = base_delay_s
        self.ceiling_s = ceiling_s
        self.jitter_min_s = jitter_min_s
        self.jitter_max_s = jitter_max_s
        self._uniform = uniform or random.uniform
        self.delay_s = base_delay_s
        self.attempts = 0

    @classmethod
    def from_config(cls, config) -> "Backoff":
        return cls(
            base_delay_s=config.retry_base_delay_s,
            ceiling_s=config.retry_ceiling_s,
            jitter_min_s=config.retry_jitter_min_s,
            jitter_max_s=config.retry_jitter_max_s,
        )

    @property
    def exhausted(self) -> bool:
        """True when no further retry may be scheduled."""
        return self.delay_s >= self.ceiling_s

    def next_delay(self) -> float:
        """
        Consume the current delay and advance to the next one.

        Returns:
            Seconds to wait before the next attempt
        """
        current = self.delay_s
        self.delay_s = current * 2 + self._uniform(self.jitter_min_s, self.jitter_max_s)
        self.attempts += 1
        return current
