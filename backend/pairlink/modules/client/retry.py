"""Bounded retry budget with capped exponential backoff."""

from dataclasses import dataclass

from .config import ReconnectConfig


@dataclass
class RetryBudget:
    """Attempt counter shared by one reconnection loop.

    Attributes:
        max_attempts (int): attempts allowed before the budget is exhausted
        base_delay (float): first backoff delay (seconds)
        max_delay (float): backoff ceiling (seconds)
        attempts (int): attempts consumed since the last reset

    Examples:
        >>> budget = RetryBudget(max_attempts=5, base_delay=1.0, max_delay=16.0)
        >>> [budget.consume() for _ in range(5)]
        [1.0, 2.0, 4.0, 8.0, 16.0]
        >>> budget.exhausted
        True
    """
    max_attempts: int
    base_delay: float
    max_delay: float
    attempts: int = 0

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> "RetryBudget":
        return cls(
            max_attempts=config.MAX_RECONNECT_ATTEMPTS,
            base_delay=config.INITIAL_RECONNECT_DELAY,
            max_delay=config.MAX_RECONNECT_DELAY,
        )

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def backoff_delay(self) -> float:
        """``min(base * 2^(attempts-1), max)`` for the current attempt."""
        exponent = max(self.attempts - 1, 0)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def consume(self) -> float:
        """Use one attempt and return its backoff delay.

        Raises:
            RuntimeError: the budget is already exhausted
        """
        if self.exhausted:
            raise RuntimeError("retry budget exhausted")
        self.attempts += 1
        return self.backoff_delay()

    def record(self, attempts: int) -> None:
        """Mirror an externally reported attempt number, capped at ``max_attempts``."""
        self.attempts = max(0, min(attempts, self.max_attempts))

    def reset(self) -> None:
        self.attempts = 0
