"""Exponential retry backoff for failed sync cycles."""

from dataclasses import dataclass


@dataclass
class Backoff:
    """delay(n) = min(base * factor ** (n - 1), max) for the n-th consecutive failure."""

    base_seconds: float = 5.0
    factor: float = 2.0
    max_seconds: float = 300.0
    attempt: int = 0

    def next_delay(self) -> float:
        """Record a failure and return how long to wait before retrying."""
        self.attempt += 1
        return self.delay_for(self.attempt)

    def delay_for(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        # Cap the exponent too, large attempt counts would overflow the float
        exponent = min(attempt - 1, 64)
        return min(self.base_seconds * self.factor**exponent, self.max_seconds)

    def reset(self) -> None:
        self.attempt = 0
