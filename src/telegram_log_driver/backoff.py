"""Retry delay calculation shared by outbound clients."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff parameters."""

    base: float
    factor: float
    maximum: float

    def delay(self, failures: int) -> float:
        """Calculate the delay for the given failure count."""

        if failures <= 0:
            return 0.0
        base = max(0.0, self.base)
        try:
            backoff = base * self.factor ** (failures - 1)
        except OverflowError:
            return self.maximum
        return min(self.maximum, max(backoff, base))
