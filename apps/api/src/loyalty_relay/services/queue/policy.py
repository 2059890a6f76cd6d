from __future__ import annotations

from dataclasses import dataclass

from loyalty_relay.core.settings import settings


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter.

    ``max_attempts`` counts every execution, the first one included.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            multiplier=settings.retry_backoff_multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the ``attempt``-th failed execution."""

        return self.base_delay_seconds * (self.multiplier ** max(attempt - 1, 0))


__all__ = ["RetryPolicy"]
