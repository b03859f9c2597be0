"""Exponential backoff policy shared by archive fetches and backup uploads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import RetryConfig


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for archive operations.

    Attributes:
        max_attempts: Maximum number of attempts (including the first)
        initial_delay_s: Delay before the first retry
        factor: Multiplier applied to the delay after each retry
        max_delay_s: Cap on a single delay (5 minutes)
        attempt_timeout_s: Cap on the duration of a single attempt (5 minutes)
    """

    max_attempts: int = 5
    initial_delay_s: float = 1.0
    factor: float = 2.0
    max_delay_s: float = 300.0
    attempt_timeout_s: float | None = 300.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must not be negative")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay before the next attempt.

        Args:
            attempt: Number of the attempt that just failed (1-indexed)

        Returns:
            Delay in seconds, doubling per retry up to max_delay_s
        """
        return min(self.max_delay_s, self.initial_delay_s * (self.factor ** (attempt - 1)))

    @classmethod
    def from_config(cls, config: "RetryConfig") -> RetryPolicy:
        return cls(
            max_attempts=config.fetch_retries,
            initial_delay_s=config.initial_delay_ms / 1000,
            factor=config.factor,
            max_delay_s=config.max_delay_ms / 1000,
            attempt_timeout_s=config.attempt_timeout_ms / 1000
            if config.attempt_timeout_ms > 0
            else None,
        )
