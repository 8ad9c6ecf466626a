from __future__ import annotations

from typing import Optional


class ReconnectPolicy:
    """
    Bounded, fixed-delay retry budget for unexpected link loss.

    `next_delay()` consumes one attempt and returns the delay before it, or
    None once the budget is spent. A successful connection resets the budget.
    """

    def __init__(self, max_attempts: int = 5, delay_sec: float = 5.0):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.max_attempts = max_attempts
        self.delay_sec = max(delay_sec, 0.0)
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        if self.exhausted:
            return None
        self.attempts += 1
        return self.delay_sec

    def reset(self) -> None:
        self.attempts = 0
